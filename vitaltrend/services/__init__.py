"""
Core services for trend analysis.

This package contains the pipeline components: sample extraction,
statistics, direction classification, interpretation, reconciliation,
alert emission and the batch orchestrator that drives them.
"""

from .alerts import AlertDispatcher, AlertEmissionPolicy, AlertEmitter
from .classifier import DirectionClassifier
from .interpretation import (
    AlertRules,
    InterpretationPolicy,
    NarrativeGenerator,
    PydanticAINarrativeGenerator,
)
from .orchestrator import PatientDirectory, TrendOrchestrator, build_orchestrator
from .reconciler import TrendReconciler, TrendStore
from .result import Result
from .samples import SampleExtractor, VitalSignsSampleExtractor
from .statistics import StatisticsEngine

__all__ = [
    "AlertDispatcher",
    "AlertEmissionPolicy",
    "AlertEmitter",
    "AlertRules",
    "DirectionClassifier",
    "InterpretationPolicy",
    "NarrativeGenerator",
    "PatientDirectory",
    "PydanticAINarrativeGenerator",
    "Result",
    "SampleExtractor",
    "StatisticsEngine",
    "TrendOrchestrator",
    "TrendReconciler",
    "TrendStore",
    "VitalSignsSampleExtractor",
    "build_orchestrator",
]
