"""Vital-sign trend analysis and alerting.

This package turns newly recorded patient measurements into persisted trend
records: statistics over a lookback window, a direction classification, a
rule-based clinical judgment and, when warranted, a single alert.
"""
