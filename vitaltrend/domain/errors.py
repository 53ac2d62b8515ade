"""
Error taxonomy for the trend pipeline.

Only ValidationError escapes a batch; everything else is recovered locally
or recorded against the metric that raised it.
"""


class TrendError(Exception):
    """Base class for trend pipeline errors."""


class ValidationError(TrendError, ValueError):
    """The request itself is unusable (missing or invalid patient_id, bad window)."""


class PatientNotFoundError(ValidationError):
    """No patient with the given id is known to the patient directory."""

    def __init__(self, patient_id: str) -> None:
        super().__init__(f"Patient not found: {patient_id}")
        self.patient_id = patient_id


class InsufficientDataError(TrendError):
    """Fewer than two samples exist for a metric in the window."""

    def __init__(self, metric_name: str, count: int) -> None:
        super().__init__(
            f"At least 2 data points required for {metric_name}, found {count}"
        )
        self.metric_name = metric_name
        self.count = count


class CollaboratorUnavailable(TrendError):
    """The narrative generator timed out, errored, or is switched off."""


class PersistenceError(TrendError):
    """Writing a trend record failed."""
