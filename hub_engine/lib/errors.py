"""
Custom error classes for Revenue Signal Hub.
Structured error handling with error codes across all modules.

Hierarchy:
    HubError
    ├── DataError
    │   ├── UnknownFieldError
    │   ├── DataFetchError
    │   └── ConfigError
    └── ExternalServiceError
        ├── RecommendationError
        ├── SignalSourceError
        └── CircuitOpenError
"""


class HubError(Exception):
    """Base exception for all Revenue Signal Hub errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- Data Errors ---

class DataError(HubError):
    """Base class for record and configuration data errors."""
    pass


class UnknownFieldError(DataError):
    """A referenced field does not exist in the caller's data source."""

    def __init__(self, field: str = None, object_type: str = None, message: str = None):
        self.field = field
        self.object_type = object_type
        msg = message or f"No such field '{field}' on {object_type or 'object'}"
        super().__init__(
            msg, code="UNKNOWN_FIELD",
            details={"field": field, "object_type": object_type},
        )


class DataFetchError(DataError):
    """Failed to fetch records from the data source."""

    def __init__(self, message: str, source: str = None, status_code: int = None):
        self.status_code = status_code
        super().__init__(
            message, code="DATA_FETCH_FAILED",
            details={"source": source, "status_code": status_code},
        )


class ConfigError(DataError):
    """Admin or process configuration could not be resolved."""

    def __init__(self, message: str, setting_key: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"setting_key": setting_key},
        )


# --- External Service Errors ---

class ExternalServiceError(HubError):
    """Base class for failures of an external collaborator."""

    def __init__(self, message: str, code: str = "EXTERNAL_ERROR",
                 service: str = None, **kwargs):
        self.service = service
        super().__init__(message, code=code, details={"service": service, **kwargs})


class RecommendationError(ExternalServiceError):
    """The recommendation generator failed or returned nothing usable."""

    def __init__(self, message: str, prompt_type: str = None):
        super().__init__(
            message, code="RECOMMENDATION_FAILED",
            service="recommendations", prompt_type=prompt_type,
        )


class SignalSourceError(ExternalServiceError):
    """The call-intelligence signal source could not be read."""

    def __init__(self, message: str, subject_id: str = None):
        super().__init__(
            message, code="SIGNAL_SOURCE_FAILED",
            service="call_intelligence", subject_id=subject_id,
        )


class CircuitOpenError(ExternalServiceError):
    """Circuit breaker is open; calls are blocked."""

    def __init__(self, service: str, failures: int, reset_time: float):
        super().__init__(
            f"Circuit open for '{service}' after {failures} failures. "
            f"Resets in {reset_time:.0f}s.",
            code="CIRCUIT_OPEN", service=service,
        )
