"""Engine error definitions."""

import hashlib
from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Transient, retry immediately
    MEDIUM = "medium"     # Retry with backoff
    HIGH = "high"         # Caller must change something
    CRITICAL = "critical" # Process cannot do any work


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Timing, navigation races - retry
    DESTROYED = "destroyed"       # Page/context/browser gone - never retry
    VALIDATION = "validation"     # Malformed or missing input
    DEPENDENCY = "dependency"     # Driver not installed
    PERMANENT = "permanent"       # Config error, disabled capability


class ErrorCode(Enum):
    """Exit envelope codes understood by the broker."""
    MISSING_ARGUMENTS = 10
    INVALID_ARGS = 10
    DEPENDENCY_MISSING = 14
    ADAPTER_ERROR = 50


class FrameworkError(Exception):
    """Base exception for all engine errors."""

    code = ErrorCode.ADAPTER_ERROR
    msg = "ADAPTER_ERROR"

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("session_id", "")),
            str(self.context.get("locator", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def details(self) -> dict[str, Any]:
        """Details block of the failure envelope."""
        return {"message": self.message}

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(FrameworkError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class ValidationError(FrameworkError):
    """Request rejected before any browser resource was touched."""

    code = ErrorCode.INVALID_ARGS
    msg = "INVALID_ARGS"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class MissingArgumentsError(ValidationError):
    """One or more required request fields are absent."""

    code = ErrorCode.MISSING_ARGUMENTS
    msg = "MISSING_ARGUMENTS"

    def __init__(self, missing: list[str], **kwargs):
        super().__init__(f"Missing required arguments: {', '.join(missing)}", **kwargs)
        self.missing = list(missing)
        self.context["missing"] = self.missing

    def details(self) -> dict[str, Any]:
        return {"missing": self.missing}


class InvalidArgumentsError(ValidationError):
    """Request fields are present but malformed."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.context["field"] = field

    def details(self) -> dict[str, Any]:
        details = {"message": self.message}
        if self.context.get("field"):
            details["field"] = self.context["field"]
        return details


class CapabilityDisabledError(ValidationError):
    """Verb exists but has not been enabled for this process."""

    def __init__(self, message: str, capability: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        super().__init__(message, **kwargs)
        self.context["capability"] = capability


class DependencyMissingError(FrameworkError):
    """Browser driver is not installed."""

    code = ErrorCode.DEPENDENCY_MISSING
    msg = "DEPENDENCY_MISSING"

    def __init__(self, message: str, install: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.DEPENDENCY)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.install = install

    def details(self) -> dict[str, Any]:
        details = {"message": self.message}
        if self.install:
            details["install"] = self.install
        return details


class BrowserError(FrameworkError):
    """Browser automation error."""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        locator: Optional[Any] = None,
        url: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.context["session_id"] = session_id
        self.context["locator"] = locator
        self.context["url"] = url


class WaitTimeoutError(BrowserError):
    """Element or condition did not appear in time."""

    def __init__(self, message: str, timeout_ms: Optional[float] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(message, **kwargs)
        self.context["timeout_ms"] = timeout_ms


class TargetClosedError(BrowserError):
    """Underlying page, context or browser has been destroyed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.DESTROYED)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class TabNotFoundError(BrowserError):
    """Requested tab index is absent or closed."""

    def __init__(self, message: str, tab_index: Optional[int] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["tab_index"] = tab_index


class SessionCreateError(BrowserError):
    """Persistent browsing context could not be launched."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class AdapterError(FrameworkError):
    """Uniform failure reported for anything escaping a verb."""

    def __init__(self, message: str, error_type: str = "error", **kwargs):
        super().__init__(message, **kwargs)
        self.error_type = error_type

    def details(self) -> dict[str, Any]:
        return {"message": self.message, "errorType": self.error_type}
