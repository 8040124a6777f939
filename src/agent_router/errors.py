"""
Error taxonomy for the agent router.

Every failure the router can surface derives from RouterError so the MCP
tools and CLI have one boundary type to translate into payloads and exit
codes. The hierarchy mirrors the three phases of a request:

- Config load: ConfigError, PatternError, RuleTooComplex (fatal, never retried)
- Backend lifecycle: LifecycleError and its per-step subclasses
- Classification: ClassificationError and its backend/request subclasses
"""

from typing import List, Optional


class RouterError(Exception):
    """Base class for all agent router errors."""

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable error payload."""
        return {"error": str(self), "error_type": type(self).__name__}


# =============================================================================
# Configuration errors (fatal at load time)
# =============================================================================


class ConfigError(RouterError):
    """Raised when the agent/rule/tag configuration is malformed or inconsistent."""

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.rule = rule

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.rule is not None:
            data["rule"] = self.rule
        return data


class PatternError(ConfigError):
    """Raised when a glob or regex pattern fails to compile."""

    def __init__(self, pattern: str, kind: str, reason: str, rule: Optional[str] = None):
        owner = f" in rule '{rule}'" if rule else ""
        super().__init__(f"Invalid {kind} pattern '{pattern}'{owner}: {reason}", rule=rule)
        self.pattern = pattern
        self.kind = kind
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["pattern"] = self.pattern
        return data


class RuleTooComplex(ConfigError):
    """Raised when a condition tree nests deeper than the evaluator allows."""

    def __init__(self, limit: int, rule: Optional[str] = None):
        owner = f"Rule '{rule}'" if rule else "Condition"
        super().__init__(
            f"{owner} exceeds the maximum condition nesting depth of {limit}",
            rule=rule,
        )
        self.limit = limit


# =============================================================================
# Backend lifecycle errors
# =============================================================================


class LifecycleError(RouterError):
    """
    Raised when the inference backend cannot be brought to the ready state.

    Attributes:
        step: Lifecycle step that failed ("install", "start", "pull", "load")
        steps_performed: Steps completed before the failure, in order
        remediation: Actionable hint for the caller
    """

    step = "unknown"

    def __init__(
        self,
        message: str,
        steps_performed: Optional[List[str]] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message)
        self.steps_performed = list(steps_performed or [])
        self.remediation = remediation

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        data["steps_performed"] = self.steps_performed
        if self.remediation:
            data["remediation"] = self.remediation
        return data


class NotInstalled(LifecycleError):
    """The backend executable is not installed."""

    step = "install"


class StartFailed(LifecycleError):
    """The backend service could not be started."""

    step = "start"


class PullFailed(LifecycleError):
    """The configured model could not be downloaded."""

    step = "pull"


class LoadFailed(LifecycleError):
    """The model could not be loaded into memory."""

    step = "load"


class LifecycleTimeout(LifecycleError):
    """A corrective lifecycle action did not finish within its timeout."""

    def __init__(
        self,
        step: str,
        timeout: float,
        steps_performed: Optional[List[str]] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(
            f"Timed out after {timeout:g}s waiting for backend step '{step}'",
            steps_performed=steps_performed,
            remediation=remediation,
        )
        self.step = step
        self.timeout = timeout


# =============================================================================
# Classification errors
# =============================================================================


class ClassificationError(RouterError):
    """Raised when a classification request cannot be answered."""

    pass


class InvalidRequest(ClassificationError):
    """The classification request exceeds an input limit or is missing fields."""

    pass


class BackendUnavailable(ClassificationError):
    """The inference backend could not be reached or is not ready."""

    pass


class BackendTimeout(BackendUnavailable):
    """An inference call did not complete within the request timeout."""

    pass


class PrerequisiteError(BackendUnavailable):
    """
    The backend is not ready and a lifecycle step must be run first.

    Attributes:
        step: Missing lifecycle step ("install", "start", "pull", "load")
    """

    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["step"] = self.step
        data["remediation"] = "Run init_llm to prepare the backend."
        return data


class BackendMalformedResponse(ClassificationError):
    """The backend answered, but the answer could not be interpreted."""

    pass
