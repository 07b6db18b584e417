# prompt_debugger/errors.py

from typing import Any, Dict, List, Optional


class PromptDebuggerError(Exception):
    """
    Base class for every error the analysis pipeline raises.

    `kind` is the stable identifier used in structured error payloads.
    """

    kind = "internal_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = dict(self.details)
        return out

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}" if self.message else self.kind


class RequestError(PromptDebuggerError):
    kind = "request_error"

    def __init__(self, missing_fields: List[str], message: Optional[str] = None):
        self.missing_fields = list(missing_fields)
        super().__init__(
            message or f"Missing required fields: {', '.join(self.missing_fields)}",
            missing_fields=self.missing_fields,
        )


class ServiceError(PromptDebuggerError):
    kind = "service_error"


class PipelineTimeoutError(ServiceError):
    kind = "timeout"


class ParseError(PromptDebuggerError):
    kind = "parse_error"


class SchemaError(PromptDebuggerError):
    kind = "schema_error"

    def __init__(self, violations: List[str], message: Optional[str] = None):
        self.violations = list(violations)
        super().__init__(
            message or f"{len(self.violations)} schema violation(s)",
            violations=self.violations,
        )


class PatchApplicationError(PromptDebuggerError):
    kind = "patch_error"

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Modification #{index} could not be applied: {reason}", index=index, reason=reason)


class EncodingError(PromptDebuggerError):
    kind = "encoding_error"


class ConfigurationError(PromptDebuggerError):
    kind = "configuration_error"


class PromptIntegrityError(ConfigurationError):
    kind = "prompt_integrity_error"
