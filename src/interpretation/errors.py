"""
Error taxonomy for the interpretation engine.

Four failure classes, each with a stable code and the HTTP-equivalent
status a transport layer would report:

- ConfigurationError: bad catalog data, raised at load time (500)
- InterpretationNotFoundError: unknown interpretation or evaluation (404)
- InvalidPropertyDataError: value does not fit the curve domain (400)
- EvaluationError: unexpected failure during a tree walk (500)

Missing property values are NOT errors; they flow through the tree as
"not rated".
"""

from typing import Any, Optional


class InterpretationEngineError(Exception):
    """Base class for all engine errors."""

    code = "ENGINE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data = {
            "type": type(self).__name__,
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            data["details"] = dict(self.details)
        return data


class ConfigurationError(InterpretationEngineError, ValueError):
    """Catalog data is malformed or internally inconsistent."""

    code = "CONFIGURATION_ERROR"
    status_code = 500


class InterpretationNotFoundError(InterpretationEngineError, LookupError):
    """An interpretation name or evaluation reference could not be resolved."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, name: str, kind: str = "Interpretation"):
        super().__init__(f"{kind} not found: {name}", {"name": name, "kind": kind})
        self.name = name
        self.kind = kind


class InvalidPropertyDataError(InterpretationEngineError, ValueError):
    """A supplied property value does not match the evaluation's domain."""

    code = "INVALID_PROPERTY_DATA"
    status_code = 400


class EvaluationError(InterpretationEngineError):
    """Unexpected internal failure while walking a rule tree."""

    code = "EVALUATION_ERROR"
    status_code = 500

    def __init__(self, message: str, node_key: Optional[str] = None, details=None):
        details = dict(details or {})
        if node_key is not None:
            details["node"] = node_key
        super().__init__(message, details)
        self.node_key = node_key
