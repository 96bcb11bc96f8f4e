from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class PackforgeError(Exception):
    code = "packforge.error"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ConfigurationError(PackforgeError):
    """Structurally unreadable configuration. Fatal for the run."""

    code = "config.invalid"


class BindingConfigurationError(ConfigurationError):
    code = "bindings.unreadable"


class OrderConfigurationError(ConfigurationError):
    code = "order.invalid"


class DetectionFailure(PackforgeError):
    """
    No order group had all of its required members detect.

    groups: [{"group": <index>, "failures": [{"module": "<id>@<version>", "reason": "..."}]}]
    """

    code = "detect.failed"

    def __init__(self, groups: List[Dict[str, Any]]):
        self.groups = groups
        attempted = len(groups)
        super().__init__(f"No order group passed detection ({attempted} group(s) attempted)")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "groups": self.groups,
        }


class BuildFailure(PackforgeError):
    code = "build.failed"

    def __init__(self, module: str, reason: str, *, phase: str = "build"):
        self.module = module
        self.reason = reason
        self.phase = phase
        super().__init__(f"{module} failed during {phase}: {reason}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "module": self.module,
            "phase": self.phase,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ConfigurationWarning:
    """Malformed but non-fatal input; the affected optional feature is treated as absent."""

    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    severity: str = "warn"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "data": dict(self.data),
        }


def collect_warning(
    sink: Optional[List[ConfigurationWarning]],
    code: str,
    message: str,
    **data: Any,
) -> ConfigurationWarning:
    w = ConfigurationWarning(code=code, message=message, data=data)
    if sink is not None:
        sink.append(w)
    return w
