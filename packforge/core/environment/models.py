from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

OPERATION_KINDS = ("override", "prepend", "append", "default", "delimiter")


@dataclass(frozen=True)
class EnvironmentOperation:
    name: str
    kind: str
    value: str = ""
    delimiter: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("environment operation needs a variable name")
        if self.kind not in OPERATION_KINDS:
            raise ValueError(f"unknown environment operation kind {self.kind!r}")

    @classmethod
    def override(cls, name: str, value: str) -> "EnvironmentOperation":
        return cls(name=name, kind="override", value=value)

    @classmethod
    def default(cls, name: str, value: str) -> "EnvironmentOperation":
        return cls(name=name, kind="default", value=value)

    @classmethod
    def prepend(cls, name: str, value: str, delimiter: Optional[str] = None) -> "EnvironmentOperation":
        return cls(name=name, kind="prepend", value=value, delimiter=delimiter)

    @classmethod
    def append(cls, name: str, value: str, delimiter: Optional[str] = None) -> "EnvironmentOperation":
        return cls(name=name, kind="append", value=value, delimiter=delimiter)

    @classmethod
    def delim(cls, name: str, delimiter: str) -> "EnvironmentOperation":
        return cls(name=name, kind="delimiter", delimiter=delimiter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "value": self.value,
            "delimiter": self.delimiter,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "EnvironmentOperation":
        return EnvironmentOperation(
            name=d["name"],
            kind=d["kind"],
            value=d.get("value", "") or "",
            delimiter=d.get("delimiter"),
        )


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """
    Effective environment after some prefix of the plan.

    Never mutated; the merger returns a new snapshot per step. `log` holds
    (owner, operation) pairs in the order they were applied.
    """

    values: Mapping[str, str] = field(default_factory=dict)
    delimiters: Mapping[str, str] = field(default_factory=dict)
    log: Tuple[Tuple[str, EnvironmentOperation], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))
        object.__setattr__(self, "delimiters", MappingProxyType(dict(self.delimiters)))

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(name, default)

    def as_dict(self) -> Dict[str, str]:
        return {k: self.values[k] for k in sorted(self.values)}
