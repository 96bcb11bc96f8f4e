from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

MATCH_MODES = ("all", "any")


@dataclass(frozen=True)
class FileExists:
    path: str
    kind: ClassVar[str] = "file-exists"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": self.path}


@dataclass(frozen=True)
class EnvSet:
    name: str
    pattern: Optional[str] = None  # full-match regex on the value
    kind: ClassVar[str] = "env-set"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "pattern": self.pattern}


@dataclass(frozen=True)
class EnvPrefix:
    prefix: str
    kind: ClassVar[str] = "env-prefix"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "prefix": self.prefix}


@dataclass(frozen=True)
class BindingPresent:
    type: str
    kind: ClassVar[str] = "binding-present"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "type": self.type}


Predicate = Union[FileExists, EnvSet, EnvPrefix, BindingPresent]

PREDICATE_KINDS = {
    FileExists.kind: FileExists,
    EnvSet.kind: EnvSet,
    EnvPrefix.kind: EnvPrefix,
    BindingPresent.kind: BindingPresent,
}


@dataclass(frozen=True)
class DetectSpec:
    """No predicates means the module always detects."""

    predicates: Tuple[Predicate, ...] = ()
    match: str = "all"

    def __post_init__(self) -> None:
        if self.match not in MATCH_MODES:
            raise ValueError(f"detect match must be one of {MATCH_MODES}, got {self.match!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"match": self.match, "predicates": [p.to_dict() for p in self.predicates]}


@dataclass(frozen=True)
class DetectResult:
    included: bool
    reason: str
    # variable names picked up by env-prefix predicates, sorted
    matched: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"included": self.included, "reason": self.reason, "matched": list(self.matched)}
