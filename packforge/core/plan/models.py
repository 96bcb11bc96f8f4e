from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from packforge.core.detection.predicates import DetectResult, DetectSpec


@dataclass(frozen=True)
class Requirement:
    name: str
    # an optional requirement is satisfied by absence
    optional: bool = False


@dataclass(frozen=True)
class ModuleDescriptor:
    id: str
    version: str
    name: str
    provides: Tuple[str, ...] = ()
    requires: Tuple[Requirement, ...] = ()
    exclusive: Tuple[str, ...] = ()
    detect: DetectSpec = field(default_factory=DetectSpec)
    implementation: Optional[str] = None
    exec_command: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.id}@{self.version}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "provides": list(self.provides),
            "requires": [{"name": r.name, "optional": r.optional} for r in self.requires],
            "exclusive": list(self.exclusive),
            "detect": self.detect.to_dict(),
            "implementation": self.implementation,
            "exec": list(self.exec_command) or None,
        }


@dataclass(frozen=True)
class GroupEntry:
    module: ModuleDescriptor
    optional: bool = False


@dataclass(frozen=True)
class OrderGroup:
    entries: Tuple[GroupEntry, ...]

    @property
    def required(self) -> List[GroupEntry]:
        return [e for e in self.entries if not e.optional]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": [
                {"id": e.module.id, "version": e.module.version, "optional": e.optional}
                for e in self.entries
            ]
        }


@dataclass(frozen=True)
class PlanEntry:
    module: ModuleDescriptor
    optional: bool
    detection: DetectResult


@dataclass(frozen=True)
class DetectionPlan:
    """
    Modules selected from the first passing order group.

    Entries keep the group's declaration order. `skipped` explains every
    member of that group that is not in the plan.
    """

    group_index: int
    entries: Tuple[PlanEntry, ...]
    skipped: Tuple[Dict[str, Any], ...] = ()

    @property
    def modules(self) -> List[ModuleDescriptor]:
        return [e.module for e in self.entries]

    def ids(self) -> List[str]:
        return [e.module.id for e in self.entries]

    def contains(self, module_id: str) -> bool:
        return any(e.module.id == module_id for e in self.entries)

    def entry(self, module_id: str) -> Optional[PlanEntry]:
        for e in self.entries:
            if e.module.id == module_id:
                return e
        return None

    def provides(self, capability: str) -> bool:
        return any(capability in e.module.provides for e in self.entries)

    def without(self, module_id: str, reason: str) -> "DetectionPlan":
        kept = tuple(e for e in self.entries if e.module.id != module_id)
        dropped = [e for e in self.entries if e.module.id == module_id]
        skipped = list(self.skipped)
        for e in dropped:
            skipped.append({"module": e.module.key, "optional": e.optional, "reason": reason})
        return replace(self, entries=kept, skipped=tuple(skipped))

    def compute_plan_id(self) -> str:
        payload = [[e.module.id, e.module.version] for e in self.entries]
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.compute_plan_id(),
            "group_index": self.group_index,
            "modules": [
                {
                    "id": e.module.id,
                    "version": e.module.version,
                    "name": e.module.name,
                    "optional": e.optional,
                    "reason": e.detection.reason,
                    "matched": list(e.detection.matched),
                }
                for e in self.entries
            ],
            "skipped": [dict(s) for s in self.skipped],
        }
