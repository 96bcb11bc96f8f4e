"""
Order configuration loader.

An order file holds a catalog of module descriptors and the ordered list of
groups built from them:

    modules:
      - id: paketo-buildpacks/php-dist
        version: 1.2.3
        name: PHP Distribution Buildpack
        provides: [php]
        implementation: php_dist
    order:
      - group:
          - {id: paketo-buildpacks/php-dist, optional: false}

Descriptors and groups are read once per run and are immutable afterwards.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from packforge.core.detection.predicates import BindingPresent, DetectSpec, EnvPrefix, EnvSet, FileExists
from packforge.core.errors import OrderConfigurationError
from packforge.core.plan.models import GroupEntry, ModuleDescriptor, OrderGroup, Requirement

_log = logging.getLogger("packforge.config")


class PredicateModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["file-exists", "env-set", "env-prefix", "binding-present"]
    path: Optional[str] = None
    name: Optional[str] = None
    pattern: Optional[str] = None
    prefix: Optional[str] = None
    type: Optional[str] = None

    @model_validator(mode="after")
    def _check_fields(self) -> "PredicateModel":
        needed = {
            "file-exists": "path",
            "env-set": "name",
            "env-prefix": "prefix",
            "binding-present": "type",
        }[self.kind]
        if not getattr(self, needed):
            raise ValueError(f"{self.kind} predicate requires '{needed}'")
        return self

    def to_predicate(self):
        if self.kind == "file-exists":
            return FileExists(path=self.path)
        if self.kind == "env-set":
            return EnvSet(name=self.name, pattern=self.pattern)
        if self.kind == "env-prefix":
            return EnvPrefix(prefix=self.prefix)
        return BindingPresent(type=self.type)


class DetectModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    match: Literal["all", "any"] = "all"
    predicates: List[PredicateModel] = Field(default_factory=list)


class RequirementModel(BaseModel):
    name: str
    optional: bool = False


class ModuleModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str
    version: str
    name: str
    provides: List[str] = Field(default_factory=list)
    requires: List[RequirementModel] = Field(default_factory=list)
    exclusive: List[str] = Field(default_factory=list)
    detect: DetectModel = Field(default_factory=DetectModel)
    implementation: Optional[str] = None
    exec_command: Optional[List[str]] = Field(default=None, alias="exec")

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, v: Any) -> Any:
        # YAML reads `version: 1.2` as a float
        return str(v) if isinstance(v, (int, float)) else v

    @field_validator("requires", mode="before")
    @classmethod
    def _requires_shorthand(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"name": x} if isinstance(x, str) else x for x in v]
        return v

    @model_validator(mode="after")
    def _one_build_step(self) -> "ModuleModel":
        if bool(self.implementation) == bool(self.exec_command):
            raise ValueError(f"module {self.id} must declare exactly one of 'implementation' or 'exec'")
        return self

    def to_descriptor(self) -> ModuleDescriptor:
        return ModuleDescriptor(
            id=self.id,
            version=self.version,
            name=self.name,
            provides=tuple(self.provides),
            requires=tuple(Requirement(name=r.name, optional=r.optional) for r in self.requires),
            exclusive=tuple(self.exclusive),
            detect=DetectSpec(
                predicates=tuple(p.to_predicate() for p in self.detect.predicates),
                match=self.detect.match,
            ),
            implementation=self.implementation,
            exec_command=tuple(self.exec_command or ()),
        )


class OrderEntryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    version: Optional[str] = None
    optional: bool = False

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v


class OrderGroupModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    group: List[OrderEntryModel]


class OrderFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    modules: List[ModuleModel]
    order: List[OrderGroupModel]


@dataclass(frozen=True)
class OrderConfiguration:
    modules: Dict[str, ModuleDescriptor]
    groups: Tuple[OrderGroup, ...]
    fingerprint: str
    source: str = "<memory>"

    def module(self, module_id: str, version: Optional[str] = None) -> Optional[ModuleDescriptor]:
        if version is not None:
            return self.modules.get(f"{module_id}@{version}")
        found = [m for m in self.modules.values() if m.id == module_id]
        return found[0] if len(found) == 1 else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "fingerprint": self.fingerprint,
            "modules": [self.modules[k].to_dict() for k in sorted(self.modules)],
            "order": [g.to_dict() for g in self.groups],
        }


def _lookup(catalog: Dict[str, ModuleDescriptor], entry: OrderEntryModel, group_index: int) -> ModuleDescriptor:
    if entry.version is not None:
        found = catalog.get(f"{entry.id}@{entry.version}")
        if found is None:
            raise OrderConfigurationError(
                f"order group {group_index} references unknown module {entry.id}@{entry.version}"
            )
        return found

    candidates = [m for m in catalog.values() if m.id == entry.id]
    if not candidates:
        raise OrderConfigurationError(f"order group {group_index} references unknown module {entry.id}")
    if len(candidates) > 1:
        raise OrderConfigurationError(
            f"order group {group_index} must pin a version for {entry.id} "
            f"({', '.join(sorted(m.version for m in candidates))} available)"
        )
    return candidates[0]


def parse_order(data: Any, *, source: str = "<memory>") -> OrderConfiguration:
    try:
        model = OrderFileModel.model_validate(data)
    except ValidationError as e:
        raise OrderConfigurationError(f"invalid order configuration {source}: {e}") from e

    catalog: Dict[str, ModuleDescriptor] = {}
    for m in model.modules:
        d = m.to_descriptor()
        if d.key in catalog:
            raise OrderConfigurationError(f"duplicate module {d.key} in {source}")
        catalog[d.key] = d

    groups: List[OrderGroup] = []
    for gi, g in enumerate(model.order):
        entries = []
        seen = set()
        for e in g.group:
            d = _lookup(catalog, e, gi)
            if d.id in seen:
                raise OrderConfigurationError(f"order group {gi} lists {d.id} more than once")
            seen.add(d.id)
            entries.append(GroupEntry(module=d, optional=e.optional))
        if not entries:
            raise OrderConfigurationError(f"order group {gi} is empty")
        groups.append(OrderGroup(entries=tuple(entries)))

    if not groups:
        raise OrderConfigurationError(f"order configuration {source} declares no groups")

    canonical = yaml.safe_dump(model.model_dump(by_alias=True), sort_keys=True).encode("utf-8")
    fp = hashlib.sha256(canonical).hexdigest()[:16]

    return OrderConfiguration(modules=catalog, groups=tuple(groups), fingerprint=fp, source=source)


def load_order(path: Path) -> OrderConfiguration:
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise OrderConfigurationError(f"order configuration {path} is not readable: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise OrderConfigurationError(f"order configuration {path} is not valid YAML: {e}") from e

    cfg = parse_order(data, source=str(path))
    _log.debug("loaded %d module(s), %d group(s) from %s", len(cfg.modules), len(cfg.groups), path)
    return cfg
