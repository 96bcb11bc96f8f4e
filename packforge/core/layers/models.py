from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from packforge.core.environment.models import EnvironmentOperation, EnvironmentSnapshot

if TYPE_CHECKING:
    from packforge.core.bindings.models import BindingIndex
    from packforge.core.context import BuildContext
    from packforge.core.plan.events import BuildLog
    from packforge.core.plan.models import ModuleDescriptor

LAYERS_ROOT = "/layers"


def layer_path(owner: str, name: str) -> str:
    """Where a layer is mounted in the image, e.g. /layers/paketo-buildpacks_php-dist/php"""
    return f"{LAYERS_ROOT}/{owner.replace('/', '_')}/{name}"


@dataclass(frozen=True)
class LayerFlags:
    build: bool = False
    launch: bool = True
    cache: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"build": self.build, "launch": self.launch, "cache": self.cache}

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "LayerFlags":
        return LayerFlags(
            build=bool(d.get("build", False)),
            launch=bool(d.get("launch", True)),
            cache=bool(d.get("cache", False)),
        )


@dataclass(frozen=True)
class Layer:
    owner: str
    name: str
    flags: LayerFlags
    fingerprint: str
    files: Mapping[str, bytes] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    env: Tuple[EnvironmentOperation, ...] = ()
    processes: Mapping[str, str] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)
    # volatile: never part of the image identity
    cache_hit: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))
        object.__setattr__(self, "processes", MappingProxyType(dict(self.processes)))
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    @property
    def path(self) -> str:
        return layer_path(self.owner, self.name)

    def restored(self) -> "Layer":
        return replace(self, cache_hit=True)

    def to_record(self) -> Dict[str, Any]:
        """JSON-able form without file bytes (the cache stores those as files)."""
        return {
            "owner": self.owner,
            "name": self.name,
            "flags": self.flags.to_dict(),
            "fingerprint": self.fingerprint,
            "files": sorted(self.files),
            "metadata": dict(self.metadata),
            "env": [op.to_dict() for op in self.env],
            "processes": dict(self.processes),
            "labels": dict(self.labels),
        }

    @staticmethod
    def from_record(record: Mapping[str, Any], files: Mapping[str, bytes]) -> "Layer":
        return Layer(
            owner=record["owner"],
            name=record["name"],
            flags=LayerFlags.from_dict(record.get("flags") or {}),
            fingerprint=record["fingerprint"],
            files=files,
            metadata=record.get("metadata") or {},
            env=tuple(EnvironmentOperation.from_dict(d) for d in record.get("env") or []),
            processes=record.get("processes") or {},
            labels=record.get("labels") or {},
        )


@dataclass
class LayerContribution:
    """What a module's build step hands back; turned into a Layer by the contributor."""

    name: str
    flags: LayerFlags = field(default_factory=LayerFlags)
    files: Dict[str, bytes] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    env: List[EnvironmentOperation] = field(default_factory=list)
    processes: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    def file(self, path: str, content: bytes | str) -> "LayerContribution":
        if isinstance(content, str):
            content = content.encode("utf-8")
        self.files[path] = content
        return self

    def override(self, name: str, value: str) -> "LayerContribution":
        self.env.append(EnvironmentOperation.override(name, value))
        return self

    def default(self, name: str, value: str) -> "LayerContribution":
        self.env.append(EnvironmentOperation.default(name, value))
        return self

    def prepend(self, name: str, value: str, delimiter: Optional[str] = None) -> "LayerContribution":
        self.env.append(EnvironmentOperation.prepend(name, value, delimiter))
        return self

    def append(self, name: str, value: str, delimiter: Optional[str] = None) -> "LayerContribution":
        self.env.append(EnvironmentOperation.append(name, value, delimiter))
        return self

    def delimiter(self, name: str, delimiter: str) -> "LayerContribution":
        self.env.append(EnvironmentOperation.delim(name, delimiter))
        return self

    def process(self, process_type: str, command: str) -> "LayerContribution":
        self.processes[process_type] = command
        return self

    def label(self, key: str, value: str) -> "LayerContribution":
        self.labels[key] = value
        return self


@dataclass
class BuildStep:
    """
    View of the build handed to one module.

    `environment` is the snapshot after every earlier module in the plan,
    so a module sees (and may build on) what came before it.
    """

    module: "ModuleDescriptor"
    context: "BuildContext"
    environment: EnvironmentSnapshot
    matched: Tuple[str, ...] = ()

    @property
    def source(self) -> Path:
        return self.context.source

    @property
    def bindings(self) -> "BindingIndex":
        return self.context.bindings

    @property
    def log(self) -> "BuildLog":
        return self.context.log

    @property
    def stack_id(self) -> str:
        return self.context.config.stack.id

    def var(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.context.var(name)
        return default if value is None else value

    def env(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.environment.get(name, default)

    def layer_dir(self, name: str) -> str:
        return layer_path(self.module.id, name)
