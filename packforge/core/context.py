"""
Per-build configuration and state.

BuildConfiguration is what a caller hands the engine: the platform
environment (BP_*, BPE_*, SERVICE_BINDING_ROOT, ...), the stack and a few
switches. BuildContext is owned by exactly one run and is never shared
between concurrent builds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from packforge.core.bindings.models import BindingIndex
from packforge.core.environment.models import EnvironmentSnapshot
from packforge.core.errors import ConfigurationWarning
from packforge.core.plan.events import BuildLog

if TYPE_CHECKING:
    from packforge.core.layers.models import Layer
    from packforge.core.plan.models import DetectionPlan

DEFAULT_STACK_ID = "io.buildpacks.stacks.jammy"


class StackSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = DEFAULT_STACK_ID
    build_image: str = "paketobuildpacks/build-jammy-full:latest"
    run_image: str = "paketobuildpacks/run-jammy-full:latest"
    run_image_digest: Optional[str] = None

    def identity(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_image": self.run_image,
            "run_image_digest": self.run_image_digest,
        }


class BuildConfiguration(BaseModel):
    model_config = ConfigDict(extra="forbid")

    env: Dict[str, str] = Field(default_factory=dict)
    stack: StackSpec = Field(default_factory=StackSpec)
    binding_root: Optional[str] = None
    clear_cache: bool = False
    order_file: Optional[str] = None

    def var(self, name: str) -> Optional[str]:
        return self.env.get(name)

    def resolved_binding_root(self) -> Optional[Path]:
        raw = (self.binding_root or self.env.get("SERVICE_BINDING_ROOT") or "").strip()
        return Path(raw) if raw else None

    @property
    def log_level(self) -> str:
        return (self.env.get("BP_LOG_LEVEL") or "INFO").strip().upper()

    @property
    def debug(self) -> bool:
        return self.log_level == "DEBUG"


@dataclass
class BuildContext:
    source: Path
    config: BuildConfiguration
    bindings: BindingIndex = field(default_factory=BindingIndex)
    environment: EnvironmentSnapshot = field(default_factory=EnvironmentSnapshot)
    layers: List["Layer"] = field(default_factory=list)
    plan: Optional["DetectionPlan"] = None
    warnings: List[ConfigurationWarning] = field(default_factory=list)
    log: BuildLog = field(default_factory=BuildLog)

    def var(self, name: str) -> Optional[str]:
        return self.config.var(name)
