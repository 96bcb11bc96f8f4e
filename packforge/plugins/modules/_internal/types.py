from __future__ import annotations

from typing import Any, Dict, Protocol

from packforge.core.layers.models import BuildStep, LayerContribution


class ModuleImplementation(Protocol):
    name: str

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        ...

    def build(self, step: BuildStep) -> LayerContribution:
        ...
