from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import launcher

DEFAULT_VERSION = "2.7.2"


@dataclass
class ComposerModule:
    """Makes the composer executable available to later build steps only."""

    name: str = "composer"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"version": step.var("BP_COMPOSER_VERSION") or DEFAULT_VERSION}

    def build(self, step: BuildStep) -> LayerContribution:
        version = step.var("BP_COMPOSER_VERSION") or DEFAULT_VERSION
        home = step.layer_dir("composer")
        step.log.line(f"  Selected Composer version {version}")

        out = LayerContribution(name="composer", flags=LayerFlags(build=True, launch=False, cache=True))
        out.file("bin/composer", launcher(f"php {home}/composer.phar"))
        out.metadata = {"version": version}
        out.prepend("PATH", f"{home}/bin", ":")
        return out


MODULE = ComposerModule()
