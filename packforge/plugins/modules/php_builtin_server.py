from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import web_dir


@dataclass
class PhpBuiltinServerModule:
    name: str = "php_builtin_server"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"web_dir": web_dir(step)}

    def build(self, step: BuildStep) -> LayerContribution:
        wd = web_dir(step)
        if not (step.source / wd).is_dir():
            step.log.line(f"  Web directory {wd!r} not found in application source")

        command = f'php -S 0.0.0.0:"${{PORT:-80}}" -t {wd}'
        out = LayerContribution(name="php-builtin-server", flags=LayerFlags(launch=True))
        out.metadata = {"web_dir": wd}
        out.process("web", command)
        step.log.line(f"  web: {command}")
        return out


MODULE = PhpBuiltinServerModule()
