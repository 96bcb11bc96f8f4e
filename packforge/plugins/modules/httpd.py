from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import launcher

VERSION = "2.4.58"


@dataclass
class HttpdModule:
    name: str = "httpd"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"version": VERSION, "stack": step.stack_id}

    def build(self, step: BuildStep) -> LayerContribution:
        home = step.layer_dir("httpd")
        out = LayerContribution(name="httpd", flags=LayerFlags(launch=True, cache=True))
        out.file("bin/httpd", launcher(f"/usr/lib/httpd/{VERSION}/bin/httpd"))
        out.metadata = {"version": VERSION}
        out.prepend("PATH", f"{home}/bin", ":")
        out.override("APP_ROOT", "/workspace")
        return out


MODULE = HttpdModule()
