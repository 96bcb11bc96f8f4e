from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import launcher

VERSION = "1.25.4"


@dataclass
class NginxModule:
    name: str = "nginx"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"version": VERSION, "stack": step.stack_id}

    def build(self, step: BuildStep) -> LayerContribution:
        home = step.layer_dir("nginx")
        out = LayerContribution(name="nginx", flags=LayerFlags(launch=True, cache=True))
        out.file("sbin/nginx", launcher(f"/usr/lib/nginx/{VERSION}/sbin/nginx"))
        out.metadata = {"version": VERSION}
        out.prepend("PATH", f"{home}/sbin", ":")
        return out


MODULE = NginxModule()
