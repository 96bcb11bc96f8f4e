from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags

SOCKET = "/tmp/php-fpm.socket"


@dataclass
class PhpFpmModule:
    name: str = "php_fpm"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"php_home": step.env("PHP_HOME"), "socket": SOCKET}

    def build(self, step: BuildStep) -> LayerContribution:
        home = step.layer_dir("php-fpm-config")
        conf = "\n".join([
            "[global]",
            "pid = /tmp/php-fpm.pid",
            "error_log = /proc/self/fd/2",
            "",
            "[www]",
            f"listen = {SOCKET}",
            "pm = dynamic",
            "pm.max_children = 5",
            "pm.start_servers = 2",
            "pm.min_spare_servers = 1",
            "pm.max_spare_servers = 3",
            "clear_env = no",
            "",
        ])
        out = LayerContribution(name="php-fpm-config", flags=LayerFlags(build=True, launch=True))
        out.file("base.conf", conf)
        out.metadata = {"listen": SOCKET}
        out.override("PHP_FPM_PATH", f"{home}/base.conf")
        return out


MODULE = PhpFpmModule()
