from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import yaml

from packforge.core.errors import BuildFailure
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import APP_DIR

MODULE_ID = "paketo-buildpacks/php-start"


@dataclass
class PhpStartModule:
    """
    Writes the process-manager file that starts php-fpm next to the web
    server configured by an earlier module.
    """

    name: str = "php_start"

    def _procs(self, step: BuildStep) -> Dict[str, Any]:
        fpm = step.env("PHP_FPM_PATH")
        nginx = step.env("PHP_NGINX_PATH")
        httpd = step.env("PHP_HTTPD_PATH")

        procs: Dict[str, Any] = {}
        if nginx:
            procs["nginx"] = {"command": "nginx", "args": ["-p", APP_DIR, "-c", nginx]}
        elif httpd:
            procs["httpd"] = {"command": "httpd", "args": ["-f", httpd, "-k", "start", "-DFOREGROUND"]}
        else:
            raise BuildFailure(MODULE_ID, "no web server configuration found (PHP_NGINX_PATH or PHP_HTTPD_PATH)")

        if fpm:
            procs["php-fpm"] = {"command": "php-fpm", "args": ["-y", fpm, "-c", step.env("PHPRC") or ""]}
        return {"processes": procs}

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {
            "fpm": step.env("PHP_FPM_PATH"),
            "nginx": step.env("PHP_NGINX_PATH"),
            "httpd": step.env("PHP_HTTPD_PATH"),
            "phprc": step.env("PHPRC"),
        }

    def build(self, step: BuildStep) -> LayerContribution:
        procs = self._procs(step)
        home = step.layer_dir("php-start")

        out = LayerContribution(name="php-start", flags=LayerFlags(launch=True))
        out.file("procs.yml", yaml.safe_dump(procs, sort_keys=True, default_flow_style=False))
        out.metadata = {"processes": sorted(procs["processes"])}

        command = f"procmgr-binary {home}/procs.yml"
        out.process("web", command)
        step.log.line(f"  web: {command}")
        return out


MODULE = PhpStartModule()
