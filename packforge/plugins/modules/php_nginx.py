from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import app_path, flag, web_dir


def render_conf(root: str, socket: str, https_redirect: bool) -> str:
    lines = [
        "daemon off;",
        "error_log stderr;",
        "events { worker_connections 1024; }",
        "http {",
        "  include mime.types;",
        "  access_log /dev/stdout;",
        "  server {",
        "    listen {{PORT}};",
        f"    root {root};",
        "    index index.php index.html;",
    ]
    if https_redirect:
        lines += [
            "    if ($http_x_forwarded_proto = \"http\") {",
            "      return 301 https://$host$request_uri;",
            "    }",
        ]
    lines += [
        "    location ~ \\.php$ {",
        f"      fastcgi_pass unix:{socket};",
        "      include fastcgi_params;",
        "      fastcgi_param SCRIPT_FILENAME $document_root$fastcgi_script_name;",
        "    }",
        "  }",
        "}",
        "",
    ]
    return "\n".join(lines)


@dataclass
class PhpNginxModule:
    """Points nginx at php-fpm and at the application's web directory."""

    name: str = "php_nginx"

    def _settings(self, step: BuildStep) -> Dict[str, Any]:
        return {
            "web_dir": web_dir(step),
            "https_redirect": flag(step, "BP_PHP_ENABLE_HTTPS_REDIRECT", True),
            "fpm": step.env("PHP_FPM_PATH"),
        }

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return self._settings(step)

    def build(self, step: BuildStep) -> LayerContribution:
        s = self._settings(step)
        home = step.layer_dir("php-nginx-config")
        conf = render_conf(app_path(s["web_dir"]), "/tmp/php-fpm.socket", s["https_redirect"])

        out = LayerContribution(name="php-nginx-config", flags=LayerFlags(build=True, launch=True))
        out.file("nginx.conf", conf)
        out.metadata = {"web_dir": s["web_dir"], "https_redirect": s["https_redirect"]}
        out.override("PHP_NGINX_PATH", f"{home}/nginx.conf")
        return out


MODULE = PhpNginxModule()
