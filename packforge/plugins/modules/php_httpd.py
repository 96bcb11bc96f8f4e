from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import app_path, flag, web_dir


@dataclass
class PhpHttpdModule:
    name: str = "php_httpd"

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
        home = step.layer_dir("php-httpd-config")
        root = app_path(s["web_dir"])

        lines = [
            "ServerRoot \"${SERVER_ROOT}\"",
            "Listen \"${PORT}\"",
            "LoadModule proxy_module modules/mod_proxy.so",
            "LoadModule proxy_fcgi_module modules/mod_proxy_fcgi.so",
            "LoadModule rewrite_module modules/mod_rewrite.so",
            f"DocumentRoot \"{root}\"",
            "DirectoryIndex index.php index.html",
            "<FilesMatch \"\\.php$\">",
            "  SetHandler \"proxy:unix:/tmp/php-fpm.socket|fcgi://localhost\"",
            "</FilesMatch>",
        ]
        if s["https_redirect"]:
            lines += [
                "RewriteEngine On",
                "RewriteCond %{HTTP:X-Forwarded-Proto} =http",
                "RewriteRule ^ https://%{HTTP_HOST}%{REQUEST_URI} [R=301,L]",
            ]
        lines.append("")

        out = LayerContribution(name="php-httpd-config", flags=LayerFlags(build=True, launch=True))
        out.file("httpd.conf", "\n".join(lines))
        out.metadata = {"web_dir": s["web_dir"], "https_redirect": s["https_redirect"]}
        out.override("PHP_HTTPD_PATH", f"{home}/httpd.conf")
        return out


MODULE = PhpHttpdModule()
