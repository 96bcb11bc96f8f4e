from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.errors import BuildFailure
from packforge.core.hashing import sha256_hex
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags

MODULE_ID = "paketo-buildpacks/php-memcached-session-handler"
BINDING_TYPES = ("php-memcached-session", "memcached-session")
DEFAULT_SERVERS = "127.0.0.1"


@dataclass
class PhpMemcachedSessionModule:
    """Stores PHP sessions in the memcached servers named by a service binding."""

    name: str = "php_memcached_session"

    def _settings(self, step: BuildStep) -> Dict[str, Any]:
        b = step.bindings.first(*BINDING_TYPES)
        if b is None:
            raise BuildFailure(MODULE_ID, f"no binding of type {' or '.join(BINDING_TYPES)}")
        return {
            "binding": b.name,
            "servers": b.text("servers", DEFAULT_SERVERS),
            "username": b.text("username"),
            "password": b.text("password"),
        }

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        s = self._settings(step)
        s["password"] = sha256_hex(s["password"]) if s["password"] else None
        return s

    def build(self, step: BuildStep) -> LayerContribution:
        s = self._settings(step)
        home = step.layer_dir("php-memcached-config")

        ini = [
            "session.save_handler = memcached",
            f"session.save_path = \"{s['servers']}\"",
            "memcached.sess_binary = On",
        ]
        if s["username"]:
            ini.append(f"memcached.sess_sasl_username = \"{s['username']}\"")
        if s["password"]:
            ini.append(f"memcached.sess_sasl_password = \"{s['password']}\"")
        ini.append("")

        out = LayerContribution(name="php-memcached-config", flags=LayerFlags(launch=True))
        out.file("php.ini.d/memcached-session.ini", "\n".join(ini))
        out.metadata = {"binding": s["binding"], "servers": s["servers"]}

        out.append("PHP_INI_SCAN_DIR", f"{home}/php.ini.d", ":")
        out.override("PHP_SESSION_HANDLER", "memcached")
        out.override("PHP_SESSION_SAVE_PATH", s["servers"])
        step.log.line(f"  Configured memcached session handler from binding {s['binding']!r}")
        return out


MODULE = PhpMemcachedSessionModule()
