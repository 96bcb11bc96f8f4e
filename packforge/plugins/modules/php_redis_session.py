from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.errors import BuildFailure
from packforge.core.hashing import sha256_hex
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags

MODULE_ID = "paketo-buildpacks/php-redis-session-handler"
BINDING_TYPES = ("php-redis-session", "redis-session")
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = "6379"


@dataclass
class PhpRedisSessionModule:
    """Stores PHP sessions in the redis server named by a service binding."""

    name: str = "php_redis_session"

    def _settings(self, step: BuildStep) -> Dict[str, Any]:
        b = step.bindings.first(*BINDING_TYPES)
        if b is None:
            raise BuildFailure(MODULE_ID, f"no binding of type {' or '.join(BINDING_TYPES)}")
        return {
            "binding": b.name,
            "host": b.text("host", DEFAULT_HOST),
            "port": b.text("port", DEFAULT_PORT),
            "password": b.text("password"),
        }

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        s = self._settings(step)
        s["password"] = sha256_hex(s["password"]) if s["password"] else None
        return s

    def build(self, step: BuildStep) -> LayerContribution:
        s = self._settings(step)
        home = step.layer_dir("php-redis-config")

        save_path = f"tcp://{s['host']}:{s['port']}"
        ini_path = save_path + (f"?auth={s['password']}" if s["password"] else "")

        out = LayerContribution(name="php-redis-config", flags=LayerFlags(launch=True))
        out.file("php.ini.d/redis-session.ini", "\n".join([
            "session.save_handler = redis",
            f"session.save_path = \"{ini_path}\"",
            "",
        ]))
        out.metadata = {"binding": s["binding"], "save_path": save_path}

        out.append("PHP_INI_SCAN_DIR", f"{home}/php.ini.d", ":")
        out.override("PHP_SESSION_HANDLER", "redis")
        out.override("PHP_SESSION_SAVE_PATH", save_path)
        step.log.line(f"  Configured redis session handler from binding {s['binding']!r}")
        return out


MODULE = PhpRedisSessionModule()
