from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Dict, Optional

from packforge.core.errors import collect_warning
from packforge.core.hashing import sha256_file
from packforge.core.layers.models import BuildStep

log = logging.getLogger("packforge.config")

APP_DIR = "/workspace"
DEFAULT_WEB_DIR = "htdocs"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    return default


def flag(step: BuildStep, name: str, default: bool) -> bool:
    """
    Boolean build variable `name`.

    An unrecognised value keeps `default` and leaves one
    config.malformed_variable warning on the build, however often it is read.
    """
    raw = step.var(name)
    if raw is None or not raw.strip() or raw.strip().lower() in _TRUTHY | _FALSY:
        return parse_bool(raw, default)

    warnings = step.context.warnings
    if not any(w.code == "config.malformed_variable" and w.data.get("variable") == name for w in warnings):
        message = f"{name}={raw!r} is not a boolean; using {str(default).lower()}"
        log.warning(message)
        collect_warning(warnings, "config.malformed_variable", message, variable=name, value=raw, default=default)
    return default


def web_dir(step: BuildStep) -> str:
    raw = (step.var("BP_PHP_WEB_DIR") or "").strip().strip("/")
    return raw or DEFAULT_WEB_DIR


def app_path(*parts: str) -> str:
    return PurePosixPath(APP_DIR, *parts).as_posix()


def file_digests(step: BuildStep, *names: str) -> Dict[str, Optional[str]]:
    """sha256 of each named source file, None when it is missing."""
    out: Dict[str, Optional[str]] = {}
    for name in names:
        p = step.source / name
        out[name] = sha256_file(p) if p.is_file() else None
    return out


def launcher(target: str) -> str:
    return f'#!/bin/sh\nexec {target} "$@"\n'
