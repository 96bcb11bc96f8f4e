"""
Process-level settings for the build engine.

Environment variables:
    PACKFORGE_CACHE_DIR       root of the fingerprint-addressed layer cache
    PACKFORGE_STATE_DIR       where image descriptors and build events are stored
    PACKFORGE_ORDER_FILE      order configuration (defaults to the packaged order.yaml)
    PACKFORGE_MODULES_DIR     extra directory of module implementations
    PACKFORGE_DETECT_WORKERS  worker threads used to detect the members of one group
    PACKFORGE_SOURCE_ROOT     when set, API builds may only read sources below it
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_ORDER_FILE = PACKAGE_ROOT / "templates" / "order.yaml"
DEFAULT_MODULES_DIR = PACKAGE_ROOT / "plugins" / "modules"

log = logging.getLogger("packforge.config")


def _env_path(name: str, default: Optional[Path]) -> Optional[Path]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return Path(raw).expanduser()


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        log.warning("%s=%r is not an integer; using %d", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    cache_dir: Path
    state_dir: Path
    order_file: Path = DEFAULT_ORDER_FILE
    modules_dir: Path = DEFAULT_MODULES_DIR
    extra_modules_dir: Optional[Path] = None
    detect_workers: int = 4
    source_root: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        home = Path(".packforge")
        return cls(
            cache_dir=_env_path("PACKFORGE_CACHE_DIR", home / "cache"),
            state_dir=_env_path("PACKFORGE_STATE_DIR", home / "state"),
            order_file=_env_path("PACKFORGE_ORDER_FILE", DEFAULT_ORDER_FILE),
            extra_modules_dir=_env_path("PACKFORGE_MODULES_DIR", None),
            detect_workers=_env_int("PACKFORGE_DETECT_WORKERS", 4),
            source_root=_env_path("PACKFORGE_SOURCE_ROOT", None),
        )
