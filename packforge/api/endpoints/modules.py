from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Query

from packforge.core.plan.order import load_order
from packforge.core.settings import Settings
from packforge.plugins.modules._internal.registry import get_registry

router = APIRouter(prefix="/modules", tags=["Modules"])


@router.get("")
def list_modules(order_file: Optional[str] = Query(None)):
    settings = Settings.from_env()
    order = load_order(Path(order_file) if order_file else settings.order_file)
    registry = get_registry(settings.extra_modules_dir, settings.modules_dir)

    return {
        "order_file": order.source,
        "order_fingerprint": order.fingerprint,
        "registry_fingerprint": registry.fingerprint,
        "implementations": [{"name": m.name, "file": m.file} for m in registry.list_modules()],
        "modules": [order.modules[k].to_dict() for k in sorted(order.modules)],
        "order": [g.to_dict() for g in order.groups],
    }
