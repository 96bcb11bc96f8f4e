import json
from pathlib import Path
from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from packforge.core.bindings.resolver import read_bindings
from packforge.core.context import BuildConfiguration, BuildContext
from packforge.core.observability.metrics import reset_metrics
from packforge.core.orchestrator import BuildOrchestrator
from packforge.core.settings import Settings


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(cache_dir=tmp_path / "cache", state_dir=tmp_path / "state", detect_workers=4)


@pytest.fixture()
def orchestrator(settings: Settings) -> BuildOrchestrator:
    return BuildOrchestrator(settings)


@pytest.fixture()
def php_app(tmp_path: Path) -> Path:
    """A composer application with its sources under htdocs/."""
    app = tmp_path / "app"
    (app / "htdocs").mkdir(parents=True)
    (app / "htdocs" / "index.php").write_text("<?php echo 'SUCCESS: date loads.';\n", encoding="utf-8")
    (app / "composer.json").write_text(
        json.dumps({"require": {"php": ">=8.1", "monolog/monolog": "^3.0", "ext-json": "*"}}),
        encoding="utf-8",
    )
    return app


@pytest.fixture()
def make_bindings(tmp_path: Path):
    """make_bindings({"my-cache": {"type": "php-memcached-session", "servers": "..."}}) -> binding root"""

    def _make(spec: Dict[str, Dict[str, str]], root: Optional[Path] = None) -> Path:
        root = root or (tmp_path / "bindings")
        root.mkdir(parents=True, exist_ok=True)
        for name, entries in spec.items():
            d = root / name
            d.mkdir(parents=True, exist_ok=True)
            for key, value in entries.items():
                (d / key).write_text(value, encoding="utf-8")
        return root

    return _make


@pytest.fixture()
def make_context():
    def _make(source: Path, env: Optional[Dict[str, str]] = None, binding_root: Optional[Path] = None) -> BuildContext:
        config = BuildConfiguration(env=env or {}, binding_root=str(binding_root) if binding_root else None)
        ctx = BuildContext(source=source, config=config)
        ctx.bindings = read_bindings(config.resolved_binding_root(), warnings=ctx.warnings)
        return ctx

    return _make


@pytest.fixture()
def client(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("PACKFORGE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("PACKFORGE_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.delenv("PACKFORGE_SOURCE_ROOT", raising=False)
    monkeypatch.delenv("PACKFORGE_ORDER_FILE", raising=False)

    from packforge.api.main import app

    return TestClient(app)
