from pathlib import Path

from packforge.core.settings import DEFAULT_MODULES_DIR, Settings


def test_from_env_reads_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("PACKFORGE_CACHE_DIR", str(tmp_path / "c"))
    monkeypatch.setenv("PACKFORGE_DETECT_WORKERS", "8")
    monkeypatch.delenv("PACKFORGE_MODULES_DIR", raising=False)

    s = Settings.from_env()

    assert s.cache_dir == Path(tmp_path / "c")
    assert s.detect_workers == 8
    assert s.modules_dir == DEFAULT_MODULES_DIR
    assert s.extra_modules_dir is None


def test_malformed_worker_count_falls_back_with_a_warning(monkeypatch, caplog):
    monkeypatch.setenv("PACKFORGE_DETECT_WORKERS", "lots")

    with caplog.at_level("WARNING", logger="packforge.config"):
        s = Settings.from_env()

    assert s.detect_workers == 4
    assert "PACKFORGE_DETECT_WORKERS='lots' is not an integer; using 4" in caplog.text
