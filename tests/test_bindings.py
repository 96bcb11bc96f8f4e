import os

import pytest

from packforge.core.bindings.resolver import bindings, read_bindings
from packforge.core.errors import BindingConfigurationError


def test_missing_root_is_empty(tmp_path):
    assert bindings(tmp_path / "nope") == {}
    assert bindings(None) == {}


def test_reads_entries_as_raw_bytes(make_bindings):
    root = make_bindings({
        "my-cache": {"type": "php-memcached-session\n", "servers": "memcached:11211\n", "provider": "acme"},
    })

    out = bindings(root)

    assert list(out) == ["php-memcached-session"]
    entries = out["php-memcached-session"]["my-cache"]
    # values are not line-parsed or stripped
    assert entries == {"servers": b"memcached:11211\n"}


def test_binding_index_lookup(make_bindings):
    root = make_bindings({
        "b": {"type": "redis-session", "host": "redis"},
        "a": {"type": "redis-session", "host": "other"},
        "c": {"type": "ca-certificates", "ca.pem": "PEM"},
    })

    idx = read_bindings(root)

    assert len(idx) == 3
    assert idx.types() == ["ca-certificates", "redis-session"]
    assert list(idx.of_type("redis-session")) == ["a", "b"]
    assert idx.first("php-redis-session", "redis-session").name == "a"
    assert idx.first("php-redis-session") is None
    assert idx.of_type("missing") == {}
    assert idx.first("redis-session").provider is None


def test_binding_without_type_is_a_warning(make_bindings):
    root = make_bindings({
        "good": {"type": "redis-session", "host": "redis"},
        "broken": {"host": "nowhere"},
    })
    warnings = []

    idx = read_bindings(root, warnings=warnings)

    assert idx.types() == ["redis-session"]
    assert [w.code for w in warnings] == ["bindings.missing_type"]
    assert warnings[0].data == {"binding": "broken"}


def test_hidden_entries_are_ignored(make_bindings):
    root = make_bindings({"svc": {"type": "redis-session", "host": "redis", ".hidden": "x"}})
    (root / "..data").mkdir()

    idx = read_bindings(root)

    assert dict(idx.first("redis-session").entries) == {"host": b"redis"}


def test_root_that_is_a_file_is_fatal(tmp_path):
    f = tmp_path / "bindings"
    f.write_text("not a dir", encoding="utf-8")

    with pytest.raises(BindingConfigurationError):
        read_bindings(f)


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs an unprivileged POSIX user")
def test_unlistable_root_is_fatal(tmp_path):
    root = tmp_path / "bindings"
    root.mkdir()
    root.chmod(0)
    try:
        with pytest.raises(BindingConfigurationError):
            read_bindings(root)
    finally:
        root.chmod(0o755)
