import concurrent.futures

from packforge.core.environment.models import EnvironmentOperation
from packforge.core.layers.cache import LayerCache
from packforge.core.layers.models import Layer, LayerFlags


def _layer(fp="f" * 64, content=b"#!/bin/sh\necho php\n"):
    return Layer(
        owner="org/php",
        name="php",
        flags=LayerFlags(build=True, launch=True, cache=True),
        fingerprint=fp,
        files={"bin/php": content, "etc/php.ini": b"[PHP]\n"},
        metadata={"version": "8.1.28"},
        env=(EnvironmentOperation.prepend("PATH", "/layers/org_php/php/bin", ":"),),
        processes={},
        labels={},
    )


def test_put_then_get_returns_the_layer_marked_as_cache_hit(tmp_path):
    cache = LayerCache(tmp_path)
    ns = cache.namespace_for("registry.local/app")
    layer = _layer()

    cache.put(ns, layer)
    got = cache.get(ns, layer.fingerprint)

    assert got is not None
    assert got.cache_hit
    assert dict(got.files) == dict(layer.files)
    assert got.env == layer.env
    assert dict(got.metadata) == {"version": "8.1.28"}
    assert (cache.hits, cache.misses) == (1, 0)


def test_miss_on_unknown_fingerprint_or_other_namespace(tmp_path):
    cache = LayerCache(tmp_path)
    layer = _layer()
    cache.put(cache.namespace_for("a"), layer)

    assert cache.get(cache.namespace_for("a"), "0" * 64) is None
    assert cache.get(cache.namespace_for("b"), layer.fingerprint) is None
    assert cache.misses == 2


def test_clear_drops_the_namespace(tmp_path):
    cache = LayerCache(tmp_path)
    ns = cache.namespace_for("a")
    cache.put(ns, _layer())

    cache.clear(ns)

    assert cache.get(ns, "f" * 64) is None


def test_corrupt_entry_is_a_miss(tmp_path):
    cache = LayerCache(tmp_path)
    ns = cache.namespace_for("a")
    entry = cache.put(ns, _layer())
    (entry / "layer.json").write_text("{not json", encoding="utf-8")

    assert cache.get(ns, "f" * 64) is None


def test_concurrent_writers_of_one_fingerprint_leave_a_complete_entry(tmp_path):
    cache = LayerCache(tmp_path)
    ns = cache.namespace_for("a")

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: cache.put(ns, _layer(content=f"#!/bin/sh\necho {i}\n".encode())), range(16)))

    got = cache.get(ns, "f" * 64)
    assert got is not None
    assert got.files["bin/php"].startswith(b"#!/bin/sh\necho ")
    # no temporary directories are left behind
    assert [p.name for p in (tmp_path / ns).iterdir()] == ["f" * 64]
