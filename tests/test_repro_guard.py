import io
import tarfile

from packforge.core.detection.predicates import DetectResult
from packforge.core.environment.models import EnvironmentOperation as Op
from packforge.core.layers.models import Layer, LayerFlags
from packforge.core.plan.models import DetectionPlan, ModuleDescriptor, PlanEntry
from packforge.core.repro.guard import ReproducibilityGuard, normalize, strip_volatile
from packforge.core.repro.tarball import layer_digest, layer_tar


def _layer(owner, name, **kw):
    kw.setdefault("flags", LayerFlags(launch=True))
    kw.setdefault("fingerprint", "f" * 64)
    return Layer(owner=owner, name=name, **kw)


def _plan(*owners):
    return DetectionPlan(
        group_index=0,
        entries=tuple(
            PlanEntry(ModuleDescriptor(id=o, version="1.0.0", name=o), False, DetectResult(True, "test"))
            for o in owners
        ),
    )


def test_tar_is_byte_stable_and_pinned():
    files = {"bin/php": b"#!/bin/sh\n", "etc/php.ini": b"[PHP]\n"}
    a = layer_tar("/layers/org_php/php", files)
    b = layer_tar("/layers/org_php/php", dict(reversed(list(files.items()))))
    assert a == b

    with tarfile.open(fileobj=io.BytesIO(a)) as tar:
        members = {m.name: m for m in tar.getmembers()}
    assert members["layers/org_php/php/bin/php"].mode == 0o755
    assert members["layers/org_php/php/etc/php.ini"].mode == 0o644
    assert all(m.mtime == 0 and m.uid == 0 and m.gid == 0 for m in members.values())
    assert "layers/org_php/php/etc" in members


def test_digest_depends_on_content_and_path():
    files = {"a.txt": b"1"}
    assert layer_digest("/layers/x/y", files) != layer_digest("/layers/x/y", {"a.txt": b"2"})
    assert layer_digest("/layers/x/y", files) != layer_digest("/layers/x/z", files)
    assert layer_digest("/layers/x/y", files).startswith("sha256:")


def test_strip_volatile_is_recursive():
    assert strip_volatile({"version": "8.1", "built_at": "now", "nested": [{"pid": 1, "k": "v"}]}) == {
        "version": "8.1",
        "nested": [{"k": "v"}],
    }


def test_cache_hits_and_volatile_metadata_do_not_change_the_image_id():
    plan = _plan("org/php")
    fresh = _layer("org/php", "php", metadata={"version": "8.1.28", "built_at": "2026-01-01T00:00:00Z"})
    restored = _layer("org/php", "php", metadata={"version": "8.1.28", "built_at": "2026-06-01T00:00:00Z"}).restored()

    assert normalize([fresh], plan).image_id == normalize([restored], plan).image_id


def test_launch_environment_and_processes_skip_build_only_layers():
    build_only = _layer(
        "org/composer",
        "composer",
        flags=LayerFlags(build=True, launch=False),
        env=(Op.prepend("PATH", "/layers/org_composer/composer/bin", ":"),),
        processes={"web": "composer serve"},
    )
    php = _layer("org/php", "php", env=(Op.prepend("PATH", "/layers/org_php/php/bin", ":"),))
    start = _layer("org/start", "start", processes={"web": "procmgr"}, labels={"b": "2", "a": "1"})

    form = ReproducibilityGuard().normalize([build_only, php, start], _plan("org/composer", "org/php", "org/start"))

    assert form.env == {"PATH": "/layers/org_php/php/bin"}
    assert form.processes == {"web": "procmgr"}
    assert list(form.labels) == ["a", "b"]
    assert form.plan == ["org/composer@1.0.0", "org/php@1.0.0", "org/start@1.0.0"]
    assert [l["owner"] for l in form.layers] == ["org/composer", "org/php", "org/start"]


def test_stack_and_plan_order_are_part_of_the_identity():
    layers = [_layer("org/a", "a"), _layer("org/b", "b")]
    base = normalize(layers, _plan("org/a", "org/b"), stack={"id": "jammy"})

    assert base.image_id != normalize(layers, _plan("org/a", "org/b"), stack={"id": "noble"}).image_id
    assert base.image_id != normalize(layers, _plan("org/b", "org/a"), stack={"id": "jammy"}).image_id
