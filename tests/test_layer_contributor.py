import pytest

from packforge.core.detection.predicates import DetectResult
from packforge.core.errors import BuildFailure
from packforge.core.layers.cache import LayerCache
from packforge.core.layers.contributor import LayerContributor
from packforge.core.layers.models import LayerContribution, LayerFlags
from packforge.core.plan.models import DetectionPlan, ModuleDescriptor, PlanEntry, Requirement


class FakeModule:
    def __init__(self, name, *, cache=False, fail=None, env=None, provides=(), requires=()):
        self.name = name
        self.cache = cache
        self.fail = fail
        self.env = env or []
        self.provides = tuple(provides)
        self.requires = tuple(Requirement(r) for r in requires)
        self.calls = 0
        self.seen_env = None

    def config_inputs(self, step):
        return {"seen": step.env("PATH")}

    def build(self, step):
        self.calls += 1
        self.seen_env = step.environment.as_dict()
        if self.fail:
            raise BuildFailure(step.module.key, self.fail)
        out = LayerContribution(name=self.name, flags=LayerFlags(launch=True, cache=self.cache))
        out.file(f"{self.name}.txt", self.name)
        for op in self.env:
            out.env.append(op)
        return out


def _plan(*entries):
    return DetectionPlan(
        group_index=0,
        entries=tuple(
            PlanEntry(
                module=ModuleDescriptor(
                    id=f"org/{impl.name}",
                    version="1.0.0",
                    name=f"{impl.name} title",
                    provides=impl.provides,
                    requires=impl.requires,
                    implementation=impl.name,
                ),
                optional=optional,
                detection=DetectResult(True, "test"),
            )
            for impl, optional in entries
        ),
    )


def _resolver(*impls):
    by_name = {i.name: i for i in impls}
    return lambda descriptor: by_name[descriptor.implementation]


def test_environment_threads_between_modules(tmp_path, make_context):
    from packforge.core.environment.models import EnvironmentOperation as Op

    first = FakeModule("first", env=[Op.prepend("PATH", "/first/bin", ":")])
    second = FakeModule("second", env=[Op.prepend("PATH", "/second/bin", ":")])
    ctx = make_context(tmp_path)

    layers = LayerContributor(_resolver(first, second)).contribute(_plan((first, False), (second, False)), ctx)

    assert [l.owner for l in layers] == ["org/first", "org/second"]
    assert first.seen_env == {}
    assert second.seen_env == {"PATH": "/first/bin"}
    assert ctx.environment.get("PATH") == "/second/bin:/first/bin"
    assert "first title" in ctx.log.lines


def test_required_failure_aborts(tmp_path, make_context):
    ok = FakeModule("ok")
    bad = FakeModule("bad", fail="exit code 1")
    after = FakeModule("after")

    with pytest.raises(BuildFailure) as ei:
        LayerContributor(_resolver(ok, bad, after)).contribute(
            _plan((ok, False), (bad, False), (after, False)), make_context(tmp_path)
        )

    assert ei.value.module == "org/bad@1.0.0"
    assert after.calls == 0


def test_optional_failure_is_non_detection(tmp_path, make_context):
    from packforge.core.environment.models import EnvironmentOperation as Op

    bad = FakeModule("bad", fail="nope", env=[Op.override("X", "1")])
    after = FakeModule("after")
    ctx = make_context(tmp_path)

    layers = LayerContributor(_resolver(bad, after)).contribute(_plan((bad, True), (after, False)), ctx)

    assert [l.owner for l in layers] == ["org/after"]
    assert "X" not in ctx.environment
    assert ctx.plan.ids() == ["org/after"]
    assert ctx.plan.skipped[0]["reason"] == "build failed: nope"


def test_unexpected_exception_becomes_build_failure(tmp_path, make_context):
    class Broken(FakeModule):
        def build(self, step):
            raise KeyError("missing")

    broken = Broken("broken")
    with pytest.raises(BuildFailure) as ei:
        LayerContributor(_resolver(broken)).contribute(_plan((broken, False)), make_context(tmp_path))
    assert "KeyError" in ei.value.reason


def test_files_may_not_escape_the_layer(tmp_path, make_context):
    class Escaping(FakeModule):
        def build(self, step):
            return LayerContribution(name="x").file("../../etc/passwd", "root")

    esc = Escaping("esc")
    with pytest.raises(BuildFailure) as ei:
        LayerContributor(_resolver(esc)).contribute(_plan((esc, False)), make_context(tmp_path))
    assert ei.value.phase == "collect"


def test_cache_hit_skips_the_build_step(tmp_path, make_context):
    cached = FakeModule("cached", cache=True)
    plain = FakeModule("plain", cache=False)
    cache = LayerCache(tmp_path / "cache")
    src = tmp_path / "src"
    src.mkdir()

    def run():
        c = LayerContributor(_resolver(cached, plain), cache=cache, namespace="ns")
        return c.contribute(_plan((cached, False), (plain, False)), make_context(src))

    first = run()
    second = run()

    assert cached.calls == 1
    assert plain.calls == 2
    assert [l.cache_hit for l in first] == [False, False]
    assert [l.cache_hit for l in second] == [True, False]
    assert second[0].fingerprint == first[0].fingerprint


def test_failed_optional_provider_skips_optional_dependents(tmp_path, make_context):
    tool = FakeModule("tool", fail="download failed", provides=["tool"])
    user = FakeModule("user", requires=["tool"])
    other = FakeModule("other")
    ctx = make_context(tmp_path)

    layers = LayerContributor(_resolver(tool, user, other)).contribute(
        _plan((tool, True), (user, True), (other, False)), ctx
    )

    assert [l.owner for l in layers] == ["org/other"]
    assert user.calls == 0
    assert ctx.plan.ids() == ["org/other"]
    assert ctx.plan.skipped[-1] == {"module": "org/user@1.0.0", "optional": True, "reason": "unmet requirement: tool"}
    assert "  Skipped: unmet requirement: tool" in ctx.log.lines


def test_failed_optional_provider_fails_required_dependent(tmp_path, make_context):
    tool = FakeModule("tool", fail="download failed", provides=["tool"])
    user = FakeModule("user", requires=["tool"])

    with pytest.raises(BuildFailure) as ei:
        LayerContributor(_resolver(tool, user)).contribute(
            _plan((tool, True), (user, False)), make_context(tmp_path)
        )

    assert ei.value.module == "org/user@1.0.0"
    assert ei.value.reason == "unmet requirement: tool"
    assert user.calls == 0
