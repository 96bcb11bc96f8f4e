import sys
import textwrap

import pytest

from packforge.core.detection.predicates import DetectResult
from packforge.core.errors import BuildFailure
from packforge.core.layers.contributor import LayerContributor
from packforge.core.layers.exec_module import ExecModule
from packforge.core.plan.models import DetectionPlan, ModuleDescriptor, PlanEntry


def _run(tmp_path, make_context, script, env=None):
    src = tmp_path / "src"
    src.mkdir(exist_ok=True)
    (src / "build.py").write_text(textwrap.dedent(script), encoding="utf-8")
    desc = ModuleDescriptor(
        id="org/custom",
        version="0.1.0",
        name="Custom Buildpack",
        exec_command=(sys.executable, "build.py"),
    )
    plan = DetectionPlan(group_index=0, entries=(PlanEntry(desc, False, DetectResult(True, "test")),))
    ctx = make_context(src, env)
    layers = LayerContributor(lambda d: ExecModule(d)).contribute(plan, ctx)
    return layers, ctx


def test_collects_files_env_and_layer_spec(tmp_path, make_context):
    layers, ctx = _run(tmp_path, make_context, """
        import os, pathlib
        layer = pathlib.Path(os.environ["PACKFORGE_LAYER_DIR"])
        src = pathlib.Path(os.environ["PACKFORGE_SOURCE_DIR"])
        (layer / "bin").mkdir()
        (layer / "bin" / "tool").write_text("#!/bin/sh\\necho " + os.environ["BP_GREETING"])
        (layer / "env").mkdir()
        (layer / "env" / "PATH.prepend").write_text("/layers/org_custom/custom/bin")
        (layer / "env" / "PATH.delim").write_text(":")
        (layer / "env" / "GREETING").write_text("hi")
        (layer / "layer.yaml").write_text("name: custom\\nflags: {launch: true, cache: true}\\nprocesses: {web: tool}\\n")
        print("built from", (src / "build.py").name)
    """, env={"BP_GREETING": "hello"})

    (layer,) = layers
    assert layer.name == "custom"
    assert layer.flags.cache
    assert dict(layer.files) == {"bin/tool": b"#!/bin/sh\necho hello"}
    assert dict(layer.processes) == {"web": "tool"}
    assert ctx.environment.get("GREETING") == "hi"
    assert ctx.environment.get("PATH") == "/layers/org_custom/custom/bin"
    assert "  built from build.py" in ctx.log.lines


def test_non_zero_exit_is_a_build_failure_with_stderr(tmp_path, make_context):
    with pytest.raises(BuildFailure) as ei:
        _run(tmp_path, make_context, """
            import sys
            sys.stderr.write("composer.lock is out of date\\n")
            sys.exit(3)
        """)

    assert "exit code 3" in ei.value.reason
    assert "composer.lock is out of date" in ei.value.reason


def test_bad_env_file_is_a_collect_failure(tmp_path, make_context):
    with pytest.raises(BuildFailure) as ei:
        _run(tmp_path, make_context, """
            import os, pathlib
            env = pathlib.Path(os.environ["PACKFORGE_LAYER_DIR"]) / "env"
            env.mkdir()
            (env / "X.bogus").write_text("1")
        """)

    assert ei.value.phase == "collect"
