"""
Build step backed by an external command.

The command runs with the merged environment of every earlier module plus:

    PACKFORGE_LAYER_DIR   empty directory; everything written here becomes the layer
    PACKFORGE_SOURCE_DIR  the application source (read-only by convention)

Environment contributions use the buildpack layout: a file
`env/<NAME>.<kind>` holds the value, with kind one of override, default,
prepend, append or delim. A file without a suffix overrides. An optional
`layer.yaml` may set `flags`, `metadata`, `processes` and `labels`.
"""
from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List

import yaml

from packforge.core.environment.models import EnvironmentOperation
from packforge.core.errors import BuildFailure
from packforge.core.hashing import digest_tree, sha256_file
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.core.plan.models import ModuleDescriptor

log = logging.getLogger("packforge.build")

_ENV_SUFFIXES = {
    "override": "override",
    "default": "default",
    "prepend": "prepend",
    "append": "append",
    "delim": "delimiter",
}

_STDERR_TAIL = 2000


def read_env_dir(env_dir: Path) -> List[EnvironmentOperation]:
    ops: List[EnvironmentOperation] = []
    if not env_dir.is_dir():
        return ops

    for f in sorted(env_dir.iterdir(), key=lambda p: p.name):
        if not f.is_file() or f.name.startswith("."):
            continue
        name, _, suffix = f.name.partition(".")
        kind = _ENV_SUFFIXES.get(suffix or "override")
        if kind is None:
            raise ValueError(f"unsupported environment file {f.name!r}")
        value = f.read_text(encoding="utf-8")
        if kind == "delimiter":
            ops.append(EnvironmentOperation.delim(name, value))
        else:
            ops.append(EnvironmentOperation(name=name, kind=kind, value=value))
    return ops


class ExecModule:
    def __init__(self, descriptor: ModuleDescriptor, *, timeout: float = 600.0):
        self.descriptor = descriptor
        self.name = descriptor.id
        self.timeout = timeout

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        platform = {k: v for k, v in step.context.config.env.items() if k.startswith(("BP_", "BPE_"))}
        scripts = {}
        for part in self.descriptor.exec_command:
            p = step.source / part
            if not os.path.isabs(part) and p.is_file():
                scripts[part] = sha256_file(p)
        return {
            "command": list(self.descriptor.exec_command),
            "scripts": scripts,
            "platform": dict(sorted(platform.items())),
            "environment": step.environment.as_dict(),
            "source": digest_tree(step.source),
            "stack": step.stack_id,
        }

    def _run_env(self, step: BuildStep, layer_dir: Path) -> Dict[str, str]:
        env: Dict[str, str] = dict(step.context.config.env)
        env.update(step.environment.values)
        host_path = os.environ.get("PATH", os.defpath)
        env["PATH"] = f"{env['PATH']}{os.pathsep}{host_path}" if env.get("PATH") else host_path
        env["PACKFORGE_LAYER_DIR"] = str(layer_dir)
        env["PACKFORGE_SOURCE_DIR"] = str(step.source)
        return env

    def build(self, step: BuildStep) -> LayerContribution:
        key = self.descriptor.key
        with tempfile.TemporaryDirectory(prefix="packforge-layer-") as tmp:
            layer_dir = Path(tmp)
            try:
                proc = subprocess.run(
                    list(self.descriptor.exec_command),
                    cwd=str(step.source),
                    env=self._run_env(step, layer_dir),
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise BuildFailure(key, f"timed out after {self.timeout:g}s") from e
            except OSError as e:
                raise BuildFailure(key, f"could not start {self.descriptor.exec_command[0]!r}: {e}") from e

            for ln in (proc.stdout or "").splitlines():
                step.log.line(f"  {ln}")

            if proc.returncode != 0:
                tail = (proc.stderr or "").strip()[-_STDERR_TAIL:]
                raise BuildFailure(key, f"exit code {proc.returncode}: {tail}" if tail else f"exit code {proc.returncode}")

            try:
                return self._collect(layer_dir)
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise BuildFailure(key, f"invalid layer output: {e}", phase="collect") from e

    def _collect(self, layer_dir: Path) -> LayerContribution:
        spec: Dict[str, Any] = {}
        spec_file = layer_dir / "layer.yaml"
        if spec_file.is_file():
            spec = yaml.safe_load(spec_file.read_text(encoding="utf-8")) or {}
            if not isinstance(spec, dict):
                raise ValueError("layer.yaml must be a mapping")

        out = LayerContribution(
            name=str(spec.get("name") or self.descriptor.id.rsplit("/", 1)[-1]),
            flags=LayerFlags.from_dict(spec.get("flags") or {}),
            metadata=dict(spec.get("metadata") or {}),
            env=read_env_dir(layer_dir / "env"),
            processes={str(k): str(v) for k, v in (spec.get("processes") or {}).items()},
            labels={str(k): str(v) for k, v in (spec.get("labels") or {}).items()},
        )

        for p in sorted(layer_dir.rglob("*")):
            if not p.is_file():
                continue
            rel = p.relative_to(layer_dir).as_posix()
            if rel == "layer.yaml" or rel.startswith("env/"):
                continue
            out.file(rel, p.read_bytes())
        return out
