from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from packforge.core.environment.merger import EnvironmentMerger
from packforge.core.hashing import canonical_json, sha256_hex
from packforge.core.layers.models import Layer
from packforge.core.plan.models import DetectionPlan
from packforge.core.repro.tarball import layer_digest

VOLATILE_KEYS = frozenset({
    "built_at",
    "created_ts",
    "ts",
    "build_id",
    "run_id",
    "duration_ms",
    "cache_hit",
    "pid",
    "hostname",
})


def strip_volatile(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: strip_volatile(v) for k, v in value.items() if k not in VOLATILE_KEYS}
    if isinstance(value, (list, tuple)):
        return [strip_volatile(v) for v in value]
    return value


@dataclass(frozen=True)
class CanonicalForm:
    stack: Dict[str, Any]
    plan: List[str]
    layers: List[Dict[str, Any]]
    env: Dict[str, str]
    processes: Dict[str, str]
    labels: Dict[str, str]
    source_digest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack": self.stack,
            "plan": self.plan,
            "layers": self.layers,
            "env": self.env,
            "processes": self.processes,
            "labels": self.labels,
            "source_digest": self.source_digest,
        }

    def canonical_bytes(self) -> bytes:
        return canonical_json(self.to_dict()).encode("utf-8")

    @property
    def image_id(self) -> str:
        return "sha256:" + sha256_hex(self.canonical_bytes())


class ReproducibilityGuard:
    """
    Reduces the output of a build to the parts that define the image.

    Anything time-, host- or cache-dependent is dropped; collections are
    sorted except the plan, whose order is meaningful. Two builds with equal
    inputs therefore hash to the same image id whether layers came from the
    cache or not.
    """

    def __init__(self, merger: Optional[EnvironmentMerger] = None):
        self.merger = merger or EnvironmentMerger()

    def summarize_layer(self, layer: Layer) -> Dict[str, Any]:
        return {
            "owner": layer.owner,
            "name": layer.name,
            "path": layer.path,
            "flags": layer.flags.to_dict(),
            "fingerprint": layer.fingerprint,
            "digest": layer_digest(layer.path, layer.files),
            "files": sorted(layer.files),
            "metadata": strip_volatile(dict(layer.metadata)),
            "env": [op.to_dict() for op in layer.env],
        }

    def launch_environment(self, layers: Iterable[Layer]) -> Dict[str, str]:
        snapshot = self.merger.fold(l for l in layers if l.flags.launch)
        return snapshot.as_dict()

    def normalize(
        self,
        layers: Sequence[Layer],
        plan: DetectionPlan,
        *,
        stack: Optional[Mapping[str, Any]] = None,
        source_digest: Optional[str] = None,
    ) -> CanonicalForm:
        processes: Dict[str, str] = {}
        labels: Dict[str, str] = {}
        for layer in layers:
            # later modules win for both
            if layer.flags.launch:
                processes.update(layer.processes)
            labels.update(layer.labels)

        return CanonicalForm(
            stack=dict(stack or {}),
            plan=[f"{m.id}@{m.version}" for m in plan.modules],
            layers=[self.summarize_layer(l) for l in layers],
            env=self.launch_environment(layers),
            processes={k: processes[k] for k in sorted(processes)},
            labels={k: labels[k] for k in sorted(labels)},
            source_digest=source_digest,
        )


def normalize(
    layers: Sequence[Layer],
    plan: DetectionPlan,
    *,
    stack: Optional[Mapping[str, Any]] = None,
    source_digest: Optional[str] = None,
) -> CanonicalForm:
    return ReproducibilityGuard().normalize(layers, plan, stack=stack, source_digest=source_digest)
