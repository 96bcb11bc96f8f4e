from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from packforge.core.bindings.resolver import read_bindings
from packforge.core.context import BuildConfiguration, BuildContext
from packforge.core.errors import BuildFailure, ConfigurationError, ConfigurationWarning, DetectionFailure
from packforge.core.hashing import digest_tree
from packforge.core.layers.cache import LayerCache
from packforge.core.layers.contributor import LayerContributor
from packforge.core.layers.models import Layer
from packforge.core.observability.metrics import inc_build
from packforge.core.plan.events import BuildLog
from packforge.core.plan.models import DetectionPlan
from packforge.core.plan.order import OrderConfiguration, load_order
from packforge.core.plan.persist import append_events, save_descriptor
from packforge.core.plan.resolver import PlanResolver
from packforge.core.repro.guard import ReproducibilityGuard
from packforge.core.settings import Settings
from packforge.plugins.modules._internal.registry import ModuleRegistry, get_registry

log = logging.getLogger("packforge.build")


@dataclass(frozen=True)
class ImageDescriptor:
    image_ref: str
    image_id: str
    stack: Dict[str, Any]
    plan: List[str]
    layers: List[Dict[str, Any]]
    env: Dict[str, str]
    processes: Dict[str, str]
    labels: Dict[str, str]
    source_digest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_ref": self.image_ref,
            "image_id": self.image_id,
            "stack": self.stack,
            "plan": list(self.plan),
            "layers": list(self.layers),
            "env": dict(self.env),
            "processes": dict(self.processes),
            "labels": dict(self.labels),
            "source_digest": self.source_digest,
        }


@dataclass
class BuildOutcome:
    descriptor: ImageDescriptor
    log: BuildLog
    plan: DetectionPlan
    layers: List[Layer] = field(default_factory=list)
    warnings: List[ConfigurationWarning] = field(default_factory=list)

    @property
    def cache_hits(self) -> List[str]:
        return [l.owner for l in self.layers if l.cache_hit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "descriptor": self.descriptor.to_dict(),
            "plan": self.plan.to_dict(),
            "log": list(self.log.lines),
            "warnings": [w.to_dict() for w in self.warnings],
            "cache_hits": self.cache_hits,
        }


class BuildOrchestrator:
    """
    detect -> build -> normalize, for one image at a time.

    The orchestrator holds only process-level collaborators (settings,
    registry, cache). Everything about a single build lives in the
    BuildContext it creates for that run.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        registry: Optional[ModuleRegistry] = None,
        cache: Optional[LayerCache] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.registry = registry or get_registry(self.settings.extra_modules_dir, self.settings.modules_dir)
        self.cache = cache or LayerCache(self.settings.cache_dir)
        self.guard = ReproducibilityGuard()

    def order_for(self, config: BuildConfiguration) -> OrderConfiguration:
        return load_order(Path(config.order_file) if config.order_file else self.settings.order_file)

    def _context(self, source: Path, config: BuildConfiguration, build_log: BuildLog) -> BuildContext:
        source = Path(source)
        if not source.is_dir():
            raise ConfigurationError(f"Source path {source} is not a directory")

        ctx = BuildContext(source=source, config=config, log=build_log)
        ctx.bindings = read_bindings(config.resolved_binding_root(), warnings=ctx.warnings)
        return ctx

    def _resolve(self, ctx: BuildContext, order: OrderConfiguration) -> DetectionPlan:
        resolver = PlanResolver(workers=self.settings.detect_workers)
        plan = resolver.resolve(order.groups, ctx)

        for e in plan.entries:
            ctx.log.debug(f"  {e.module.id} passed detection: {e.detection.reason}")
            ctx.log.event("ModuleDetected", module=e.module.key, payload={"optional": e.optional, **e.detection.to_dict()})
        for s in plan.skipped:
            ctx.log.debug(f"  {s['module']} skipped: {s['reason']}")
        return plan

    def detect(self, source: Path, config: Optional[BuildConfiguration] = None) -> DetectionPlan:
        config = config or BuildConfiguration()
        ctx = self._context(source, config, BuildLog(debug=config.debug))
        return self._resolve(ctx, self.order_for(config))

    def build(
        self,
        image_ref: str,
        source: Path,
        config: Optional[BuildConfiguration] = None,
        *,
        persist: bool = False,
    ) -> BuildOutcome:
        config = config or BuildConfiguration()
        t0 = time.perf_counter()

        build_log = BuildLog(image_ref, debug=config.debug)
        build_log.event("BuildRequested", payload={"source": str(source), "clear_cache": config.clear_cache})

        try:
            outcome = self._build(image_ref, Path(source), config, build_log)
        except DetectionFailure as e:
            inc_build("detect_failed")
            build_log.event("DetectFailed", payload=e.to_dict())
            self._persist_events(build_log, persist)
            raise
        except BuildFailure as e:
            inc_build("failed")
            build_log.event("BuildFailed", module=e.module, payload=e.to_dict())
            self._persist_events(build_log, persist)
            raise

        inc_build("success")
        build_log.event("BuildCompleted", plan_id=outcome.plan.compute_plan_id(), payload={
            "image_id": outcome.descriptor.image_id,
            "duration_ms": int(round((time.perf_counter() - t0) * 1000)),
        })

        if persist:
            save_descriptor(self.settings.state_dir, outcome.descriptor.to_dict())
        self._persist_events(build_log, persist)

        log.info("built %s image_id=%s layers=%d", image_ref, outcome.descriptor.image_id, len(outcome.layers))
        return outcome

    def _build(self, image_ref: str, source: Path, config: BuildConfiguration, build_log: BuildLog) -> BuildOutcome:
        order = self.order_for(config)
        ctx = self._context(source, config, build_log)

        build_log.event("DetectStarted", payload={"groups": len(order.groups)})
        plan = self._resolve(ctx, order)
        build_log.event("DetectCompleted", plan_id=plan.compute_plan_id(), payload=plan.to_dict())

        namespace = self.cache.namespace_for(image_ref)
        if config.clear_cache:
            self.cache.clear(namespace)

        contributor = LayerContributor(self.registry.resolve, cache=self.cache, namespace=namespace)
        layers = contributor.contribute(plan, ctx)

        form = self.guard.normalize(
            layers,
            ctx.plan,
            stack=config.stack.identity(),
            source_digest=digest_tree(source),
        )
        descriptor = ImageDescriptor(
            image_ref=image_ref,
            image_id=form.image_id,
            stack=form.stack,
            plan=form.plan,
            layers=form.layers,
            env=form.env,
            processes=form.processes,
            labels=form.labels,
            source_digest=form.source_digest,
        )

        return BuildOutcome(
            descriptor=descriptor,
            log=build_log,
            plan=ctx.plan,
            layers=layers,
            warnings=list(ctx.warnings),
        )

    def _persist_events(self, build_log: BuildLog, persist: bool) -> None:
        if persist:
            append_events(self.settings.state_dir, [e.to_dict() for e in build_log.events])


def build(
    image_ref: str,
    source_path: Path,
    configuration: Optional[BuildConfiguration] = None,
    *,
    settings: Optional[Settings] = None,
) -> BuildOutcome:
    return BuildOrchestrator(settings).build(image_ref, source_path, configuration)


def detect(
    source_path: Path,
    configuration: Optional[BuildConfiguration] = None,
    *,
    settings: Optional[Settings] = None,
) -> DetectionPlan:
    return BuildOrchestrator(settings).detect(source_path, configuration)
