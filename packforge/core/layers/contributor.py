from __future__ import annotations

import logging
import time
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Set

from packforge.core.context import BuildContext
from packforge.core.environment.merger import EnvironmentMerger
from packforge.core.errors import BuildFailure, ConfigurationError
from packforge.core.layers.cache import LayerCache
from packforge.core.layers.fingerprint import compute_fingerprint
from packforge.core.layers.models import BuildStep, Layer, LayerContribution
from packforge.core.plan.models import DetectionPlan, PlanEntry
from packforge.core.plan.resolver import unmet_requirement

log = logging.getLogger("packforge.build")

Resolver = Callable[[Any], Any]


def _check_paths(module_key: str, files: Dict[str, bytes]) -> None:
    for rel in files:
        p = PurePosixPath(rel)
        if not rel or p.is_absolute() or ".." in p.parts:
            raise BuildFailure(module_key, f"layer file {rel!r} escapes the layer directory", phase="collect")


class LayerContributor:
    """
    Runs the build step of every planned module, in plan order.

    After each module its environment operations are folded into the
    context, so the next module sees them. Cacheable layers are looked up
    by fingerprint first and their build step is skipped on a hit.
    """

    def __init__(
        self,
        resolve: Resolver,
        *,
        cache: Optional[LayerCache] = None,
        namespace: str = "",
        merger: Optional[EnvironmentMerger] = None,
    ):
        self._resolve = resolve
        self.cache = cache
        self.namespace = namespace
        self.merger = merger or EnvironmentMerger()

    def build(self, entry: PlanEntry, context: BuildContext) -> Layer:
        module = entry.module
        step = BuildStep(
            module=module,
            context=context,
            environment=context.environment,
            matched=entry.detection.matched,
        )

        try:
            impl = self._resolve(module)
        except ConfigurationError as e:
            raise BuildFailure(module.key, str(e), phase="resolve") from e

        try:
            inputs = impl.config_inputs(step)
        except BuildFailure:
            raise
        except Exception as e:
            raise BuildFailure(module.key, f"{type(e).__name__}: {e}", phase="inputs") from e

        fingerprint = compute_fingerprint(module.id, module.version, inputs)

        if self.cache is not None:
            cached = self.cache.get(self.namespace, fingerprint)
            if cached is not None and cached.flags.cache:
                context.log.line(f"  Reusing cached layer {cached.path}")
                context.log.event("LayerRestored", module=module.key, payload={"fingerprint": fingerprint})
                return cached

        t0 = time.perf_counter()
        context.log.event("LayerStarted", module=module.key, payload={"fingerprint": fingerprint})
        try:
            out: LayerContribution = impl.build(step)
        except BuildFailure:
            raise
        except Exception as e:
            raise BuildFailure(module.key, f"{type(e).__name__}: {e}") from e

        _check_paths(module.key, out.files)

        layer = Layer(
            owner=module.id,
            name=out.name,
            flags=out.flags,
            fingerprint=fingerprint,
            files=out.files,
            metadata=out.metadata,
            env=tuple(out.env),
            processes=out.processes,
            labels=out.labels,
        )

        duration_ms = int(round((time.perf_counter() - t0) * 1000))
        log.debug("built %s in %dms fingerprint=%s", module.key, duration_ms, fingerprint[:12])
        context.log.event("LayerCompleted", module=module.key, payload={
            "fingerprint": fingerprint,
            "duration_ms": duration_ms,
        })

        if self.cache is not None and layer.flags.cache:
            self.cache.put(self.namespace, layer)

        return layer

    def contribute(self, plan: DetectionPlan, context: BuildContext) -> List[Layer]:
        """
        Build every module of `plan` against `context`.

        A required module's failure propagates. An optional module's failure
        counts as non-detection: it is logged, recorded in the plan's skipped
        list and contributes nothing. Modules that required a capability only
        the dropped module provided are skipped too, or fail the build when
        they are required.
        """
        context.plan = plan
        provided: Set[str] = set()
        for entry in plan.entries:
            module = entry.module
            context.log.line(module.name)

            cap = unmet_requirement(module, provided | set(module.provides))
            if cap is not None:
                reason = f"unmet requirement: {cap}"
                if not entry.optional:
                    e = BuildFailure(module.key, reason, phase="plan")
                    context.log.event("LayerFailed", module=module.key, payload=e.to_dict())
                    raise e
                log.warning("skipping optional module %s: %s", module.key, reason)
                self._skip(context, module, reason, reason)
                continue

            try:
                layer = self.build(entry, context)
            except BuildFailure as e:
                context.log.event("LayerFailed", module=module.key, payload=e.to_dict())
                if not entry.optional:
                    raise
                log.warning("optional module %s failed; continuing without it: %s", module.key, e.reason)
                self._skip(context, module, e.reason, f"build failed: {e.reason}")
                continue

            provided.update(module.provides)
            context.layers.append(layer)
            context.environment = self.merger.apply(context.environment, layer.env, owner=layer.owner)

        return list(context.layers)

    @staticmethod
    def _skip(context: BuildContext, module, shown: str, recorded: str) -> None:
        context.log.line(f"  Skipped: {shown}")
        context.log.event("ModuleSkipped", module=module.key, payload={"reason": shown})
        context.plan = context.plan.without(module.id, recorded)
