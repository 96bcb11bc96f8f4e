from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from packforge.core.detection.matcher import Matcher
from packforge.core.detection.predicates import DetectResult
from packforge.core.errors import DetectionFailure
from packforge.core.observability.metrics import inc_detection
from packforge.core.plan.models import DetectionPlan, GroupEntry, ModuleDescriptor, OrderGroup, PlanEntry

log = logging.getLogger("packforge.detect")


class _GroupRejected(Exception):
    def __init__(self, failures: List[Dict[str, Any]]):
        self.failures = failures
        super().__init__(f"{len(failures)} required member(s) failed")


class PlanResolver:
    """
    Picks the first order group whose required members all detect.

    Members of one group are detected concurrently but always collected in
    declaration order, so the plan never depends on thread scheduling.
    """

    def __init__(self, matcher: Optional[Matcher] = None, *, workers: int = 4):
        self.matcher = matcher or Matcher()
        self.workers = max(1, int(workers))

    def resolve(self, groups: Sequence[OrderGroup], context) -> DetectionPlan:
        attempted: List[Dict[str, Any]] = []
        seen: Dict[str, DetectResult] = {}

        for index, group in enumerate(groups):
            t0 = time.perf_counter()
            results = self._detect_group(group, context, seen)
            try:
                plan = self._try_group(index, group, results)
            except _GroupRejected as e:
                log.debug("group %d rejected in %.1fms: %s", index, (time.perf_counter() - t0) * 1000, e.failures)
                attempted.append({"group": index, "failures": e.failures})
                continue

            log.debug("group %d selected (%d module(s)) in %.1fms", index, len(plan.entries), (time.perf_counter() - t0) * 1000)
            return plan

        raise DetectionFailure(attempted)

    # --- internals ---

    def _safe_detect(self, entry: GroupEntry, context) -> DetectResult:
        try:
            return self.matcher.detect(entry.module, context)
        except Exception as e:  # raised detection counts as a failed detection
            log.warning("detection of %s raised %s: %s", entry.module.key, type(e).__name__, e)
            return DetectResult(included=False, reason=f"detection error: {type(e).__name__}: {e}")

    def _detect_group(
        self,
        group: OrderGroup,
        context,
        seen: Dict[str, DetectResult],
    ) -> List[DetectResult]:
        pending = [e for e in group.entries if e.module.key not in seen]

        if pending:
            if self.workers == 1 or len(pending) == 1:
                fresh = [self._safe_detect(e, context) for e in pending]
            else:
                with ThreadPoolExecutor(max_workers=min(self.workers, len(pending))) as pool:
                    # map() yields in submission order
                    fresh = list(pool.map(lambda e: self._safe_detect(e, context), pending))

            for e, r in zip(pending, fresh):
                seen[e.module.key] = r
                inc_detection(e.module.id, r.included)
                log.debug("%s: %s (%s)", e.module.key, "pass" if r.included else "fail", r.reason)

        return [seen[e.module.key] for e in group.entries]

    def _try_group(self, index: int, group: OrderGroup, results: List[DetectResult]) -> DetectionPlan:
        failures: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []
        selected: List[Tuple[GroupEntry, DetectResult]] = []

        for entry, result in zip(group.entries, results):
            if result.included:
                selected.append((entry, result))
            elif entry.optional:
                skipped.append({"module": entry.module.key, "optional": True, "reason": result.reason})
            else:
                failures.append({"module": entry.module.key, "reason": result.reason})

        if failures:
            raise _GroupRejected(failures)

        # Exclusivity is re-decided after every requirement drop, so a member
        # displaced by a holder that later turns out unmet gets its place back.
        dropped: Dict[str, str] = {}
        while True:
            displaced: List[Dict[str, Any]] = []
            candidates = [(e, r) for e, r in selected if e.module.key not in dropped]
            kept = self._apply_exclusive(candidates, displaced, failures)
            if failures:
                raise _GroupRejected(failures)

            unmet = self._first_unmet(kept)
            if unmet is None:
                break

            entry, cap = unmet
            reason = f"unmet requirement: {cap}"
            if not entry.optional:
                raise _GroupRejected([{"module": entry.module.key, "reason": reason}])
            dropped[entry.module.key] = reason

        skipped.extend({"module": key, "optional": True, "reason": reason} for key, reason in dropped.items())
        skipped.extend(displaced)

        return DetectionPlan(
            group_index=index,
            entries=tuple(PlanEntry(module=e.module, optional=e.optional, detection=r) for e, r in kept),
            skipped=tuple(skipped),
        )

    @staticmethod
    def _apply_exclusive(
        selected: List[Tuple[GroupEntry, DetectResult]],
        skipped: List[Dict[str, Any]],
        failures: List[Dict[str, Any]],
    ) -> List[Tuple[GroupEntry, DetectResult]]:
        # earliest declaration keeps an exclusive capability
        kept: List[Tuple[GroupEntry, DetectResult]] = []
        claimed: Dict[str, GroupEntry] = {}

        for entry, result in selected:
            mine = [c for c in entry.module.exclusive if c in entry.module.provides]
            clash = next(((c, claimed[c]) for c in mine if c in claimed), None)

            if clash is None:
                kept.append((entry, result))
                for c in mine:
                    claimed[c] = entry
                continue

            cap, holder = clash
            reason = f"exclusive capability {cap!r} already provided by {holder.module.key}"
            if entry.optional:
                skipped.append({"module": entry.module.key, "optional": True, "reason": reason})
            elif holder.optional:
                kept = [(e, r) for e, r in kept if e is not holder]
                skipped.append({
                    "module": holder.module.key,
                    "optional": True,
                    "reason": f"exclusive capability {cap!r} taken by required {entry.module.key}",
                })
                kept.append((entry, result))
                for c in mine:
                    claimed[c] = entry
            else:
                failures.append({"module": entry.module.key, "reason": reason})

        return kept

    @staticmethod
    def _first_unmet(
        selected: List[Tuple[GroupEntry, DetectResult]],
    ) -> Optional[Tuple[GroupEntry, str]]:
        provided: Set[str] = set()
        for entry, _ in selected:
            provided.update(entry.module.provides)
            cap = unmet_requirement(entry.module, provided)
            if cap is not None:
                return entry, cap
        return None


def unmet_requirement(module: ModuleDescriptor, provided: Set[str]) -> Optional[str]:
    """First non-optional capability `module` requires that `provided` lacks."""
    for r in module.requires:
        if not r.optional and r.name not in provided:
            return r.name
    return None


def resolve_plan(groups: Sequence[OrderGroup], context, *, workers: int = 4) -> DetectionPlan:
    return PlanResolver(workers=workers).resolve(groups, context)
