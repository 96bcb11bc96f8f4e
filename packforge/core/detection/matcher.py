from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Callable, Dict, List

from packforge.core.detection.predicates import (
    BindingPresent,
    DetectResult,
    EnvPrefix,
    EnvSet,
    FileExists,
    Predicate,
)

if TYPE_CHECKING:
    from packforge.core.context import BuildContext
    from packforge.core.plan.models import ModuleDescriptor


class Matcher:
    """
    Evaluates detection predicates against a build context.

    Read-only: the same context may be probed from several threads. Absence of
    a file, variable or binding is a negative result, never an exception.
    """

    def __init__(self) -> None:
        self._evaluators: Dict[str, Callable[[Predicate, "BuildContext"], DetectResult]] = {
            FileExists.kind: self._file_exists,
            EnvSet.kind: self._env_set,
            EnvPrefix.kind: self._env_prefix,
            BindingPresent.kind: self._binding_present,
        }

    def detect(self, module: "ModuleDescriptor", context: "BuildContext") -> DetectResult:
        spec = module.detect
        if not spec.predicates:
            return DetectResult(included=True, reason="no detection criteria")

        results = [self.evaluate(p, context) for p in spec.predicates]
        if spec.match == "any":
            included = any(r.included for r in results)
        else:
            included = all(r.included for r in results)

        matched: List[str] = []
        for r in results:
            for name in r.matched:
                if name not in matched:
                    matched.append(name)

        reason = "; ".join(r.reason for r in results)
        return DetectResult(included=included, reason=reason, matched=tuple(sorted(matched)))

    def evaluate(self, predicate: Predicate, context: "BuildContext") -> DetectResult:
        fn = self._evaluators.get(predicate.kind)
        if fn is None:
            raise TypeError(f"Unsupported predicate kind: {predicate.kind!r}")
        return fn(predicate, context)

    # --- evaluators ---

    def _file_exists(self, p: FileExists, context: "BuildContext") -> DetectResult:
        rel = PurePosixPath(p.path)
        if rel.is_absolute() or ".." in rel.parts:
            return DetectResult(False, f"file {p.path!r} is outside the source tree")
        # presence only; an empty file still counts
        if (context.source / rel).exists():
            return DetectResult(True, f"file {p.path!r} found")
        return DetectResult(False, f"file {p.path!r} not found")

    def _env_set(self, p: EnvSet, context: "BuildContext") -> DetectResult:
        value = context.var(p.name)
        if value is None:
            return DetectResult(False, f"${p.name} is not set")
        if p.pattern is None:
            return DetectResult(True, f"${p.name} is set")
        if re.fullmatch(p.pattern, value):
            return DetectResult(True, f"${p.name}={value!r} matches {p.pattern!r}")
        return DetectResult(False, f"${p.name}={value!r} does not match {p.pattern!r}")

    def _env_prefix(self, p: EnvPrefix, context: "BuildContext") -> DetectResult:
        names = sorted(n for n in context.config.env if n.startswith(p.prefix) and len(n) > len(p.prefix))
        if names:
            return DetectResult(True, f"{len(names)} variable(s) with prefix {p.prefix!r}", matched=tuple(names))
        return DetectResult(False, f"no variables with prefix {p.prefix!r}")

    def _binding_present(self, p: BindingPresent, context: "BuildContext") -> DetectResult:
        if context.bindings.has(p.type):
            names = sorted(context.bindings.of_type(p.type))
            return DetectResult(True, f"binding of type {p.type!r} present ({', '.join(names)})")
        return DetectResult(False, f"no binding of type {p.type!r}")
