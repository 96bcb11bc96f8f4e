from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from packforge.core.environment.models import EnvironmentOperation
from packforge.core.errors import collect_warning
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags

PREFIX = "BPE_"

# anything else after BPE_ is a plain override
_VARIANTS: Tuple[Tuple[str, str], ...] = (
    ("DELIM_", "delimiter"),
    ("APPEND_", "append"),
    ("PREPEND_", "prepend"),
    ("DEFAULT_", "default"),
    ("OVERRIDE_", "override"),
)


def classify(var: str) -> Tuple[str, str]:
    """BPE_APPEND_PATH -> ("PATH", "append"); BPE_FOO -> ("FOO", "override")"""
    rest = var[len(PREFIX):]
    for marker, kind in _VARIANTS:
        if rest.startswith(marker):
            return rest[len(marker):], kind
    return rest, "override"


@dataclass
class EnvironmentVariablesModule:
    """
    Passes BPE_* build variables through to the image environment.

    Delimiters are applied before anything else so a BPE_APPEND_X picks up a
    BPE_DELIM_X regardless of variable name order.
    """

    name: str = "environment_variables"

    def _variables(self, step: BuildStep) -> Dict[str, str]:
        env = step.context.config.env
        names = step.matched or tuple(sorted(n for n in env if n.startswith(PREFIX)))
        return {n: env[n] for n in names if n in env}

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"variables": self._variables(step)}

    def build(self, step: BuildStep) -> LayerContribution:
        delims: List[EnvironmentOperation] = []
        ops: List[EnvironmentOperation] = []
        plain: Dict[str, str] = {}

        for var, value in sorted(self._variables(step).items()):
            name, kind = classify(var)
            if not name:
                collect_warning(
                    step.context.warnings,
                    "env.empty_name",
                    f"{var} does not name a variable; ignored",
                    variable=var,
                )
                continue
            if kind == "delimiter":
                delims.append(EnvironmentOperation.delim(name, value))
            else:
                ops.append(EnvironmentOperation(name=name, kind=kind, value=value))
                if kind == "override":
                    plain[name] = value
            step.log.line(f"  Setting {name} ({kind})")

        out = LayerContribution(name="environment-variables", flags=LayerFlags(launch=True))
        out.env = delims + ops
        out.metadata = {"variables": plain}
        return out


MODULE = EnvironmentVariablesModule()
