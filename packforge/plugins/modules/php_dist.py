from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Any, Dict, Optional, Tuple

from packforge.core.errors import BuildFailure
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import launcher

MODULE_ID = "paketo-buildpacks/php-dist"

SUPPORTED_VERSIONS: Tuple[str, ...] = (
    "8.1.27",
    "8.1.28",
    "8.2.17",
    "8.2.18",
    "8.3.4",
    "8.3.6",
)

DEFAULT_CONSTRAINT = "8.1.*"


def _as_tuple(v: str) -> Tuple[int, ...]:
    return tuple(int(x) for x in v.split("."))


def resolve_version(constraint: Optional[str]) -> Optional[str]:
    """
    Newest supported version matching `constraint`.

    "8.2" and "8.2.*" are equivalent; an exact version must be supported.
    """
    c = (constraint or DEFAULT_CONSTRAINT).strip()
    if "*" not in c and c.count(".") < 2:
        c = f"{c}.*"
    matches = [v for v in SUPPORTED_VERSIONS if fnmatch(v, c)]
    if not matches:
        return None
    return max(matches, key=_as_tuple)


@dataclass
class PhpDistModule:
    name: str = "php_dist"

    def _version(self, step: BuildStep) -> str:
        constraint = step.var("BP_PHP_VERSION")
        version = resolve_version(constraint)
        if version is None:
            raise BuildFailure(
                MODULE_ID,
                f"no supported PHP version matches {constraint!r} (supported: {', '.join(SUPPORTED_VERSIONS)})",
                phase="inputs",
            )
        return version

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        # the binary is built per stack
        return {"version": self._version(step), "stack": step.stack_id}

    def build(self, step: BuildStep) -> LayerContribution:
        version = self._version(step)
        home = step.layer_dir("php")

        constraint = step.var("BP_PHP_VERSION")
        source = "BP_PHP_VERSION" if constraint else "default"
        step.log.line(f"  Selected PHP version {version} (from {source})")

        out = LayerContribution(name="php", flags=LayerFlags(build=True, launch=True, cache=True))
        out.file("bin/php", launcher(f"/usr/lib/php/{version}/bin/php"))
        out.file("etc/php.ini", "\n".join([
            "[PHP]",
            "display_errors = Off",
            "expose_php = Off",
            f"extension_dir = \"{home}/lib/php/extensions\"",
            "",
        ]))
        out.metadata = {"version": version, "stack": step.stack_id}

        out.prepend("PATH", f"{home}/bin", ":")
        out.override("PHP_HOME", home)
        out.override("PHPRC", f"{home}/etc")
        out.append("PHP_INI_SCAN_DIR", f"{home}/etc/php.ini.d", ":")
        return out


MODULE = PhpDistModule()
