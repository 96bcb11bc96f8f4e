from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.errors import BuildFailure
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import file_digests

MODULE_ID = "paketo-buildpacks/procfile"

_LINE = re.compile(r"^([A-Za-z0-9_-]+):\s*(.+)$")


def parse_procfile(text: str) -> Dict[str, str]:
    """`type: command` per line; blank lines and comments are ignored, later types win."""
    procs: Dict[str, str] = {}
    for raw in text.splitlines():
        ln = raw.strip()
        if not ln or ln.startswith("#"):
            continue
        m = _LINE.match(ln)
        if m:
            procs[m.group(1)] = m.group(2).strip()
    return procs


@dataclass
class ProcfileModule:
    name: str = "procfile"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"files": file_digests(step, "Procfile")}

    def build(self, step: BuildStep) -> LayerContribution:
        path = step.source / "Procfile"
        procs = parse_procfile(path.read_text(encoding="utf-8"))
        if not procs:
            raise BuildFailure(MODULE_ID, "Procfile declares no processes")

        step.log.line("  Procfile:")
        out = LayerContribution(name="procfile", flags=LayerFlags(launch=True))
        for ptype in sorted(procs):
            out.process(ptype, procs[ptype])
            step.log.line(f"    {ptype}: {procs[ptype]}")
        out.metadata = {"processes": sorted(procs)}
        return out


MODULE = ProcfileModule()
