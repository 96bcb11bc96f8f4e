from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.errors import BuildFailure
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags

MODULE_ID = "paketo-buildpacks/image-labels"

OCI_PREFIX = "BP_OCI_"


def parse_labels(raw: str) -> Dict[str, str]:
    """
    Shell-style `key=value` pairs:

        BP_IMAGE_LABELS='cool-label=cool-value other="two words"'
    """
    labels: Dict[str, str] = {}
    for token in shlex.split(raw or ""):
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ValueError(f"label {token!r} is not of the form key=value")
        labels[key] = value
    return labels


def oci_label(var: str) -> str:
    """BP_OCI_REF_NAME -> org.opencontainers.image.ref.name"""
    return "org.opencontainers.image." + var[len(OCI_PREFIX):].lower().replace("_", ".")


@dataclass
class ImageLabelsModule:
    name: str = "image_labels"

    def _labels(self, step: BuildStep) -> Dict[str, str]:
        env = step.context.config.env
        labels: Dict[str, str] = {}
        for var in sorted(n for n in env if n.startswith(OCI_PREFIX) and len(n) > len(OCI_PREFIX)):
            labels[oci_label(var)] = env[var]
        try:
            labels.update(parse_labels(step.var("BP_IMAGE_LABELS") or ""))
        except ValueError as e:
            raise BuildFailure(MODULE_ID, f"BP_IMAGE_LABELS: {e}") from e
        return labels

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {"labels": self._labels(step)}

    def build(self, step: BuildStep) -> LayerContribution:
        labels = self._labels(step)
        out = LayerContribution(name="image-labels", flags=LayerFlags(launch=False))
        for k in sorted(labels):
            out.label(k, labels[k])
            step.log.line(f"  Adding label {k}")
        out.metadata = {"labels": sorted(labels)}
        return out


MODULE = ImageLabelsModule()
