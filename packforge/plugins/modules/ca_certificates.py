from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from packforge.core.hashing import sha256_hex
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import flag

BINDING_TYPE = "ca-certificates"


@dataclass
class CACertificatesModule:
    """
    Decides whether the image gets an extended trust store.

    Certificates bound at build time are added to the layer. Whether the
    running container may pick up further certificates from its own
    bindings is recorded, not performed.
    """

    name: str = "ca_certificates"

    def _certs(self, step: BuildStep) -> Dict[str, bytes]:
        out: Dict[str, bytes] = {}
        for binding_name, b in step.bindings.of_type(BINDING_TYPE).items():
            for key in sorted(b.entries):
                out[f"certs/{binding_name}/{key}"] = b.entries[key]
        return out

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        return {
            "runtime_binding": flag(step, "BP_ENABLE_RUNTIME_CERT_BINDING", True),
            "certs": {path: sha256_hex(content) for path, content in self._certs(step).items()},
        }

    def build(self, step: BuildStep) -> LayerContribution:
        runtime = flag(step, "BP_ENABLE_RUNTIME_CERT_BINDING", True)
        certs = self._certs(step)

        out = LayerContribution(name="ca-certificates", flags=LayerFlags(build=True, launch=True))
        for path, content in certs.items():
            out.file(path, content)

        if certs:
            out.prepend("SSL_CERT_DIR", f"{step.layer_dir('ca-certificates')}/certs", ":")
            step.log.line(f"  Added {len(certs)} additional CA certificate(s) to system truststore")

        out.metadata = {
            "build_certificates": len(certs),
            "runtime_cert_binding": runtime,
        }
        if runtime:
            step.log.line("  Runtime CA certificate bindings enabled")
        return out


MODULE = CACertificatesModule()
