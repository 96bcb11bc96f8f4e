from __future__ import annotations

from typing import Any, Dict

from packforge.core.hashing import canonical_json, sha256_hex


def compute_fingerprint(module_id: str, version: str, inputs: Dict[str, Any]) -> str:
    """
    Content address of a module's layer.

    Only what the module declared as its inputs goes in: selected versions,
    configuration variables, values inherited from earlier modules, binding
    settings and digests of source files. Never time or randomness.
    """
    payload = {"id": module_id, "version": version, "inputs": inputs}
    return sha256_hex(canonical_json(payload))
