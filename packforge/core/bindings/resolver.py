from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from packforge.core.bindings.models import BindingIndex, ServiceBinding
from packforge.core.errors import BindingConfigurationError, ConfigurationWarning, collect_warning

log = logging.getLogger("packforge.bindings")

_RESERVED = {"type", "provider"}


def _warn(sink: Optional[List[ConfigurationWarning]], code: str, message: str, **data) -> None:
    log.warning(message)
    collect_warning(sink, code, message, **data)


def _read_binding(path: Path, sink: Optional[List[ConfigurationWarning]]) -> Optional[ServiceBinding]:
    type_file = path / "type"
    if not type_file.is_file():
        _warn(sink, "bindings.missing_type", f"Binding {path.name!r} has no type file; ignored", binding=path.name)
        return None

    binding_type = type_file.read_text(encoding="utf-8", errors="replace").strip()
    if not binding_type:
        _warn(sink, "bindings.empty_type", f"Binding {path.name!r} has an empty type file; ignored", binding=path.name)
        return None

    provider = None
    provider_file = path / "provider"
    if provider_file.is_file():
        provider = provider_file.read_text(encoding="utf-8", errors="replace").strip() or None

    entries: Dict[str, bytes] = {}
    for f in sorted(path.iterdir(), key=lambda p: p.name):
        # Kubernetes mounts keep the real files behind ..data symlinks
        if f.name.startswith(".") or f.name in _RESERVED:
            continue
        if not f.is_file():
            continue
        entries[f.name] = f.read_bytes()

    return ServiceBinding(name=path.name, type=binding_type, entries=entries, provider=provider)


def read_bindings(
    root: Optional[Path],
    *,
    warnings: Optional[List[ConfigurationWarning]] = None,
) -> BindingIndex:
    """
    Read every immediate subdirectory of `root` as one binding.

    A missing root is not an error: it means no service was bound. A root that
    exists but cannot be listed is fatal. A single malformed binding is skipped
    with a warning.
    """
    if root is None:
        return BindingIndex()

    root = Path(root)
    if not root.exists():
        log.debug("binding root %s does not exist; no bindings", root)
        return BindingIndex()

    if not root.is_dir():
        raise BindingConfigurationError(f"Service binding root {root} is not a directory")

    try:
        children = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise BindingConfigurationError(f"Service binding root {root} is not readable: {e}") from e

    found: List[ServiceBinding] = []
    for child in children:
        if child.name.startswith(".") or not child.is_dir():
            continue
        try:
            binding = _read_binding(child, warnings)
        except OSError as e:
            _warn(
                warnings,
                "bindings.unreadable_entry",
                f"Binding {child.name!r} could not be read ({e}); ignored",
                binding=child.name,
            )
            continue
        if binding is not None:
            found.append(binding)

    log.debug("read %d binding(s) from %s", len(found), root)
    return BindingIndex(found)


def bindings(root: Optional[Path]) -> Dict[str, Dict[str, Dict[str, bytes]]]:
    """type -> name -> key -> raw bytes"""
    return read_bindings(root).as_mapping()
