from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Optional

from packforge.core.errors import ConfigurationError
from packforge.core.layers.exec_module import ExecModule
from packforge.core.plan.models import ModuleDescriptor
from packforge.plugins.modules._internal.types import ModuleImplementation

log = logging.getLogger("packforge.registry")


@dataclass(frozen=True)
class ModuleInfo:
    name: str
    file: str


class ModuleRegistry:
    """
    Build-step implementations loaded from `*.py` files.

    Each file exports MODULE: an object with a `name`, `config_inputs(step)`
    and `build(step)`. Files whose names start with `_` are skipped. Order
    descriptors point at an implementation by that name, or carry an `exec`
    command instead.
    """

    def __init__(self, modules_dirs: Iterable[str | Path]):
        self._dirs = [Path(d) for d in modules_dirs if d]
        self._modules: Dict[str, Any] = {}
        self._module_files: Dict[str, Path] = {}
        self._fingerprint: Optional[str] = None
        self._loaded = False

    @property
    def fingerprint(self) -> str:
        if self._fingerprint is None:
            self._fingerprint = self._compute_fingerprint()
        return self._fingerprint

    def reload(self) -> None:
        self._modules.clear()
        self._module_files.clear()
        self._fingerprint = None
        self._loaded = False
        self.load_all()

    def load_all(self) -> None:
        for py in self._files():
            impl = self._load_module_from_file(py)
            if impl.name in self._modules:
                raise ConfigurationError(
                    f"Duplicate module implementation: {impl.name} ({py}, {self._module_files[impl.name]})"
                )
            self._modules[impl.name] = impl
            self._module_files[impl.name] = py
        self._loaded = True
        log.debug("loaded %d module implementation(s) fingerprint=%s", len(self._modules), self.fingerprint)

    def list_modules(self) -> List[ModuleInfo]:
        self._ensure_loaded()
        return [ModuleInfo(name=n, file=str(self._module_files[n])) for n in sorted(self._modules.keys())]

    def get(self, name: str) -> Optional[ModuleImplementation]:
        self._ensure_loaded()
        return self._modules.get(name)

    def resolve(self, descriptor: ModuleDescriptor) -> ModuleImplementation:
        if descriptor.exec_command:
            return ExecModule(descriptor)

        impl = self.get(descriptor.implementation or "")
        if impl is None:
            raise ConfigurationError(
                f"{descriptor.key} names unknown implementation {descriptor.implementation!r}"
            )
        return impl

    # --- internals ---

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load_all()

    def _files(self) -> List[Path]:
        out: List[Path] = []
        for d in self._dirs:
            if not d.is_dir():
                continue
            out.extend(py for py in sorted(d.glob("*.py")) if not py.name.startswith("_"))
        return out

    def _compute_fingerprint(self) -> str:
        h = hashlib.sha256()
        for py in self._files():
            h.update(py.name.encode("utf-8"))
            h.update(b"\0")
            h.update(py.read_bytes())
            h.update(b"\0")
        return h.hexdigest()[:16]

    def _load_symbol(self, *, file_path: Path, module_qualname: str) -> ModuleType:
        spec = importlib.util.spec_from_file_location(module_qualname, str(file_path))
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load spec for {module_qualname} from {file_path}")

        module = importlib.util.module_from_spec(spec)

        # dataclasses look the module up in sys.modules while exec_module runs
        sys.modules[module_qualname] = module
        spec.loader.exec_module(module)
        return module

    def _load_module_from_file(self, file_path: Path) -> ModuleImplementation:
        # the same stem may exist in more than one directory
        tag = hashlib.sha1(str(file_path.resolve()).encode("utf-8")).hexdigest()[:8]
        module_name = f"packforge.plugins.modules._runtime.{file_path.stem}_{tag}"
        module = self._load_symbol(file_path=file_path, module_qualname=module_name)

        if not hasattr(module, "MODULE"):
            raise ConfigurationError(f"{file_path.name} must define MODULE")

        impl = module.MODULE

        if not getattr(impl, "name", None):
            raise ConfigurationError(f"{file_path.name}: MODULE must have 'name'")

        for attr in ("config_inputs", "build"):
            if not callable(getattr(impl, attr, None)):
                raise ConfigurationError(f"{file_path.name}: MODULE must implement {attr}()")

        return impl


_DEFAULT: Optional[ModuleRegistry] = None


def get_registry(extra_dir: Optional[Path] = None, modules_dir: Optional[Path] = None) -> ModuleRegistry:
    """Registry over `modules_dir` (the built-in modules by default) plus one optional extra directory."""
    global _DEFAULT
    from packforge.core.settings import DEFAULT_MODULES_DIR

    base = Path(modules_dir) if modules_dir is not None else DEFAULT_MODULES_DIR
    if extra_dir is not None or base != DEFAULT_MODULES_DIR:
        return ModuleRegistry([base, extra_dir])
    if _DEFAULT is None:
        _DEFAULT = ModuleRegistry([DEFAULT_MODULES_DIR])
    return _DEFAULT
