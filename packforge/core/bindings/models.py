from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class ServiceBinding:
    name: str
    type: str
    entries: Mapping[str, bytes] = field(default_factory=dict)
    provider: Optional[str] = None

    def get(self, key: str) -> Optional[bytes]:
        return self.entries.get(key)

    def text(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raw = self.entries.get(key)
        if raw is None:
            return default
        value = raw.decode("utf-8", errors="replace").strip()
        return value if value else default


class BindingIndex:
    """Bindings found under one binding root, grouped by type then name."""

    def __init__(self, bindings: Iterable[ServiceBinding] = ()):
        self._by_type: Dict[str, Dict[str, ServiceBinding]] = {}
        for b in bindings:
            self._by_type.setdefault(b.type, {})[b.name] = b

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_type.values())

    def has(self, binding_type: str) -> bool:
        return bool(self._by_type.get(binding_type))

    def types(self) -> List[str]:
        return sorted(t for t, v in self._by_type.items() if v)

    def of_type(self, binding_type: str) -> Dict[str, ServiceBinding]:
        found = self._by_type.get(binding_type) or {}
        return {name: found[name] for name in sorted(found)}

    def first(self, *binding_types: str) -> Optional[ServiceBinding]:
        """First binding, by name, of the first listed type that has any."""
        for t in binding_types:
            found = self.of_type(t)
            if found:
                return next(iter(found.values()))
        return None

    def as_mapping(self) -> Dict[str, Dict[str, Dict[str, bytes]]]:
        return {
            t: {name: dict(b.entries) for name, b in self.of_type(t).items()}
            for t in self.types()
        }
