from __future__ import annotations

import hashlib
import json
from pathlib import Path, PurePath
from typing import Any, Iterable


def _default(obj: Any) -> Any:
    if isinstance(obj, bytes):
        return {"sha256": hashlib.sha256(obj).hexdigest()}
    if isinstance(obj, PurePath):
        return obj.as_posix()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not canonically serializable")


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_default)


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _walk_files(root: Path) -> Iterable[Path]:
    # rglob order depends on the filesystem; sort on the relative POSIX path
    files = [p for p in root.rglob("*") if p.is_file()]
    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


def digest_tree(root: Path) -> str:
    """
    Content digest of a directory tree.

    Covers relative paths and file bytes only: no mtimes, owners or walk order.
    """
    h = hashlib.sha256()
    root = Path(root)
    for p in _walk_files(root):
        h.update(p.relative_to(root).as_posix().encode("utf-8"))
        h.update(b"\0")
        h.update(sha256_file(p).encode("ascii"))
        h.update(b"\0")
    return "sha256:" + h.hexdigest()
