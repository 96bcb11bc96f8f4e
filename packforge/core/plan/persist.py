from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from packforge.core.hashing import canonical_json

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger("packforge.locking").warning(
        "fcntl not available (non-POSIX). events.log appends are not locked on this platform."
    )

_IMAGE_ID = re.compile(r"^(sha256:)?([0-9a-f]{64})$")


@contextmanager
def _locked_file(path: Path, mode: str) -> Generator:
    with open(path, mode) as fh:
        if _HAS_FCNTL:
            _fcntl.flock(fh, _fcntl.LOCK_EX)
        try:
            yield fh
        finally:
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_UN)


def _builds_dir(state_dir: Path) -> Path:
    d = Path(state_dir) / "builds"
    d.mkdir(parents=True, exist_ok=True)
    return d


def _digest_part(image_id: str) -> str:
    m = _IMAGE_ID.match((image_id or "").strip())
    if not m:
        raise ValueError(f"not an image id: {image_id!r}")
    return m.group(2)


def save_descriptor(state_dir: Path, descriptor: Dict[str, Any]) -> Path:
    out = _builds_dir(state_dir) / f"{_digest_part(descriptor['image_id'])}.json"
    out.write_text(canonical_json(descriptor), encoding="utf-8")
    return out


def load_descriptor(state_dir: Path, image_id: str) -> Optional[Dict[str, Any]]:
    p = _builds_dir(state_dir) / f"{_digest_part(image_id)}.json"
    if not p.exists():
        return None
    return json.loads(p.read_text(encoding="utf-8"))


def list_descriptors(state_dir: Path) -> List[str]:
    return sorted("sha256:" + p.stem for p in _builds_dir(state_dir).glob("*.json"))


def append_events(state_dir: Path, events: List[Dict[str, Any]]) -> None:
    """
    Append JSONL events to <state_dir>/events.log.
    If the existing file doesn't end with a newline, add one first.
    """
    if not events:
        return

    log = Path(state_dir) / "events.log"
    log.parent.mkdir(parents=True, exist_ok=True)

    with _locked_file(log, "ab+") as f:
        f.seek(0, 2)
        size = f.tell()
        if size > 0:
            f.seek(-1, 2)
            last = f.read(1)
            f.seek(0, 2)
            if last != b"\n":
                f.write(b"\n")

        for e in events:
            f.write((json.dumps(e, sort_keys=True) + "\n").encode("utf-8"))


def read_events(state_dir: Path) -> List[Dict[str, Any]]:
    log = Path(state_dir) / "events.log"
    if not log.exists():
        return []
    out: List[Dict[str, Any]] = []
    for ln in log.read_text(encoding="utf-8").splitlines():
        ln = ln.strip()
        if ln:
            out.append(json.loads(ln))
    return out


def compare_descriptors(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    a_map = {f"{x['owner']}/{x['name']}": x["digest"] for x in a.get("layers") or []}
    b_map = {f"{x['owner']}/{x['name']}": x["digest"] for x in b.get("layers") or []}

    added = [{"layer": k, "digest": b_map[k]} for k in sorted(set(b_map) - set(a_map))]
    removed = [{"layer": k, "digest": a_map[k]} for k in sorted(set(a_map) - set(b_map))]

    changed = []
    for k in sorted(set(a_map) & set(b_map)):
        if a_map[k] != b_map[k]:
            changed.append({"layer": k, "digest_a": a_map[k], "digest_b": b_map[k]})

    a_env = a.get("env") or {}
    b_env = b.get("env") or {}
    env_changed = sorted(k for k in set(a_env) | set(b_env) if a_env.get(k) != b_env.get(k))

    return {
        "kind": "image_compare",
        "image_a": a.get("image_id"),
        "image_b": b.get("image_id"),
        "identical": a.get("image_id") == b.get("image_id"),
        "summary": {
            "added": len(added),
            "removed": len(removed),
            "changed": len(changed),
        },
        "added": added,
        "removed": removed,
        "changed": changed,
        "plan_changed": a.get("plan") != b.get("plan"),
        "stack_changed": a.get("stack") != b.get("stack"),
        "env_changed": env_changed,
    }
