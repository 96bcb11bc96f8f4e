from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import Dict, Optional

from packforge.core.hashing import canonical_json, sha256_hex
from packforge.core.layers.models import Layer
from packforge.core.observability.metrics import inc_cache

log = logging.getLogger("packforge.cache")

_RECORD = "layer.json"
_FILES = "files"


class LayerCache:
    """
    Fingerprint-addressed layer store on local disk.

        <root>/<namespace>/<fingerprint>/layer.json
        <root>/<namespace>/<fingerprint>/files/<relative path>

    One namespace per image reference. Entries are written to a temporary
    directory and renamed into place, so readers never see a partial entry
    and concurrent writers of one fingerprint simply replace each other.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.hits = 0
        self.misses = 0

    @staticmethod
    def namespace_for(image_ref: str) -> str:
        return sha256_hex(image_ref or "")[:16]

    def _entry_dir(self, namespace: str, fingerprint: str) -> Path:
        return self.root / namespace / fingerprint

    def get(self, namespace: str, fingerprint: str) -> Optional[Layer]:
        entry = self._entry_dir(namespace, fingerprint)
        record_file = entry / _RECORD
        if not record_file.is_file():
            self.misses += 1
            inc_cache("miss")
            return None

        try:
            record = json.loads(record_file.read_text(encoding="utf-8"))
            files: Dict[str, bytes] = {}
            for rel in record.get("files") or []:
                files[rel] = (entry / _FILES / PurePosixPath(rel)).read_bytes()
            layer = Layer.from_record(record, files)
        except (OSError, ValueError, KeyError) as e:
            log.warning("unreadable cache entry %s (%s); treating as miss", entry, e)
            self.misses += 1
            inc_cache("miss")
            return None

        if layer.fingerprint != fingerprint:
            log.warning("cache entry %s holds fingerprint %s; treating as miss", entry, layer.fingerprint)
            self.misses += 1
            inc_cache("miss")
            return None

        self.hits += 1
        inc_cache("hit")
        log.debug("cache hit %s/%s (%s)", namespace, fingerprint[:12], layer.owner)
        return layer.restored()

    def put(self, namespace: str, layer: Layer) -> Path:
        ns_dir = self.root / namespace
        ns_dir.mkdir(parents=True, exist_ok=True)

        tmp = ns_dir / f".tmp-{layer.fingerprint[:12]}-{uuid.uuid4().hex}"
        try:
            tmp.mkdir(parents=True)
            for rel, content in layer.files.items():
                out = tmp / _FILES / PurePosixPath(rel)
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_bytes(content)
            (tmp / _RECORD).write_text(canonical_json(layer.to_record()), encoding="utf-8")

            target = self._entry_dir(namespace, layer.fingerprint)
            self._swap_into_place(tmp, target)
        finally:
            if tmp.exists():
                shutil.rmtree(tmp, ignore_errors=True)

        inc_cache("write")
        log.debug("cache write %s/%s (%s)", namespace, layer.fingerprint[:12], layer.owner)
        return target

    @staticmethod
    def _swap_into_place(tmp: Path, target: Path, attempts: int = 8) -> None:
        last: Optional[OSError] = None
        for attempt in range(attempts):
            try:
                os.replace(tmp, target)
                return
            except OSError as e:
                last = e
            if attempt == attempts - 1:
                break

            # a populated entry is already there: move it aside and retry
            stale = target.with_name(f".stale-{target.name[:12]}-{uuid.uuid4().hex}")
            try:
                os.replace(target, stale)
            except FileNotFoundError:
                continue
            shutil.rmtree(stale, ignore_errors=True)

        if last is not None and not target.exists():
            raise last
        # other writers kept winning the rename; their entry has the same fingerprint
        log.debug("cache entry %s replaced concurrently; keeping the other writer's copy", target)

    def clear(self, namespace: str) -> None:
        ns_dir = self.root / namespace
        if ns_dir.exists():
            shutil.rmtree(ns_dir)
            log.info("cleared layer cache namespace %s", namespace)
