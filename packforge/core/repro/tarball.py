from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import PurePosixPath
from typing import Mapping, Set

DIR_MODE = 0o755
FILE_MODE = 0o644
EXEC_MODE = 0o755


def _file_mode(rel: str, content: bytes) -> int:
    if content.startswith(b"#!") or PurePosixPath(rel).parts[:1] == ("bin",):
        return EXEC_MODE
    return FILE_MODE


def _tarinfo(name: str, *, size: int = 0, mode: int = FILE_MODE, is_dir: bool = False) -> tarfile.TarInfo:
    ti = tarfile.TarInfo(name)
    ti.type = tarfile.DIRTYPE if is_dir else tarfile.REGTYPE
    ti.size = 0 if is_dir else size
    ti.mode = mode
    ti.uid = 0
    ti.gid = 0
    ti.uname = ""
    ti.gname = ""
    ti.mtime = 0
    return ti


def layer_tar(prefix: str, files: Mapping[str, bytes]) -> bytes:
    """
    Uncompressed tar of one layer with every non-content field pinned:
    sorted entries, mtime 0, root ownership with empty names, fixed modes.
    """
    root = prefix.strip("/")
    dirs: Set[str] = set()
    for rel in files:
        parent = PurePosixPath(root, rel).parent
        while str(parent) not in ("", "."):
            dirs.add(parent.as_posix())
            parent = parent.parent
    if root:
        dirs.add(root)

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for d in sorted(dirs):
            tar.addfile(_tarinfo(d, mode=DIR_MODE, is_dir=True))
        for rel in sorted(files):
            content = files[rel]
            name = PurePosixPath(root, rel).as_posix()
            tar.addfile(_tarinfo(name, size=len(content), mode=_file_mode(rel, content)), io.BytesIO(content))
    return buf.getvalue()


def layer_digest(prefix: str, files: Mapping[str, bytes]) -> str:
    return "sha256:" + hashlib.sha256(layer_tar(prefix, files)).hexdigest()
