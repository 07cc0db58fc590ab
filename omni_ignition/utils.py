"""
Helpers shared by the graph builder, the journals and the deployment runner.

- canonical_json_str: sorted keys, no whitespace, no NaN; the input to every
  node fingerprint, so the same definition always hashes the same
- sha3_256_hex: 0x-prefixed digest used for fingerprints and simulated chain ids
- atomic_write_text: journal.json / deployed_addresses.json are replaced in one
  rename, never left half written
"""
from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

__all__ = [
    "canonical_json_str",
    "sha3_256_hex",
    "ensure_dir",
    "atomic_write_bytes",
    "atomic_write_text",
]

PathLike = Union[str, os.PathLike]


def canonical_json_str(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), allow_nan=False)


def sha3_256_hex(data: Any) -> str:
    """
    SHA3-256 of `data` as a 0x-prefixed hex string.

    bytes are hashed as-is, str as UTF-8, anything else as its canonical JSON.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        raw = bytes(data)
    elif isinstance(data, str):
        raw = data.encode("utf-8")
    else:
        raw = canonical_json_str(data).encode("utf-8")
    return "0x" + hashlib.sha3_256(raw).hexdigest()


def ensure_dir(p: PathLike) -> Path:
    """Create `p` (and parents) if missing; return it as a Path."""
    path = Path(p)
    path.mkdir(parents=True, exist_ok=True)
    return path


def atomic_write_bytes(path: PathLike, data: bytes) -> Path:
    """
    Replace `path` with `data` via a temp file in the same directory, fsync and
    os.replace. On any failure the temp file is removed and `path` is untouched.
    """
    target = Path(path)
    ensure_dir(target.parent)
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return target


def atomic_write_text(path: PathLike, text: str) -> Path:
    return atomic_write_bytes(path, text.encode("utf-8"))
