from __future__ import annotations

import os
from pathlib import Path

import pytest

from omni_ignition.utils import atomic_write_text, canonical_json_str, sha3_256_hex


def test_canonical_json_is_order_independent():
    assert canonical_json_str({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert sha3_256_hex({"b": 1, "a": 2}) == sha3_256_hex({"a": 2, "b": 1})
    assert sha3_256_hex("x") == sha3_256_hex(b"x")
    with pytest.raises(ValueError):
        canonical_json_str(float("nan"))


def test_atomic_write_replaces_file(tmp_path: Path):
    target = tmp_path / "nested" / "journal.json"
    atomic_write_text(target, "one")
    atomic_write_text(target, "two")
    assert target.read_text(encoding="utf-8") == "two"
    assert [p.name for p in target.parent.iterdir()] == ["journal.json"]


def test_failed_atomic_write_leaves_no_temp_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    target = tmp_path / "journal.json"
    atomic_write_text(target, "old")

    def _boom(fd):
        raise OSError("disk full")

    monkeypatch.setattr(os, "fsync", _boom)
    with pytest.raises(OSError, match="disk full"):
        atomic_write_text(target, "new")

    assert target.read_text(encoding="utf-8") == "old"
    assert [p.name for p in tmp_path.iterdir()] == ["journal.json"]
