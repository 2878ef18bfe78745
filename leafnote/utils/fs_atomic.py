# leafnote/utils/fs_atomic.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any, Union

Pathish = Union[str, Path]

__all__ = ["fsync_dir", "atomic_write_bytes", "atomic_write_text", "atomic_write_json", "read_json"]


def fsync_dir(dir_path: Pathish) -> None:
    """
    Fsync a directory to persist metadata updates (e.g., renames).
    Safe no-op if the directory doesn't exist or can't be opened (Windows).
    """
    d = Path(dir_path)
    if not d.exists():
        return
    try:
        fd = os.open(str(d), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Some filesystems refuse fsync on directories.
        pass
    finally:
        os.close(fd)


def _write_tmp_and_replace(dst_path: Path, data: bytes) -> None:
    """
    Internal helper:
      - create a temp file in dst directory
      - write + fsync temp
      - os.replace -> dst
      - fsync directory
    """
    dst_dir = dst_path.parent
    dst_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = dst_dir / f".{dst_path.name}.tmp-{os.getpid()}-{uuid.uuid4().hex[:8]}"

    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, dst_path)
        fsync_dir(dst_dir)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def atomic_write_bytes(dst: Pathish, data: bytes) -> None:
    """Atomically write bytes to dst path (same-dir temp + replace + fsync)."""
    _write_tmp_and_replace(Path(dst), data)


def atomic_write_text(dst: Pathish, text: str) -> None:
    atomic_write_bytes(dst, text.encode("utf-8"))


def atomic_write_json(dst: Pathish, obj: Any) -> None:
    atomic_write_text(dst, json.dumps(obj, indent=2, ensure_ascii=False))


def read_json(path: Pathish, default: Any = None) -> Any:
    """
    Load JSON from `path`; `default` if the file is missing.
    Raises ValueError on malformed JSON.
    """
    p = Path(path)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return default
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed JSON in {p}: {e}") from e
