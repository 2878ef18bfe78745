# leafnote/core/config.py
'''
Copyright 2025 Aaron Vose (avose@aaronvose.net)
Licensed under the LGPL v2.1; see the file 'LICENSE' for details.
'''
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from leafnote.core.errors import ValidationFailure
from leafnote.utils.fs_atomic import atomic_write_json, read_json

__all__ = ["DEFAULT_DATA_DIR", "StorageConfig", "default_config", "load_config", "save_config"]

DEFAULT_DATA_DIR = Path("~/.leafnote")

@dataclass
class StorageConfig:
    """Which backend to use and where it keeps its data."""
    backend: str = "structured-database"
    path: Optional[str] = None
    url: Optional[str] = None
    timeout: float = 10.0
    seed_defaults: bool = False
    git_history: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StorageConfig":
        if not isinstance(data, Mapping):
            raise ValidationFailure("Storage configuration must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationFailure(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        cfg = cls(**dict(data))
        if not isinstance(cfg.timeout, (int, float)) or isinstance(cfg.timeout, bool) or cfg.timeout <= 0:
            raise ValidationFailure(f"timeout must be a positive number, got {cfg.timeout!r}")
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

def default_config(data_dir: Union[str, Path, None] = None) -> StorageConfig:
    base = Path(data_dir) if data_dir is not None else DEFAULT_DATA_DIR
    return StorageConfig(backend="structured-database", path=str(base.expanduser() / "leafnote.db"))

def load_config(path: Union[str, Path]) -> StorageConfig:
    """Read a StorageConfig from a JSON file; a missing file yields the defaults."""
    try:
        data = read_json(path, None)
    except ValueError as e:
        raise ValidationFailure(str(e)) from e
    if data is None:
        return default_config()
    return StorageConfig.from_dict(data)

def save_config(config: StorageConfig, path: Union[str, Path]) -> None:
    atomic_write_json(path, config.to_dict())
