"""Local key-value storage.

String-in, string-out storage for small pieces of client state such as the
configured aggregation server URL. Values are stored as given; callers do
their own JSON encoding.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Anything with localStorage-like get/set semantics."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Process-local store, used by tests and short-lived sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStore:
    """Store persisted as a flat JSON object on disk.

    The file is read lazily on first access and rewritten on every set.
    A missing or corrupt file is treated as empty.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data

        data: Dict[str, str] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text())
                if isinstance(raw, dict):
                    data = {str(k): str(v) for k, v in raw.items()}
                else:
                    logger.warning(f"Ignoring non-object storage file {self.path}")
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read storage file {self.path}: {e}")
        self._data = data
        return data

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._load().get(key, default)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True))
