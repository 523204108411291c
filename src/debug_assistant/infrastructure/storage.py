"""Key-value persistence surfaces.

The knowledge base persists itself through the minimal
:class:`KeyValueStorage` protocol so it stays storage-agnostic.  Two
implementations ship with the package: an in-memory dict (tests, ephemeral
sessions) and a JSON file holding one object of ``key -> string``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStorage(Protocol):
    """Anything that can get and set string values by key."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryStorage:
    """Dict-backed storage.  Contents are lost with the instance."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JSONFileStorage:
    """Stores every key in a single JSON object on disk.

    The file is read on each ``get`` and rewritten on each ``set``; it is
    created (with parent directories) on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        return raw

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        logger.debug("JSONFileStorage: wrote %r to %s", key, self._path)
