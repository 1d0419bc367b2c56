"""Persistent cache for the canonical price series."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import pandas as pd

from .normalize import normalize_rows
from .series import SERIES_COLUMNS, canonicalize, empty_series
from .errors import ParseError

logger = logging.getLogger(__name__)

CACHE_KEY = "goldsilver.prices.v1"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    """Dictionary-backed store, used by tests and short-lived sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """One JSON file per key inside ``directory``.

    Writes go to a temporary sibling first and are renamed into place so a
    crash mid-write never leaves a truncated blob behind.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)


def _extract_rows(payload: Any) -> Optional[List[Any]]:
    if isinstance(payload, dict):
        payload = payload.get("rows")
    if not isinstance(payload, list):
        return None
    if not all(isinstance(row, dict) for row in payload):
        return None
    return payload


class SeriesStore:
    """Owns the single cached canonical series stored under ``key``."""

    def __init__(self, backend: KeyValueStore, key: str = CACHE_KEY) -> None:
        self.backend = backend
        self.key = key

    def load(self) -> pd.DataFrame:
        """Return the cached series, or an empty one if absent or corrupt."""

        try:
            blob = self.backend.get(self.key)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Price cache unreadable; starting empty", extra={"key": self.key, "error": str(exc)})
            return empty_series()
        if not blob:
            return empty_series()
        try:
            payload = json.loads(blob)
        except ValueError:
            logger.warning("Price cache is not valid JSON; ignoring it", extra={"key": self.key})
            return empty_series()

        rows = _extract_rows(payload)
        if rows is None:
            logger.warning("Price cache has an unexpected shape; ignoring it", extra={"key": self.key})
            return empty_series()
        if not rows:
            return empty_series()
        frame = pd.DataFrame(rows)
        try:
            parsed = normalize_rows(frame)
        except ParseError:
            logger.warning("Price cache rows lack date/gold/silver fields; ignoring it", extra={"key": self.key})
            return empty_series()
        return parsed.prices

    def save(self, series: pd.DataFrame) -> pd.DataFrame:
        """Persist the full series and return it in canonical form.

        A failing backend (full disk, quota) is logged and otherwise ignored;
        the returned frame stays authoritative for the session.
        """

        canonical = canonicalize(series)
        rows = [
            {"date": row.date, "gold": float(row.gold), "silver": float(row.silver)}
            for row in canonical.loc[:, SERIES_COLUMNS].itertuples(index=False)
        ]
        try:
            self.backend.set(self.key, json.dumps(rows))
        except Exception as exc:  # storage backends fail in backend-specific ways
            logger.warning(
                "Could not persist price cache",
                extra={"key": self.key, "rows": len(rows), "error": str(exc)},
            )
        return canonical
