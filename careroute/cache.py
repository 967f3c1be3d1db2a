"""
Persistent geocoding cache for CareRoute.

Successful lookups are stored by the exact address text the user typed,
so the same spreadsheet row never costs a second request to Nominatim.
The cache is a JSON object ``{address: {"lat": .., "lng": ..}}`` and is
rewritten after every new entry. Without a path it lives in memory only,
which is what the tests use.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from .models import Coordinate

logger = logging.getLogger(__name__)


class GeoCache:
    """Address → coordinate mapping with a load/flush lifecycle."""

    def __init__(self, path: Union[None, str, Path] = None, autosave: bool = True):
        self.path = Path(path) if path is not None else None
        self.autosave = autosave
        self._entries: Dict[str, Coordinate] = {}
        self._lock = threading.Lock()
        if self.path is not None:
            self.load()

    def load(self) -> None:
        """Read the cache file, starting empty if it is missing or unreadable."""
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Could not read geocoding cache %s: %s", self.path, exc)
            return
        if not isinstance(raw, dict):
            logger.error("Geocoding cache %s does not hold a JSON object, starting empty", self.path)
            return
        entries = {}
        for address, value in raw.items():
            try:
                entries[address] = Coordinate(float(value["lat"]), float(value["lng"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed cache entry for %r", address)
        with self._lock:
            self._entries.update(entries)
        logger.info("Geocoding cache loaded: %d addresses", len(entries))

    def flush(self) -> None:
        """Write all entries to disk. No-op for an in-memory cache."""
        if self.path is None:
            return
        with self._lock:
            payload = {addr: {"lat": c.lat, "lng": c.lon} for addr, c in self._entries.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error("Failed to write geocoding cache %s: %s", self.path, exc)

    def get(self, address: str) -> Optional[Coordinate]:
        with self._lock:
            return self._entries.get(address)

    def set(self, address: str, coordinate: Coordinate) -> None:
        with self._lock:
            self._entries[address] = Coordinate(*coordinate)
        logger.debug("Cached coordinates for %r", address[:50])
        if self.autosave:
            self.flush()

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))
