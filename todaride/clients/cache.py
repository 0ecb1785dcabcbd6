"""Local persistence for the ride a client is currently following."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from todaride.config import settings

logger = logging.getLogger(__name__)


class ActiveRideCache:
    """Stores ``{"ride": {...}, "phase": "..."}`` as a JSON file.

    A client restarted mid-ride reloads the entry and resumes polling.
    Unreadable files are treated as empty.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path or settings.ride_cache_path)

    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable ride cache at %s", self.path)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("ride"), dict):
            return None
        return data

    def save(self, ride: dict, phase: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps({"ride": ride, "phase": phase}, default=str), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
