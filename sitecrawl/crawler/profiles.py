"""Per-host cache of structure plans, reused across runs."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from .storage import atomic_write_json, read_json
from .types import Plan


LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9._-]")


def profile_key(host: str) -> str:
    """Filesystem-safe file stem for a host."""

    key = _UNSAFE_CHARS.sub("_", host.strip().lower())
    return key or "unknown"


class ProfileStore:
    """Stores one plan per host as `<directory>/<host>.json`."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, host: str) -> Path:
        return self.directory / f"{profile_key(host)}.json"

    def load(self, host: str) -> Plan | None:
        """Return the cached plan, or None on a miss.

        A corrupt or unreadable profile is treated as a miss.
        """

        path = self.path_for(host)
        if not path.is_file():
            return None
        try:
            return Plan.from_json(read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Ignoring unreadable profile %s: %s", path, exc)
            return None

    def save(self, host: str, plan: Plan) -> bool:
        path = self.path_for(host)
        try:
            atomic_write_json(path, plan.to_json(), sort_keys=False)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("Failed to save profile %s: %s", path, exc)
            return False
        LOGGER.info("Saved profile for %s to %s", host, path)
        return True


__all__ = ["ProfileStore", "profile_key"]
