"""Persistent usage cache.

Keeps the most recent known usage per account across restarts so the account
list can be shown with usage figures before live fetches complete. The cache
never raises: a missing, unreadable or corrupt file behaves as an empty cache.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import orjson
from structlog import get_logger

from code_revolver.rotation.models import UsageSnapshot


logger = get_logger(__name__)

CACHE_FILE_VERSION = 1


@dataclass(frozen=True)
class CacheEntry:
    """Usage snapshot plus the time it was cached."""

    usage: UsageSnapshot
    cached_at: int  # Unix timestamp ms

    def to_dict(self) -> dict[str, Any]:
        return {"usage": self.usage.to_dict(), "cachedAt": self.cached_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            usage=UsageSnapshot.from_dict(data["usage"]),
            cached_at=int(data["cachedAt"]),
        )


class UsageCache:
    """JSON file cache of usage snapshots keyed by account file path."""

    def __init__(self, file_path: Path) -> None:
        self.file_path = Path(file_path).expanduser()
        self._entries: dict[str, CacheEntry] | None = None

    @property
    def entries(self) -> dict[str, CacheEntry]:
        """In-memory view, loaded from disk on first access."""
        if self._entries is None:
            self._entries = self.load()
        return self._entries

    def load(self) -> dict[str, CacheEntry]:
        """Load all entries from disk.

        Returns:
            Mapping of account key to cache entry; empty when the file is
            missing or unreadable. Individual malformed entries are skipped.
        """
        if not self.file_path.exists():
            return {}

        try:
            data = orjson.loads(self.file_path.read_bytes())
        except orjson.JSONDecodeError:
            logger.warning("usage_cache_json_decode_error", path=str(self.file_path))
            return {}
        except OSError as e:
            logger.warning(
                "usage_cache_read_error", path=str(self.file_path), error=str(e)
            )
            return {}

        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw_entries, dict):
            logger.warning("usage_cache_invalid_format", path=str(self.file_path))
            return {}

        entries: dict[str, CacheEntry] = {}
        for key, raw in raw_entries.items():
            try:
                entries[key] = CacheEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("usage_cache_entry_skipped", key=key, error=str(e))

        logger.debug("usage_cache_loaded", path=str(self.file_path), count=len(entries))
        return entries

    def save(self, entries: dict[str, CacheEntry] | None = None) -> bool:
        """Write entries to disk (temp file, then rename).

        Args:
            entries: Entries to write. Defaults to the in-memory view.

        Returns:
            True if saved successfully
        """
        if entries is not None:
            self._entries = dict(entries)
        payload = {
            "version": CACHE_FILE_VERSION,
            "entries": {key: entry.to_dict() for key, entry in self.entries.items()},
        }

        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.file_path.with_suffix(".json.tmp")
            temp_path.write_bytes(orjson.dumps(payload))
            temp_path.replace(self.file_path)
        except OSError as e:
            logger.error("usage_cache_save_failed", path=str(self.file_path), error=str(e))
            return False

        return True

    def get(self, key: str) -> CacheEntry | None:
        return self.entries.get(key)

    def put(self, key: str, usage: UsageSnapshot, cached_at: int) -> bool:
        """Record a fresh snapshot and persist.

        An entry older than the one already held is ignored, so results from a
        superseded refresh cycle never roll the cache backwards.

        Returns:
            True if the entry was stored
        """
        existing = self.entries.get(key)
        if existing is not None and existing.cached_at > cached_at:
            logger.debug(
                "usage_cache_stale_put_ignored",
                key=key,
                cached_at=cached_at,
                existing_cached_at=existing.cached_at,
            )
            return False

        self.entries[key] = CacheEntry(usage=usage, cached_at=cached_at)
        self.save()
        return True
