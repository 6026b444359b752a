"""
CSV helpers for the catalog reference data (products and suppliers).

Caches file metadata (mtime, size, row count) so the setup check does not
re-read unchanged files, and writes through a temporary file so a reader
never sees a half-written catalog.
"""
import csv
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class CSVManager:
    """Loads and saves CSV files as lists of dictionaries."""

    def __init__(self):
        self._meta_cache: dict[str, dict] = {}

    def get_metadata(self, path: Path) -> dict:
        """
        Get metadata for a CSV file (with caching).

        Returns:
            dict with keys: exists, path, mtime, mtime_iso, size, rows
        """
        if not path.exists():
            return {"exists": False, "path": str(path), "mtime": None, "size": 0, "rows": 0}

        stat = path.stat()
        cached = self._meta_cache.get(str(path))
        if cached and cached.get("mtime") == stat.st_mtime:
            return cached

        with open(path, newline="", encoding="utf-8") as f:
            rows = sum(1 for _ in csv.DictReader(f))

        meta = {
            "exists": True,
            "path": str(path),
            "mtime": stat.st_mtime,
            "mtime_iso": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            "size": stat.st_size,
            "rows": rows,
        }
        self._meta_cache[str(path)] = meta
        return meta

    def load_dicts(self, path: Path) -> list[dict]:
        """Load a CSV file as a list of row dictionaries (empty if missing)."""
        if not path.exists():
            logger.warning("CSV file not found: %s", path)
            return []
        with open(path, newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))

    def save_dicts(self, path: Path, rows: list[dict], fieldnames: list[str]) -> None:
        """Replace a CSV file with the given rows."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
        os.replace(tmp, path)

        self._meta_cache.pop(str(path), None)
        logger.debug("Saved CSV: %s (%d rows)", path, len(rows))


# Global instance for shared use
csv_manager = CSVManager()
