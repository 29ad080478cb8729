# storage/local_store.py
"""Device-local persistent key-value cache backed by JSON files."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from typing import Any

import structlog
from config import settings

logger = structlog.get_logger(__name__)


def _filename_for_key(key: str) -> str:
    safe_key = "".join(c if c.isalnum() or c in ["_", "-", "."] else "_" for c in key)
    # Distinct keys can sanitize to the same name; the hash keeps them apart.
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{safe_key[:120]}.{digest}.json"


class LocalStore:
    """Synchronous JSON key-value store scoped to this device.

    Every operation is best-effort: read failures are reported as misses and
    write failures are logged and reported as ``False``, never raised.
    """

    def __init__(self, base_dir: str = settings.LOCAL_STORE_DIR) -> None:
        self.base_dir = base_dir
        try:
            os.makedirs(self.base_dir, exist_ok=True)
        except OSError as exc:
            logger.warning(
                "Local store directory unavailable", base_dir=base_dir, error=str(exc)
            )

    def _path(self, key: str) -> str:
        return os.path.join(self.base_dir, _filename_for_key(key))

    def get_item(self, key: str) -> Any | None:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Failed reading local item", key=key, error=str(exc))
            return None
        if not isinstance(record, dict) or record.get("key") != key:
            return None
        return record.get("value")

    def set_item(self, key: str, value: Any) -> bool:
        path = self._path(key)
        tmp_path: str | None = None
        try:
            payload = json.dumps({"key": key, "value": value}, ensure_ascii=False)
            os.makedirs(self.base_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed saving local item", key=key, error=str(exc))
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.debug("Could not remove temp file", path=tmp_path)
            return False

    def remove_item(self, key: str) -> bool:
        path = self._path(key)
        try:
            if os.path.exists(path):
                os.remove(path)
            return True
        except OSError as exc:
            logger.warning("Failed removing local item", key=key, error=str(exc))
            return False

    def keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with ``prefix``."""
        found: list[str] = []
        try:
            names = sorted(os.listdir(self.base_dir))
        except OSError as exc:
            logger.warning("Failed listing local store", error=str(exc))
            return found
        for name in names:
            if not name.endswith(".json"):
                continue
            try:
                with open(os.path.join(self.base_dir, name), encoding="utf-8") as f:
                    record = json.load(f)
            except (OSError, ValueError):
                continue
            key = record.get("key") if isinstance(record, dict) else None
            if isinstance(key, str) and key.startswith(prefix):
                found.append(key)
        return found
