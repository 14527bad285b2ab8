"""
Local JSON cache for fetched billing data (persistence collaborator).

One JSON document per (account id, data type) under the cache directory:

    {"account_id": "...", "data_type": "line_items", "last_updated": "<ISO>", "data": [...]}

The billing engine never reads or writes the cache; callers load data from
here and hand it to the engine like freshly fetched data.
"""

import json
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog

from finops.core.config import get_settings

logger = structlog.get_logger(__name__)

DATA_TYPES = ("invoices", "line_items", "summary")

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass
class CacheEntry:
    """A cached document"""
    account_id: str
    data_type: str
    last_updated: datetime
    data: Any

    def age_hours(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.last_updated).total_seconds() / 3600


class CacheStore:
    """File-backed cache keyed by account id and data type"""

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None, stale_hours: Optional[float] = None):
        settings = get_settings().cache
        self.cache_dir = Path(cache_dir) if cache_dir is not None else settings.path
        self.stale_hours = stale_hours if stale_hours is not None else settings.stale_hours
        self._logger = logger.bind(component="cache_store")

    def _path(self, account_id: str, data_type: str) -> Path:
        safe_account = _UNSAFE_CHARS_RE.sub("_", account_id)
        safe_type = _UNSAFE_CHARS_RE.sub("_", data_type)
        return self.cache_dir / f"{safe_account}_{safe_type}.json"

    def save(self, account_id: str, data_type: str, data: Any, now: Optional[datetime] = None) -> bool:
        """
        Write a document, replacing any previous one.

        Returns:
            True on success, False when the document could not be written
        """
        document = {
            "account_id": account_id,
            "data_type": data_type,
            "last_updated": (now or datetime.now(timezone.utc)).isoformat(),
            "data": data,
        }
        path = self._path(account_id, data_type)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(document, default=_json_default)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            self._logger.error("cache_save_failed", account_id=account_id, data_type=data_type, error=str(e))
            return False

        self._logger.info("cache_saved", account_id=account_id, data_type=data_type, path=str(path))
        return True

    def load(self, account_id: str, data_type: str) -> Optional[CacheEntry]:
        """Cached document, or None when missing or unreadable"""
        path = self._path(account_id, data_type)
        if not path.exists():
            self._logger.debug("cache_miss", account_id=account_id, data_type=data_type)
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            last_updated = datetime.fromisoformat(document["last_updated"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            self._logger.warning("cache_unreadable", account_id=account_id, data_type=data_type, error=str(e))
            return None

        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return CacheEntry(
            account_id=document.get("account_id", account_id),
            data_type=document.get("data_type", data_type),
            last_updated=last_updated,
            data=document.get("data"),
        )

    def needs_refresh(
        self,
        account_id: str,
        data_type: str,
        hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """True when the document is missing or older than `hours`"""
        threshold = hours if hours is not None else self.stale_hours
        entry = self.load(account_id, data_type)
        if entry is None:
            return True
        age = entry.age_hours(now)
        stale = age > threshold
        self._logger.debug(
            "cache_freshness",
            account_id=account_id,
            data_type=data_type,
            age_hours=round(age, 1),
            stale=stale,
        )
        return stale

    def clear_account(self, account_id: str) -> int:
        """Delete every known document of an account; returns how many were removed"""
        removed = 0
        for data_type in DATA_TYPES:
            path = self._path(account_id, data_type)
            if path.exists():
                path.unlink()
                removed += 1
        self._logger.info("cache_cleared", account_id=account_id, removed=removed)
        return removed

    def cache_status(self, account_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Summary of the cached line items of an account"""
        entry = self.load(account_id, "line_items")
        if entry is None:
            return {"is_cached": False}
        data = entry.data if isinstance(entry.data, list) else []
        return {
            "is_cached": True,
            "last_updated": entry.last_updated.isoformat(),
            "age_hours": round(entry.age_hours(now), 1),
            "item_count": len(data),
            "is_stale": entry.age_hours(now) > self.stale_hours,
        }
