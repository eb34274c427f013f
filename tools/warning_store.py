import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional
import redis
from loguru import logger

from matching.errors import InfrastructureError
from matching.models import AuditLogEntry, DuplicateWarning

WARNING_KEY = "dupwarn:{}"
WARNING_INDEX = "dupwarn:index"
AUDIT_KEY = "dupaudit:{}"


def _score(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


@contextmanager
def _redis_guard(operation: str):
    try:
        yield
    except redis.RedisError as e:
        raise InfrastructureError(f"Warning store {operation} failed: {e}") from e


class WarningStore:
    """Redis-backed store for duplicate warnings and their decision audit trail."""

    def __init__(self, redis_url: Optional[str] = None):
        """Initialize Redis connection, falling back to process memory."""
        self.r = None
        self._warnings: Dict[str, DuplicateWarning] = {}
        self._audit: Dict[str, List[AuditLogEntry]] = {}

        redis_url = redis_url or os.getenv("REDIS_URL")
        if not redis_url:
            logger.warning("No REDIS_URL provided, using in-memory warning store")
            return

        try:
            self.r = redis.from_url(redis_url)
            # Test connection
            self.r.ping()
            logger.info("Redis connection established successfully")
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Redis connection failed: {e}")
            # Fallback to in-memory storage (not recommended for production)
            self.r = None

    @property
    def backend(self) -> str:
        return "redis" if self.r else "memory"

    def create_warning(self, warning: DuplicateWarning) -> str:
        """
        Insert a new warning.

        Args:
            warning: Fully populated warning, decision fields unset

        Returns:
            The warning id
        """
        if not self.r:
            self._warnings[warning.id] = warning.model_copy(deep=True)
            return warning.id

        with _redis_guard("create"):
            pipe = self.r.pipeline(transaction=True)
            pipe.set(WARNING_KEY.format(warning.id), warning.model_dump_json())
            pipe.zadd(WARNING_INDEX, {warning.id: _score(warning.created_at)})
            pipe.execute()
        return warning.id

    def get_warning(self, warning_id: str) -> Optional[DuplicateWarning]:
        if not self.r:
            warning = self._warnings.get(warning_id)
            return warning.model_copy(deep=True) if warning else None

        with _redis_guard("read"):
            raw = self.r.get(WARNING_KEY.format(warning_id))
        return DuplicateWarning.model_validate_json(raw) if raw else None

    def record_decision(self, warning: DuplicateWarning, entry: AuditLogEntry) -> None:
        """
        Overwrite the stored warning's decision fields and append its audit entry.

        Both writes land together or not at all.
        """
        if not self.r:
            stored = warning.model_copy(deep=True)
            audit = self._audit.get(entry.warning_id, []) + [entry]
            self._warnings[warning.id] = stored
            self._audit[entry.warning_id] = audit
            return

        with _redis_guard("decision update"):
            pipe = self.r.pipeline(transaction=True)
            pipe.set(WARNING_KEY.format(warning.id), warning.model_dump_json(), xx=True)
            pipe.rpush(AUDIT_KEY.format(entry.warning_id), entry.model_dump_json())
            pipe.execute()

    def list_audit(self, warning_id: str) -> List[AuditLogEntry]:
        if not self.r:
            return list(self._audit.get(warning_id, []))

        with _redis_guard("audit read"):
            rows = self.r.lrange(AUDIT_KEY.format(warning_id), 0, -1)
        return [AuditLogEntry.model_validate_json(row) for row in rows]

    def list_warnings(self, date_from: Optional[datetime] = None,
                      date_to: Optional[datetime] = None) -> List[DuplicateWarning]:
        """All warnings created within the inclusive range, oldest first."""
        low = _score(date_from) if date_from else float("-inf")
        high = _score(date_to) if date_to else float("inf")

        if not self.r:
            warnings = [
                w.model_copy(deep=True) for w in self._warnings.values()
                if low <= _score(w.created_at) <= high
            ]
            return sorted(warnings, key=lambda w: w.created_at)

        with _redis_guard("range read"):
            ids = self.r.zrangebyscore(
                WARNING_INDEX,
                low if date_from else "-inf",
                high if date_to else "+inf",
            )
            return self._load_many(ids)

    def recent_warnings(self, limit: int = 50, include_resolved: bool = False) -> List[DuplicateWarning]:
        """Newest warnings first, optionally skipping decided ones."""
        if not self.r:
            warnings = sorted(self._warnings.values(), key=lambda w: w.created_at, reverse=True)
        else:
            with _redis_guard("recent read"):
                ids = self.r.zrevrange(WARNING_INDEX, 0, -1)
                warnings = self._load_many(ids)

        if not include_resolved:
            warnings = [w for w in warnings if not w.decision_made]
        return [w.model_copy(deep=True) for w in warnings[:limit]]

    def _load_many(self, ids) -> List[DuplicateWarning]:
        if not ids:
            return []
        keys = [WARNING_KEY.format(i.decode() if isinstance(i, bytes) else i) for i in ids]
        return [DuplicateWarning.model_validate_json(raw) for raw in self.r.mget(keys) if raw]

    def ping(self) -> bool:
        if not self.r:
            return True
        try:
            return bool(self.r.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False
