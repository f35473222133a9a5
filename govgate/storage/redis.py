"""
Redis Storage Adapters

Redis-based implementation of AuditSink.
Ideal for:
- High-throughput audit ingestion shared by several gateway nodes
- Bounded retention with automatic trimming

Uses redis.asyncio for async operations.

Note: identity and grants are better suited for SQL storage due to their
relational query requirements.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .ports import AuditRecord, AuditSink, StorageError


# =============================================================================
# Serialization Helpers
# =============================================================================

def _serialize_record(record: AuditRecord) -> str:
    return json.dumps({
        "event_id": str(record.event_id),
        "event_type": record.event_type,
        "timestamp": record.timestamp.isoformat(),
        "actor_id": record.actor_id,
        "target": record.target,
        "decision": record.decision,
        "rationale": list(record.rationale),
        "session_id": record.session_id,
        "ip_address": record.ip_address,
        "client_id": record.client_id,
        "data": record.data,
    }, sort_keys=True)


def _deserialize_record(raw: str | bytes) -> AuditRecord:
    if isinstance(raw, bytes):
        raw = raw.decode()
    data: dict[str, Any] = json.loads(raw)
    return AuditRecord(
        event_id=UUID(data["event_id"]),
        event_type=data["event_type"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        actor_id=data.get("actor_id"),
        target=data.get("target"),
        decision=data.get("decision"),
        rationale=list(data.get("rationale") or []),
        session_id=data.get("session_id"),
        ip_address=data.get("ip_address"),
        client_id=data.get("client_id"),
        data=dict(data.get("data") or {}),
    )


# =============================================================================
# Redis Audit Sink
# =============================================================================

class RedisAuditSink(AuditSink):
    """
    Redis-based audit sink ordered by event timestamp.

    Key patterns:
    - audit:events -> ZSET of JSON-encoded AuditRecord scored by timestamp

    Oldest events are trimmed once max_events is exceeded.
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "gov",
        max_events: int = 1_000_000,
    ) -> None:
        """
        Initialize Redis audit sink.

        Args:
            redis: Redis async client
            key_prefix: Prefix for all keys (multi-tenant isolation)
            max_events: Retention bound
        """
        self._redis = redis
        self._prefix = key_prefix
        self._max_events = max_events

    @property
    def key(self) -> str:
        """Key for the event set."""
        return f"{self._prefix}:audit:events"

    async def append(self, record: AuditRecord) -> None:
        try:
            await self._redis.zadd(self.key, {_serialize_record(record): record.timestamp.timestamp()})
            size = await self._redis.zcard(self.key)
            if size > self._max_events:
                await self._redis.zremrangebyrank(self.key, 0, size - self._max_events - 1)
        except RedisError as e:
            raise StorageError(f"Redis audit append failed: {e}") from e

    async def query(
        self,
        actor_id: str | None = None,
        session_id: str | None = None,
        event_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100
    ) -> list[AuditRecord]:
        low = since.timestamp() if since else "-inf"
        high = until.timestamp() if until else "+inf"
        try:
            raw_events = await self._redis.zrangebyscore(self.key, low, high)
        except RedisError as e:
            raise StorageError(f"Redis audit query failed: {e}") from e

        results = []
        for raw in raw_events:
            record = _deserialize_record(raw)
            if actor_id and record.actor_id != actor_id:
                continue
            if session_id and record.session_id != session_id:
                continue
            if event_type and record.event_type != event_type:
                continue
            results.append(record)

        return results[-limit:] if limit else []
