"""In-memory process-scoped state: access tokens and publish idempotency records."""

from __future__ import annotations

from dataclasses import dataclass, field
import threading

from mergerelay.domain.providers import Provider


@dataclass(frozen=True, slots=True)
class AccessToken:
    token_value: str
    expires_at_ms: int

    def is_fresh(self, now_ms: int, *, skew_ms: int) -> bool:
        return now_ms < self.expires_at_ms - skew_ms


@dataclass(frozen=True, slots=True)
class PublishIdempotencyRecord:
    idempotency_key: str
    publish_id: str
    recorded_at_ms: int


@dataclass(slots=True)
class InMemoryStore:
    """Lock-guarded maps shared by all requests of one process."""

    access_tokens: dict[Provider, AccessToken] = field(default_factory=dict)
    publish_records: dict[str, PublishIdempotencyRecord] = field(default_factory=dict)
    token_write_count: int = 0
    publish_write_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_access_token(self, provider: Provider) -> AccessToken | None:
        with self._lock:
            return self.access_tokens.get(provider)

    def put_access_token(self, provider: Provider, token: AccessToken) -> None:
        with self._lock:
            self.access_tokens[provider] = token
            self.token_write_count += 1

    def drop_access_token(self, provider: Provider) -> None:
        with self._lock:
            self.access_tokens.pop(provider, None)

    def get_publish_record(
        self,
        idempotency_key: str,
        *,
        now_ms: int,
        retention_ms: int,
    ) -> PublishIdempotencyRecord | None:
        with self._lock:
            record = self.publish_records.get(idempotency_key)
            if record is None:
                return None
            if now_ms - record.recorded_at_ms > retention_ms:
                return None
            return record

    def record_publish(
        self,
        idempotency_key: str,
        publish_id: str,
        *,
        now_ms: int,
        retention_ms: int,
    ) -> PublishIdempotencyRecord:
        """Store the publish id for a key; an unexpired existing record always wins."""
        with self._lock:
            existing = self.publish_records.get(idempotency_key)
            if existing is not None and now_ms - existing.recorded_at_ms <= retention_ms:
                return existing
            record = PublishIdempotencyRecord(
                idempotency_key=idempotency_key,
                publish_id=publish_id,
                recorded_at_ms=now_ms,
            )
            self.publish_records[idempotency_key] = record
            self.publish_write_count += 1
            return record

    def purge_expired_publish_records(self, *, now_ms: int, retention_ms: int) -> int:
        with self._lock:
            expired = [
                key
                for key, record in self.publish_records.items()
                if now_ms - record.recorded_at_ms > retention_ms
            ]
            for key in expired:
                del self.publish_records[key]
            return len(expired)
