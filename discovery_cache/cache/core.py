"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def count_results(payload: Any) -> int:
    """
    Cardinality of a payload: list length, or length of its "data" list.
    Anything else counts as zero.
    """
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return len(data)
    return 0


@dataclass
class CacheEntryInfo:
    """
    Detached snapshot of a stored cache row (without its payload).
    Handed to the refresher and the admin surface.
    """
    cache_key: str
    provider: str
    endpoint: str
    category: Optional[str] = None
    period: Optional[str] = None
    result_count: int = 0
    fetch_count: int = 0
    refresh_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "CacheEntryInfo":
        return cls(
            cache_key=row.cache_key,
            provider=row.provider,
            endpoint=row.endpoint,
            category=row.category,
            period=row.period,
            result_count=row.result_count,
            fetch_count=row.fetch_count,
            refresh_count=row.refresh_count,
            created_at=row.created_at,
            updated_at=row.updated_at,
            expires_at=row.expires_at,
            last_accessed_at=row.last_accessed_at,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() + "Z" if value else None

        return {
            "cacheKey": self.cache_key,
            "provider": self.provider,
            "endpoint": self.endpoint,
            "category": self.category,
            "period": self.period,
            "resultCount": self.result_count,
            "fetchCount": self.fetch_count,
            "refreshCount": self.refresh_count,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
            "expiresAt": iso(self.expires_at),
            "lastAccessedAt": iso(self.last_accessed_at),
        }


@dataclass
class CacheEnvelope:
    """
    Typed view of a cached payload for application code.
    The store keeps the payload opaque; this only wraps it.
    """
    cache_key: str
    provider: str
    endpoint: str
    dimensions: Dict[str, str] = field(default_factory=dict)
    items: List[Any] = field(default_factory=list)
    total: int = 0
    payload: Any = None

    @classmethod
    def wrap(
        cls,
        cache_key: str,
        provider: str,
        endpoint: str,
        dimensions: Dict[str, str],
        payload: Any,
    ) -> "CacheEnvelope":
        if isinstance(payload, list):
            items = payload
        elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
            items = payload["data"]
        else:
            items = []
        return cls(
            cache_key=cache_key,
            provider=provider,
            endpoint=endpoint,
            dimensions=dimensions,
            items=items,
            total=count_results(payload),
            payload=payload,
        )


@dataclass
class CachedResult:
    """Result of a read-through cache call."""
    data: Any
    from_cache: bool
    cache_key: str
