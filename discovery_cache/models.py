"""
Database model for the discovery cache.
One row per cache key, holding the last known-good payload plus usage counters.
"""
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DiscoveryCacheEntry(Base):
    """
    Cached result set for one provider/endpoint/dimensions combination.

    fetch_count and last_accessed_at move together on reads;
    refresh_count and updated_at move together on overwrites.
    """
    __tablename__ = "discovery_cache"

    cache_key = Column(String(512), primary_key=True)
    provider = Column(String(64), nullable=False)
    endpoint = Column(String(64), nullable=False)
    category = Column(String(64), nullable=True)
    period = Column(String(64), nullable=True)

    payload = Column(JSON, nullable=False)
    result_count = Column(Integer, nullable=False, default=0)

    fetch_count = Column(Integer, nullable=False, default=0)
    refresh_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    last_accessed_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_discovery_cache_provider_endpoint", "provider", "endpoint"),
        Index("idx_discovery_cache_expires", "expires_at"),
        Index("idx_discovery_cache_last_accessed", "last_accessed_at"),
    )

    def __repr__(self):
        return (
            f"<DiscoveryCacheEntry(cache_key='{self.cache_key}', "
            f"results={self.result_count}, expires_at={self.expires_at})>"
        )
