"""
Two-tier result cache for normalized receivables datasets.

Tier 1 is an in-process map of CacheEntry objects; tier 2 is a durable
per-session string store holding JSON {timestamp, columns, rows}. Lookups try
tier 1 then tier 2, and a tier-2 hit backfills tier 1. Entries older than the
TTL are evicted from both tiers and never returned.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from pydantic import BaseModel, ValidationError

from receivables_engine.config import settings
from receivables_engine.domain.exceptions import CacheStoreError
from receivables_engine.domain.models import CacheEntry, ColumnDescriptor, CompanyIdentity, Dataset
from receivables_engine.infrastructure.cache.stores import InMemoryStore, KeyValueStore
from receivables_engine.infrastructure.observability.metrics import record_cache_lookup

DEFAULT_FORMULA_KEY = "default"


@dataclass(frozen=True)
class CacheKey:
    """Connection identity plus the active formula"""

    location_id: str
    company_guid: str
    formula: str = DEFAULT_FORMULA_KEY

    @classmethod
    def for_company(cls, company: CompanyIdentity, formula: Optional[str]) -> Optional["CacheKey"]:
        """None when the identity is incomplete; such requests are never cached"""
        if not company.location_id or not company.guid:
            return None
        formula_key = (formula or "").strip() or DEFAULT_FORMULA_KEY
        return cls(location_id=str(company.location_id), company_guid=company.guid, formula=formula_key)

    def storage_key(self) -> str:
        return f"receivables_{self.location_id}_{self.company_guid}_{self.formula}"


class CachedColumn(BaseModel):
    name: str
    alias: str = ""
    type: str = ""


class CachedPayload(BaseModel):
    """On-disk shape of a durable entry"""

    timestamp: float
    columns: List[CachedColumn]
    rows: List[List[str]]

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "CachedPayload":
        return cls(
            timestamp=entry.timestamp,
            columns=[CachedColumn(name=c.name, alias=c.alias, type=c.type) for c in entry.columns],
            rows=[list(row) for row in entry.rows],
        )

    def to_entry(self) -> CacheEntry:
        dataset = Dataset.build(
            (ColumnDescriptor(name=c.name, alias=c.alias, type=c.type) for c in self.columns),
            self.rows,
        )
        return CacheEntry(dataset=dataset, timestamp=self.timestamp)


class ResultCache:
    """Typed-key cache enforcing TTL and tiering in one place"""

    def __init__(
        self,
        memory: Optional[InMemoryStore] = None,
        durable: Optional[KeyValueStore] = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.memory = memory if memory is not None else InMemoryStore()
        self.durable = durable
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds
        self.clock = clock

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.timestamp <= self.ttl_seconds

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        """Fresh entry from the fastest tier holding one, else None"""
        storage_key = key.storage_key()

        entry = self.memory.get(storage_key)
        if entry is not None:
            if self.is_fresh(entry):
                record_cache_lookup("memory", "hit")
                return entry
            record_cache_lookup("memory", "expired")
            self.evict(key)
            return None
        record_cache_lookup("memory", "miss")

        if self.durable is None:
            return None

        entry = self._read_durable(storage_key)
        if entry is None:
            return None
        if not self.is_fresh(entry):
            record_cache_lookup("durable", "expired")
            self.evict(key)
            return None

        record_cache_lookup("durable", "hit")
        self.memory.set(storage_key, entry)
        return entry

    def put(self, key: CacheKey, dataset: Dataset) -> CacheEntry:
        """Replace any existing entry for the key in both tiers"""
        entry = CacheEntry(dataset=dataset, timestamp=self.clock())
        storage_key = key.storage_key()
        self.purge_expired()
        self.memory.set(storage_key, entry)

        if self.durable is not None:
            try:
                self.durable.set(storage_key, CachedPayload.from_entry(entry).model_dump_json())
            except CacheStoreError as e:
                logging.warning(f"Unable to persist receivables cache: {e}", extra={"cache_key": storage_key})
        return entry

    def purge_expired(self) -> int:
        """Drop stale entries from the in-memory tier; returns how many went"""
        stale = [storage_key for storage_key, entry in self.memory.items() if not self.is_fresh(entry)]
        for storage_key in stale:
            self.memory.remove(storage_key)
        return len(stale)

    def evict(self, key: CacheKey) -> None:
        storage_key = key.storage_key()
        self.memory.remove(storage_key)
        self._remove_durable(storage_key)

    def _read_durable(self, storage_key: str) -> Optional[CacheEntry]:
        try:
            raw = self.durable.get(storage_key)
        except CacheStoreError as e:
            logging.warning(f"Durable cache unavailable: {e}", extra={"cache_key": storage_key})
            return None

        if raw is None:
            record_cache_lookup("durable", "miss")
            return None

        try:
            return CachedPayload.model_validate_json(raw).to_entry()
        except (ValidationError, ValueError) as e:
            record_cache_lookup("durable", "corrupt")
            logging.warning(f"Discarding corrupt receivables cache entry: {e}", extra={"cache_key": storage_key})
            self._remove_durable(storage_key)
            return None

    def _remove_durable(self, storage_key: str) -> None:
        if self.durable is None:
            return
        try:
            self.durable.remove(storage_key)
        except CacheStoreError as e:
            logging.warning(f"Unable to evict receivables cache entry: {e}", extra={"cache_key": storage_key})
