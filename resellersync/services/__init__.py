"""
Record store, pricing cache and reconciliation engine
"""

from resellersync.services.record_store import (
    RecordStore,
    RecordStoreError,
    InMemoryRecordStore,
    JsonFileRecordStore,
)
from resellersync.services.pricing_cache import PricingCache, to_minor_units, from_minor_units
from resellersync.services.reconciliation import ReconciliationEngine, map_remote_status

__all__ = [
    # Record store
    "RecordStore",
    "RecordStoreError",
    "InMemoryRecordStore",
    "JsonFileRecordStore",
    # Pricing cache
    "PricingCache",
    "to_minor_units",
    "from_minor_units",
    # Reconciliation
    "ReconciliationEngine",
    "map_remote_status",
]
