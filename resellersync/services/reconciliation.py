"""
Reconciliation Engine
Compares locally mirrored domains and email orders with the registrar and
corrects drift. The registrar is authoritative: corrections always adopt the
remote value. Resources are never created or deleted here.
"""

import asyncio
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from resellersync.api.domains import DomainService
from resellersync.api.email import EmailOrderService
from resellersync.api.exceptions import APIError
from resellersync.models import (
    Discrepancy,
    ReconciliationFailure,
    ReconciliationResult,
)
from resellersync.services.record_store import RecordStore
from resellersync.utils.config import Settings, get_settings
from resellersync.utils.logger import get_logger
from resellersync.utils.validators import ValidationError, to_bool, to_instant, to_int, utcnow

logger = get_logger(__name__)

DOMAINS_COLLECTION = "domains"
EMAIL_ORDERS_COLLECTION = "email_orders"
RECONCILIATION_LOG_COLLECTION = "reconciliation_log"

TENANT_KEY = "agency_id"
ORDER_ID_KEY = "resellerclub_order_id"

EMPTY_ORDER_IDS = {"", "none", "null", "undefined", "0"}

# Failure kind for anything that is not an APIError (bad remote data, store errors)
UNEXPECTED_ERROR_KIND = "UNEXPECTED_ERROR"

# Registrar status -> local status vocabulary (keys lowercased, spaces removed)
STATUS_MAP = {
    "active": "active",
    "inactive": "pending",
    "pending": "pending",
    "suspended": "suspended",
    "expired": "expired",
    "pendingdeleterestorable": "redemption",
    "redemption": "redemption",
    "deleted": "cancelled",
    "archived": "cancelled",
    "cancelled": "cancelled",
    "transferred": "transferred",
}


def map_remote_status(status: Optional[str]) -> Optional[str]:
    """'Pending Delete Restorable' -> 'redemption'. Unknown statuses map to None."""
    if not status:
        return None
    return STATUS_MAP.get(status.replace(" ", "").replace("_", "").lower())


# ---------------------------------------------------------------------------
# Field normalizers: both sides go through the same function before comparing
# ---------------------------------------------------------------------------

def _norm_status(value: Any) -> Optional[str]:
    return str(value).strip().lower() if value not in (None, "") else None


def _norm_instant(value: Any):
    try:
        return to_instant(value)
    except ValidationError:
        return None


def _norm_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return to_bool(value)


def _norm_nameservers(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(ns).strip().lower().rstrip(".") for ns in value if str(ns).strip()]


def _norm_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return to_int(value, 0)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


# (local field, remote value getter, normalizer, value written to the mirror)
TrackedField = Tuple[str, Callable[[Any], Any], Callable[[Any], Any], Callable[[Any], Any]]

DOMAIN_FIELDS: List[TrackedField] = [
    ("status", lambda d: map_remote_status(d.current_status), _norm_status, lambda v: v),
    ("expiry_date", lambda d: d.expiry_date, _norm_instant, _iso),
    ("auto_renew", lambda d: d.auto_renew, _norm_bool, lambda v: v),
    ("whois_privacy", lambda d: d.privacy_protection, _norm_bool, lambda v: v),
    ("transfer_lock", lambda d: d.transfer_lock, _norm_bool, lambda v: v),
    ("nameservers", lambda d: d.nameservers, _norm_nameservers, list),
]

EMAIL_ORDER_FIELDS: List[TrackedField] = [
    ("status", lambda d: map_remote_status(d.current_status), _norm_status, lambda v: v),
    ("expiry_date", lambda d: d.expiry_date, _norm_instant, _iso),
    ("number_of_accounts", lambda d: d.number_of_accounts, _norm_int, lambda v: v),
]


def diff_fields(
    resource_type: str,
    record: Dict[str, Any],
    remote: Any,
    fields: List[TrackedField]
) -> Tuple[List[Discrepancy], Dict[str, Any]]:
    """
    Compare tracked fields of one mirrored record against the remote state.

    Returns:
        (discrepancies, updates) where updates maps field -> value to write
    """
    discrepancies = []
    updates: Dict[str, Any] = {}

    for field, get_remote, normalize, to_stored in fields:
        remote_value = get_remote(remote)
        if remote_value is None:
            # Registrar did not report the field (or used an unknown status)
            continue

        local_value = record.get(field)
        if normalize(local_value) == normalize(remote_value):
            continue

        stored = to_stored(remote_value)
        updates[field] = stored
        discrepancies.append(Discrepancy(
            resource_type=resource_type,
            resource_id=str(record.get("id", "")),
            resource_name=str(record.get("domain_name", "")),
            field=field,
            local_value=local_value,
            remote_value=stored,
        ))

    return discrepancies, updates


def skip_reason(record: Dict[str, Any]) -> Optional[str]:
    if not record.get("id"):
        return "no local id"
    order_id = record.get(ORDER_ID_KEY)
    if order_id is None or str(order_id).strip().lower() in EMPTY_ORDER_IDS:
        return "no remote order ID"
    registered = record.get("registered_via_api")
    if registered is False or (isinstance(registered, str) and registered.strip().lower() == "false"):
        return "not registered through the registrar API"
    return None


class ReconciliationEngine:
    """
    Sequential drift detection and correction for mirrored resources.

    Items are processed one at a time with a fixed pause between remote
    fetches. Independent tenants may be reconciled concurrently; all of them
    still share the client's global pacing.
    """

    def __init__(
        self,
        domain_service: DomainService,
        email_service: EmailOrderService,
        store: RecordStore,
        config: Optional[Settings] = None
    ):
        self.domain_service = domain_service
        self.email_service = email_service
        self.store = store
        self.config = config or get_settings()

    async def reconcile_domains(self, agency_id: Optional[str] = None) -> ReconciliationResult:
        """
        Reconcile mirrored domains, optionally for one tenant.

        Returns:
            ReconciliationResult with counts, discrepancies and per-item failures
        """
        return await self._reconcile(
            "domain",
            DOMAINS_COLLECTION,
            DOMAIN_FIELDS,
            self.domain_service.get_details,
            agency_id,
        )

    async def reconcile_email_orders(self, agency_id: Optional[str] = None) -> ReconciliationResult:
        return await self._reconcile(
            "email_order",
            EMAIL_ORDERS_COLLECTION,
            EMAIL_ORDER_FIELDS,
            self.email_service.get_details,
            agency_id,
        )

    async def reconcile_tenant(self, agency_id: str) -> Dict[str, ReconciliationResult]:
        """Reconcile both resource types for one tenant, one after the other."""
        logger.info(f"Reconciling tenant {agency_id}")
        domains = await self.reconcile_domains(agency_id)
        email_orders = await self.reconcile_email_orders(agency_id)
        return {"domains": domains, "email_orders": email_orders}

    async def reconcile_tenants(self, agency_ids: Iterable[str]) -> Dict[str, Dict[str, ReconciliationResult]]:
        """Reconcile independent tenants concurrently."""
        agency_ids = list(dict.fromkeys(agency_ids))
        outcomes = await asyncio.gather(
            *(self.reconcile_tenant(agency_id) for agency_id in agency_ids),
            return_exceptions=True,
        )

        results = {}
        for agency_id, outcome in zip(agency_ids, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Reconciliation for tenant {agency_id} aborted: {outcome}")
                outcome = self._aborted_tenant(agency_id, outcome)
            results[agency_id] = outcome
        return results

    @staticmethod
    def _aborted_tenant(agency_id: str, error: Exception) -> Dict[str, ReconciliationResult]:
        """Results for a tenant whose run raised before finishing: one failure entry per resource type."""
        error_kind = error.kind.value if isinstance(error, APIError) else UNEXPECTED_ERROR_KIND
        message = (error.message if isinstance(error, APIError) else str(error)) or type(error).__name__
        now = utcnow()

        def aborted(resource_type: str) -> ReconciliationResult:
            return ReconciliationResult(
                resource_type=resource_type,
                failed=1,
                failures=[ReconciliationFailure(
                    resource_id=agency_id,
                    resource_name=f"tenant {agency_id}",
                    error_kind=error_kind,
                    message=message,
                )],
                started_at=now,
                finished_at=now,
            )

        return {"domains": aborted("domain"), "email_orders": aborted("email_order")}

    async def _reconcile(
        self,
        resource_type: str,
        collection: str,
        fields: List[TrackedField],
        fetch_remote: Callable[[str], Any],
        agency_id: Optional[str]
    ) -> ReconciliationResult:
        result = ReconciliationResult(resource_type=resource_type, started_at=utcnow())
        filters = {TENANT_KEY: agency_id} if agency_id else None
        records = await self.store.list(collection, filters)

        logger.info(
            f"Reconciling {len(records)} {resource_type} record(s)"
            + (f" for tenant {agency_id}" if agency_id else "")
        )

        fetched_before = False
        for record in records:
            reason = skip_reason(record)
            if reason:
                logger.debug(f"Skipping {resource_type} {record.get('id')}: {reason}")
                result.skipped += 1
                continue

            if fetched_before and self.config.reconciliation_item_delay > 0:
                await asyncio.sleep(self.config.reconciliation_item_delay)
            fetched_before = True

            result.checked += 1
            record_id = record["id"]
            name = str(record.get("domain_name", ""))

            try:
                discrepancies, updated = await self._reconcile_item(
                    resource_type, collection, fields, fetch_remote, record
                )
            except APIError as e:
                logger.error(f"Failed to fetch {resource_type} {name or record_id}: {e}")
                result.failures.append(ReconciliationFailure(
                    resource_id=str(record_id),
                    resource_name=name,
                    error_kind=e.kind.value,
                    message=e.message,
                ))
                result.failed += 1
                continue
            except Exception as e:
                # Malformed remote data or a store failure only costs this item
                logger.error(f"Failed to reconcile {resource_type} {name or record_id}: {e}")
                result.failures.append(ReconciliationFailure(
                    resource_id=str(record_id),
                    resource_name=name,
                    error_kind=UNEXPECTED_ERROR_KIND,
                    message=str(e) or type(e).__name__,
                ))
                result.failed += 1
                continue

            if updated:
                result.updated += 1
                result.discrepancies.extend(discrepancies)

        result.finished_at = utcnow()
        logger.info(
            f"{resource_type} reconciliation finished: checked={result.checked} "
            f"updated={result.updated} skipped={result.skipped} failed={result.failed}"
        )
        await self._write_audit(result, agency_id)
        return result

    async def _reconcile_item(
        self,
        resource_type: str,
        collection: str,
        fields: List[TrackedField],
        fetch_remote: Callable[[str], Any],
        record: Dict[str, Any]
    ) -> Tuple[List[Discrepancy], bool]:
        """Fetch, diff and write back one record. Returns (discrepancies, whether anything changed)."""
        record_id = record["id"]
        name = str(record.get("domain_name", ""))

        remote = await fetch_remote(str(record[ORDER_ID_KEY]))

        # Compare against the latest local copy, not the one listed at the start
        current = await self.store.get(collection, {"id": record_id}) or record
        discrepancies, updates = diff_fields(resource_type, current, remote, fields)

        for discrepancy in discrepancies:
            logger.warning(
                f"Drift on {resource_type} {name or record_id}: {discrepancy.field} "
                f"local={discrepancy.local_value!r} remote={discrepancy.remote_value!r}"
            )

        patch = dict(updates)
        patch["id"] = record_id
        patch["last_synced_at"] = utcnow().isoformat()
        await self.store.upsert(collection, patch, "id")

        return discrepancies, bool(updates)

    async def _write_audit(self, result: ReconciliationResult, agency_id: Optional[str]) -> None:
        entry = result.model_dump(mode="json")
        entry["id"] = str(uuid.uuid4())
        entry[TENANT_KEY] = agency_id
        await self.store.upsert(RECONCILIATION_LOG_COLLECTION, entry, "id")
