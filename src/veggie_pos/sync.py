"""Outbound, best-effort mirroring of POS activity into the ERP system.

Three pieces live here:

* :class:`ErpSyncAdapter` maps sales and the product, customer, and supplier
  pulls onto ERP calls and always answers with a result object. Errors never
  escape it.
* :class:`SyncStatusBoard` keeps the ``idle | syncing | success | error``
  status, last-sync timestamp, and message per record family.
* :class:`SyncDispatcher` listens for ``SaleCommitted`` events and pushes the
  sale on a single background worker, so the register never waits on the
  network. Nothing it learns flows back into the local state, and there is no
  automatic retry; :meth:`SyncDispatcher.resync_sale` is the manual path.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from . import log
from .constants import (
    ERP_DEFAULT_CUSTOMER_REF,
    ERP_INVOICE_TYPE_STANDARD,
    ERP_PAYMENT_MODE_IDS,
    ERP_TAX_RATE,
    CustomerType,
    PaymentMethod,
    SyncDomain,
    SyncState,
)
from .erp_client import ErpClient
from .errors import IntegrationError
from .models import Customer, Product, Sale, Supplier


@dataclass(frozen=True)
class SaleSyncResult:
    success: bool
    external_id: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BulkSyncResult:
    """Outcome of a product, customer, or supplier pull.

    ``records`` holds the mapped POS records for inspection only; they are
    never written into the store automatically.
    """

    success: bool
    synced_count: int
    errors: Tuple[str, ...] = ()
    records: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class ConnectionResult:
    success: bool
    message: str


def _now() -> datetime:
    return datetime.now(UTC)


def _external_ref(identifier: Optional[str]) -> Union[int, str, None]:
    """ERP references are numeric; non-numeric local ids are passed through."""
    if identifier is None:
        return None
    try:
        return int(identifier)
    except (TypeError, ValueError):
        return identifier


def _to_decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def build_invoice(
    sale: Sale,
    *,
    tax_rate: Decimal = ERP_TAX_RATE,
    default_customer_ref: int = ERP_DEFAULT_CUSTOMER_REF,
) -> Dict[str, Any]:
    """Map a sale onto an ERP invoice payload with one line per cart line."""
    multiplier = Decimal("1") + tax_rate / Decimal("100")
    lines = [
        {
            "fk_product": _external_ref(line.product_id),
            "product_ref": line.product.barcode,
            "product_label": line.product.name,
            "qty": float(line.quantity),
            "subprice": float(line.unit_price),
            "total_ht": float(line.subtotal),
            "total_ttc": float(line.subtotal * multiplier),
            "tva_tx": float(tax_rate),
        }
        for line in sale.lines
    ]
    customer_ref = _external_ref(sale.customer_id) if sale.customer_id else default_customer_ref
    return {
        "socid": customer_ref,
        "date": int(sale.timestamp.timestamp()),
        "type": ERP_INVOICE_TYPE_STANDARD,
        "lines": lines,
        "note_private": f"POS Sale - Receipt: {sale.receipt_number}",
        "mode_reglement_id": ERP_PAYMENT_MODE_IDS.get(sale.payment_method, ERP_PAYMENT_MODE_IDS[PaymentMethod.CASH]),
    }


def map_remote_product(raw: Mapping[str, Any]) -> Product:
    """Translate an ERP product record into a catalog :class:`Product`."""
    return Product(
        product_id=str(raw["id"]),
        name=str(raw.get("label") or raw.get("ref") or raw["id"]),
        category="Vegetables",
        price=_to_decimal(raw.get("price")),
        unit="kg",
        stock=_to_decimal(raw.get("stock_reel")),
        min_stock=_to_decimal(raw.get("seuil_stock_alerte")),
        barcode=raw.get("barcode") or None,
        supplier="ERP Sync",
    )


def _remote_address(raw: Mapping[str, Any]) -> str:
    return " ".join(part for part in (raw.get("address"), raw.get("zip"), raw.get("town")) if part)


def map_remote_customer(raw: Mapping[str, Any]) -> Customer:
    """Translate an ERP third party into a :class:`Customer`.

    The ERP does not expose a running balance, so it starts at zero.
    """
    address = _remote_address(raw)
    return Customer(
        customer_id=str(raw["id"]),
        name=str(raw["name"]),
        phone=raw.get("phone") or "",
        email=raw.get("email") or "",
        address=address,
        customer_type=CustomerType.WHOLESALE,
        credit_limit=_to_decimal(raw.get("outstanding_limit")),
        balance=Decimal("0"),
    )


def map_remote_supplier(raw: Mapping[str, Any]) -> Supplier:
    """Translate an ERP supplier third party into a :class:`Supplier`."""
    return Supplier(
        supplier_id=str(raw["id"]),
        name=str(raw["name"]),
        phone=raw.get("phone") or "",
        email=raw.get("email") or "",
        address=_remote_address(raw),
        credit_limit=_to_decimal(raw.get("outstanding_limit")),
    )


def _invoice_id(created: Any) -> Optional[int]:
    """Read the invoice id from a create response: a bare id or an object with ``id``."""
    if isinstance(created, Mapping):
        created = created.get("id")
    if created is None or created == "":
        return None
    return int(created)


class ErpSyncAdapter:
    """Mirror POS records into the ERP, reporting outcomes as result objects.

    Args:
        client (ErpClient): Transport used for every call.
        tax_rate (Decimal): Percentage applied to invoice lines.
        default_customer_ref (int): Third-party reference for walk-in sales.
    """

    def __init__(
        self,
        client: ErpClient,
        *,
        tax_rate: Decimal = ERP_TAX_RATE,
        default_customer_ref: int = ERP_DEFAULT_CUSTOMER_REF,
    ) -> None:
        self.client = client
        self.tax_rate = tax_rate
        self.default_customer_ref = default_customer_ref

    def sync_sale(self, sale: Sale) -> SaleSyncResult:
        """Create and validate an invoice, then push the stock decrements.

        Transport failures and responses that cannot be read both come back
        as an unsuccessful result.
        """
        try:
            invoice = build_invoice(sale, tax_rate=self.tax_rate, default_customer_ref=self.default_customer_ref)
            invoice_id = _invoice_id(self.client.create_invoice(invoice))
            if invoice_id:
                self.client.validate_invoice(invoice_id)

            for product_id, quantity in sale.units_by_product.items():
                ref = _external_ref(product_id)
                remote = self.client.get_product(ref)
                remote_stock = _to_decimal(remote.get("stock_reel"))
                self.client.update_product_stock(ref, float(remote_stock - quantity))
        except IntegrationError as exc:
            log.warning("Failed to sync sale '%s' to ERP: %s", sale.sale_id, exc)
            return SaleSyncResult(success=False, error=str(exc))
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            log.warning("Unreadable ERP response while syncing sale '%s': %s", sale.sale_id, exc)
            return SaleSyncResult(success=False, error=f"Unexpected ERP response: {exc}")

        log.info("Synced sale '%s' to ERP invoice %s", sale.sale_id, invoice_id)
        return SaleSyncResult(success=True, external_id=invoice_id)

    def sync_products(self) -> BulkSyncResult:
        try:
            remote = self.client.get_products()
        except IntegrationError as exc:
            log.warning("Product pull from ERP failed: %s", exc)
            return BulkSyncResult(success=False, synced_count=0, errors=(str(exc),))
        records, errors = self._map_all(remote, map_remote_product, "product")
        log.info("Pulled %d products from ERP (%d errors)", len(records), len(errors))
        return BulkSyncResult(success=True, synced_count=len(records), errors=errors, records=records)

    def sync_customers(self) -> BulkSyncResult:
        try:
            remote = self.client.get_customers()
        except IntegrationError as exc:
            log.warning("Customer pull from ERP failed: %s", exc)
            return BulkSyncResult(success=False, synced_count=0, errors=(str(exc),))
        records, errors = self._map_all(remote, map_remote_customer, "customer")
        log.info("Pulled %d customers from ERP (%d errors)", len(records), len(errors))
        return BulkSyncResult(success=True, synced_count=len(records), errors=errors, records=records)

    def sync_suppliers(self) -> BulkSyncResult:
        try:
            remote = self.client.get_suppliers()
        except IntegrationError as exc:
            log.warning("Supplier pull from ERP failed: %s", exc)
            return BulkSyncResult(success=False, synced_count=0, errors=(str(exc),))
        records, errors = self._map_all(remote, map_remote_supplier, "supplier")
        log.info("Pulled %d suppliers from ERP (%d errors)", len(records), len(errors))
        return BulkSyncResult(success=True, synced_count=len(records), errors=errors, records=records)

    @staticmethod
    def _map_all(remote: Any, mapper: Any, kind: str) -> Tuple[Tuple[Any, ...], Tuple[str, ...]]:
        records: List[Any] = []
        errors: List[str] = []
        for raw in remote or []:
            try:
                records.append(mapper(raw))
            except (KeyError, ValueError, TypeError) as exc:
                log.warning("Skipping unreadable ERP %s record %r: %s", kind, raw, exc)
                errors.append(f"{kind} {raw.get('id', '?') if isinstance(raw, Mapping) else raw}: {exc}")
        return tuple(records), tuple(errors)

    def test_connection(self) -> ConnectionResult:
        try:
            self.client.status()
        except IntegrationError as exc:
            return ConnectionResult(success=False, message=str(exc))
        return ConnectionResult(success=True, message="Connection successful")


@dataclass(frozen=True)
class DomainStatus:
    state: SyncState = SyncState.IDLE
    last_sync: Optional[datetime] = None
    message: Optional[str] = None


class SyncStatusBoard:
    """Thread-safe record of the latest sync outcome per record family.

    ``last_sync`` on an error status keeps the time of the last success.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._statuses: Dict[SyncDomain, DomainStatus] = {domain: DomainStatus() for domain in SyncDomain}
        self.last_sync: Optional[datetime] = None
        self.connected = False

    def get(self, domain: SyncDomain) -> DomainStatus:
        with self._lock:
            return self._statuses[domain]

    def snapshot(self) -> Dict[SyncDomain, DomainStatus]:
        with self._lock:
            return dict(self._statuses)

    def mark_syncing(self, domain: SyncDomain) -> None:
        with self._lock:
            self._statuses[domain] = replace(self._statuses[domain], state=SyncState.SYNCING, message=None)

    def mark_success(
        self,
        domain: SyncDomain,
        *,
        when: Optional[datetime] = None,
        message: Optional[str] = None,
        pending: int = 0,
    ) -> None:
        """Record a successful sync; with ``pending`` work left the domain stays ``syncing``."""
        when = when or _now()
        state = SyncState.SYNCING if pending else SyncState.SUCCESS
        if pending and message is None:
            message = f"{pending} pending"
        with self._lock:
            self._statuses[domain] = DomainStatus(state=state, last_sync=when, message=message)
            self.last_sync = when

    def mark_error(self, domain: SyncDomain, message: str) -> None:
        with self._lock:
            self._statuses[domain] = replace(self._statuses[domain], state=SyncState.ERROR, message=message)


class SyncDispatcher:
    """Run ERP synchronisation off the sale path and record the outcomes.

    Instances are callable so they can be registered directly with
    :meth:`veggie_pos.core_logic.SaleEngine.subscribe`.

    Args:
        adapter (ErpSyncAdapter): Adapter performing the calls.
        board (SyncStatusBoard | None): Status sink; a fresh board by default.
        executor (Executor | None): Where sale pushes run; a single-worker
            thread pool by default, which keeps pushes in commit order.
    """

    def __init__(
        self,
        adapter: ErpSyncAdapter,
        board: Optional[SyncStatusBoard] = None,
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        self.adapter = adapter
        self.board = board if board is not None else SyncStatusBoard()
        self._owns_executor = executor is None
        self._executor = executor if executor is not None else ThreadPoolExecutor(max_workers=1, thread_name_prefix="erp-sync")
        self._pending: List[Future] = []
        self._pending_lock = threading.Lock()
        self._in_flight = 0

    def __call__(self, event: Any) -> None:
        self.submit_sale(event.sale)

    def submit_sale(self, sale: Sale) -> Future:
        self._start_push()
        future = self._executor.submit(self._push_sale, sale)
        with self._pending_lock:
            self._pending = [pending for pending in self._pending if not pending.done()]
            self._pending.append(future)
        log.debug("Queued ERP sync for sale '%s'", sale.sale_id)
        return future

    def _push_sale(self, sale: Sale) -> SaleSyncResult:
        try:
            result = self.adapter.sync_sale(sale)
        except Exception as exc:
            log.exception("Unexpected error syncing sale '%s'", sale.sale_id)
            result = SaleSyncResult(success=False, error=str(exc))
        self._record_sale_result(result)
        return result

    def _start_push(self) -> None:
        with self._pending_lock:
            self._in_flight += 1
        self.board.mark_syncing(SyncDomain.SALES)

    def _record_sale_result(self, result: SaleSyncResult) -> None:
        with self._pending_lock:
            self._in_flight -= 1
            remaining = self._in_flight
        if result.success:
            self.board.mark_success(SyncDomain.SALES, pending=remaining)
        else:
            self.board.mark_error(SyncDomain.SALES, result.error or "Unknown error")

    def resync_sale(self, sale: Sale) -> SaleSyncResult:
        """Push a sale again, synchronously, at the operator's request."""
        self._start_push()
        return self._push_sale(sale)

    def sync_products(self) -> BulkSyncResult:
        return self._run_bulk(SyncDomain.PRODUCTS, self.adapter.sync_products)

    def sync_customers(self) -> BulkSyncResult:
        return self._run_bulk(SyncDomain.CUSTOMERS, self.adapter.sync_customers)

    def sync_suppliers(self) -> BulkSyncResult:
        return self._run_bulk(SyncDomain.SUPPLIERS, self.adapter.sync_suppliers)

    def sync_all(self) -> Dict[SyncDomain, BulkSyncResult]:
        return {
            SyncDomain.PRODUCTS: self.sync_products(),
            SyncDomain.CUSTOMERS: self.sync_customers(),
            SyncDomain.SUPPLIERS: self.sync_suppliers(),
        }

    def _run_bulk(self, domain: SyncDomain, action: Any) -> BulkSyncResult:
        self.board.mark_syncing(domain)
        result = action()
        if result.success:
            self.board.mark_success(domain, message=f"{result.synced_count} records")
        else:
            self.board.mark_error(domain, ", ".join(result.errors) or "Unknown error")
        return result

    def test_connection(self) -> ConnectionResult:
        result = self.adapter.test_connection()
        self.board.connected = result.success
        return result

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued sale pushes; ``False`` if some are still running."""
        with self._pending_lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, *, wait_for_pending: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait_for_pending)


__all__ = [
    "SaleSyncResult",
    "BulkSyncResult",
    "ConnectionResult",
    "DomainStatus",
    "ErpSyncAdapter",
    "SyncDispatcher",
    "SyncStatusBoard",
    "build_invoice",
    "map_remote_customer",
    "map_remote_product",
    "map_remote_supplier",
]
