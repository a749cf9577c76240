"""Multi-bill cart session for a single register.

A :class:`CartSession` holds one or more independent tabs so an operator can
serve interleaved customers. Tabs are immutable :class:`~veggie_pos.models.Tab`
values; every mutator swaps in a new tab, and a tab's total is always derived
from its lines. Tabs live only for the session and are never persisted.

Stock is checked when a line is added but nothing is reserved: two tabs may
both hold the last units of a product. The sale engine settles that at commit
time.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from . import log
from .constants import DEFAULT_TAB_PREFIX, PriceConflictPolicy
from .errors import InsufficientStock, MissingReferenceError, PriceConflict
from .models import ZERO, CartLine, Product, Tab


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= ZERO:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


class CartSession:
    """Ordered collection of open tabs plus the currently selected one.

    At least one tab always exists: the session opens with ``Bill 1`` and
    :meth:`close_tab` refuses to remove the last tab.

    Args:
        price_conflict_policy (PriceConflictPolicy): What :meth:`add_line` does
            when a second add for the same product carries an override price
            that differs from the existing line price.
    """

    def __init__(self, *, price_conflict_policy: PriceConflictPolicy = PriceConflictPolicy.REJECT) -> None:
        self.price_conflict_policy = price_conflict_policy
        self._ids = itertools.count(1)
        first = self._new_tab(1)
        self._tabs: Dict[str, Tab] = {first.tab_id: first}
        self._active_id = first.tab_id

    def _new_tab(self, ordinal: int) -> Tab:
        return Tab(tab_id=f"tab{next(self._ids)}", name=f"{DEFAULT_TAB_PREFIX} {ordinal}")

    def __iter__(self) -> Iterator[Tab]:
        return iter(self._tabs.values())

    def __len__(self) -> int:
        return len(self._tabs)

    @property
    def tabs(self) -> Tuple[Tab, ...]:
        return tuple(self._tabs.values())

    @property
    def active_tab_id(self) -> str:
        return self._active_id

    @property
    def active_tab(self) -> Tab:
        return self._tabs[self._active_id]

    def get_tab(self, tab_id: str) -> Tab:
        try:
            return self._tabs[tab_id]
        except KeyError as exc:
            log.warning("Tab lookup failed for id '%s'", tab_id)
            raise MissingReferenceError(f"Unknown tab id: {tab_id}") from exc

    def _store(self, tab: Tab) -> Tab:
        self._tabs[tab.tab_id] = tab
        return tab

    def create_tab(self) -> str:
        """Open a new empty bill, select it, and return its id."""
        tab = self._new_tab(len(self._tabs) + 1)
        self._tabs[tab.tab_id] = tab
        self._active_id = tab.tab_id
        log.info("Opened %s (%s)", tab.name, tab.tab_id)
        return tab.tab_id

    def close_tab(self, tab_id: str) -> bool:
        """Close a bill unless it is the last one.

        When the active bill is closed, the first remaining bill becomes
        active.

        Returns:
            bool: ``True`` when the tab was removed, ``False`` for the
                last-tab no-op.
        """
        self.get_tab(tab_id)
        if len(self._tabs) == 1:
            log.info("Ignoring close of last remaining tab '%s'", tab_id)
            return False
        del self._tabs[tab_id]
        if self._active_id == tab_id:
            self._active_id = next(iter(self._tabs))
        log.info("Closed tab '%s'", tab_id)
        return True

    def set_active_tab(self, tab_id: str) -> Tab:
        """Select a bill; unknown ids fall back to the first bill."""
        if tab_id not in self._tabs:
            log.debug("Unknown tab '%s' selected; falling back to first tab", tab_id)
            tab_id = next(iter(self._tabs))
        self._active_id = tab_id
        return self._tabs[tab_id]

    def add_line(
        self,
        tab_id: str,
        product: Product,
        quantity: Decimal,
        unit_price_override: Optional[Decimal] = None,
    ) -> Tab:
        """Add ``quantity`` of ``product`` to a tab, merging with an existing line.

        The stock check compares the added quantity with ``product.stock`` as
        passed in; nothing is reserved. A merge sums quantities and keeps the
        existing line price unless the price conflict policy says otherwise.

        Args:
            tab_id (str): Target tab.
            product (Product): Catalog snapshot to sell.
            quantity (Decimal): Units or weight to add; must be positive.
            unit_price_override (Decimal | None): Price to use instead of the
                catalog price.

        Returns:
            Tab: The updated tab.

        Raises:
            MissingReferenceError: If ``tab_id`` is unknown.
            ValueError: For non-positive quantities or negative prices.
            InsufficientStock: If ``quantity`` exceeds the product's stock.
            PriceConflict: On a conflicting override under the ``reject`` policy.
        """
        tab = self.get_tab(tab_id)
        require_positive_quantity(quantity)
        if unit_price_override is not None:
            require_nonnegative_money(unit_price_override)
        if quantity > product.stock:
            log.warning(
                "Insufficient stock adding '%s' to '%s': requested %s, available %s",
                product.product_id,
                tab_id,
                quantity,
                product.stock,
            )
            raise InsufficientStock(product.product_id, quantity, product.stock)

        existing = tab.find_line(product.product_id)
        if existing is None:
            price = unit_price_override if unit_price_override is not None else product.price
            line = CartLine(product=product, quantity=quantity, unit_price=price)
            updated = replace(tab, lines=tab.lines + (line,))
        else:
            price = self._merge_price(existing, unit_price_override)
            merged = replace(existing, quantity=existing.quantity + quantity, unit_price=price)
            updated = replace(tab, lines=self._swap_line(tab, merged))

        log.debug("Tab '%s' now totals %s", tab_id, updated.total)
        return self._store(updated)

    def _merge_price(self, existing: CartLine, override: Optional[Decimal]) -> Decimal:
        if override is None or override == existing.unit_price:
            return existing.unit_price
        if self.price_conflict_policy is PriceConflictPolicy.OVERWRITE:
            return override
        if self.price_conflict_policy is PriceConflictPolicy.REJECT:
            log.warning(
                "Rejected price override %s for '%s' already priced at %s",
                override,
                existing.product_id,
                existing.unit_price,
            )
            raise PriceConflict(
                f"Product '{existing.product_id}' is already in the bill at {existing.unit_price}"
            )
        return existing.unit_price

    @staticmethod
    def _swap_line(tab: Tab, line: CartLine) -> Tuple[CartLine, ...]:
        return tuple(line if current.product_id == line.product_id else current for current in tab.lines)

    def set_line_quantity(self, tab_id: str, product_id: str, quantity: Decimal) -> Tab:
        """Set a line's quantity at its existing price; ``<= 0`` removes the line."""
        tab = self.get_tab(tab_id)
        if quantity <= ZERO:
            return self.remove_line(tab_id, product_id)
        existing = tab.find_line(product_id)
        if existing is None:
            raise MissingReferenceError(f"Product '{product_id}' is not in tab '{tab_id}'")
        return self._store(replace(tab, lines=self._swap_line(tab, replace(existing, quantity=quantity))))

    def remove_line(self, tab_id: str, product_id: str) -> Tab:
        tab = self.get_tab(tab_id)
        lines: List[CartLine] = [line for line in tab.lines if line.product_id != product_id]
        return self._store(replace(tab, lines=tuple(lines)))

    def clear_tab(self, tab_id: str) -> Tab:
        """Empty a tab and unbind its customer."""
        tab = self.get_tab(tab_id)
        return self._store(replace(tab, lines=(), customer_id=None))

    def bind_customer(self, tab_id: str, customer_id: Optional[str]) -> Tab:
        tab = self.get_tab(tab_id)
        return self._store(replace(tab, customer_id=customer_id))


__all__ = [
    "CartSession",
    "require_positive_quantity",
    "require_nonnegative_money",
]
