"""
Pytest fixtures for the POS invoice core test suite.

Provides:
- Settings, payment targets and a deterministic clock
- In-memory fakes for the item catalogue, customer directory and invoice store
- A session factory wired to those fakes
- Structured log capture
"""

import asyncio
import json
import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from pos_config.schema import FinancialSettings, PosSettings, SellerProfile
from pos_kernel.domain.clock import DeterministicClock
from pos_kernel.domain.invoice import InvoiceDraft, SavedInvoice
from pos_kernel.domain.payment import PaymentTargets
from pos_kernel.domain.reference import CustomerRecord, ItemRecord, PurchasePrice
from pos_kernel.exceptions import PersistenceFailureError
from pos_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pos_services.invoice_session import InvoiceSession


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeCatalog:
    """Item catalogue backed by a dict. Records every fresh read."""

    def __init__(self, items=()):
        self.items: dict[str, ItemRecord] = {item.item_ref: item for item in items}
        self.reads: list[str] = []

    def put(self, item: ItemRecord) -> None:
        self.items[item.item_ref] = item

    async def get_item(self, item_ref):
        self.reads.append(item_ref)
        return self.items.get(item_ref)

    async def find(self, query):
        for item in self.items.values():
            if query in (item.item_ref, item.barcode, item.name):
                return item
        return None


class FakeCustomers:
    def __init__(self, customers=()):
        self.customers: dict[str, CustomerRecord] = {
            c.customer_ref: c for c in customers
        }
        self.reads: list[str] = []

    def put(self, customer: CustomerRecord) -> None:
        self.customers[customer.customer_ref] = customer

    async def get_customer(self, customer_ref):
        self.reads.append(customer_ref)
        return self.customers.get(customer_ref)


class FakeStore:
    """
    Invoice store that keeps drafts in memory.

    ``fail_with`` makes the next call raise; ``gate`` (an asyncio.Event)
    holds create/update until it is set.
    """

    def __init__(self):
        self.invoices: dict[str, SavedInvoice] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_with: PersistenceFailureError | None = None
        self.gate: asyncio.Event | None = None
        self._next_id = 1

    async def _maybe_wait_or_fail(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    def _save(self, invoice_id: str, draft: InvoiceDraft) -> SavedInvoice:
        saved = SavedInvoice(
            invoice_id=invoice_id,
            invoice_date=draft.invoice_date,
            lines=draft.lines,
            totals=draft.totals,
            customer_ref=draft.customer_ref,
            payment=draft.payment,
        )
        self.invoices[invoice_id] = saved
        return saved

    async def create(self, draft):
        self.calls.append(("create", None))
        await self._maybe_wait_or_fail()
        invoice_id = f"INV-{self._next_id:04d}"
        self._next_id += 1
        return self._save(invoice_id, draft)

    async def update(self, invoice_id, draft):
        self.calls.append(("update", invoice_id))
        await self._maybe_wait_or_fail()
        return self._save(invoice_id, draft)

    async def delete(self, invoice_id):
        self.calls.append(("delete", invoice_id))
        await self._maybe_wait_or_fail()
        self.invoices.pop(invoice_id, None)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


def make_item(item_ref="ITEM-1", **overrides) -> ItemRecord:
    values = dict(
        item_ref=item_ref,
        name=f"Item {item_ref}",
        unit_label="PCS",
        unit_price=Decimal("10"),
        stock=Decimal("100"),
        purchase_price=Decimal("6"),
    )
    values.update(overrides)
    return ItemRecord(**values)


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def seller():
    return SellerProfile(name="ACME", vat_number="123456789")


@pytest.fixture
def financial():
    return FinancialSettings(vat_enabled=True, vat_rate_percent=Decimal("15"))


@pytest.fixture
def settings(seller, financial):
    return PosSettings(seller=seller, financial=financial)


@pytest.fixture
def targets():
    return PaymentTargets(safe_refs=("SAFE-1",), bank_refs=("BANK-1",))


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def widget():
    return make_item(
        "WIDGET",
        name="Widget",
        barcode="6281000000017",
        cost_history=(PurchasePrice(date(2023, 12, 1), Decimal("7")),),
    )


@pytest.fixture
def service_item():
    return make_item("SERVICE", name="Installation", is_stocked=False, stock=Decimal("0"))


@pytest.fixture
def catalog(widget, service_item):
    return FakeCatalog([widget, service_item])


@pytest.fixture
def customer():
    return CustomerRecord(
        customer_ref="CUST-1",
        name="Nasser Trading",
        current_balance=Decimal("950"),
        credit_limit=Decimal("1000"),
    )


@pytest.fixture
def customers(customer):
    return FakeCustomers([customer])


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def session_kwargs(settings, catalog, customers, store, targets, clock):
    """Constructor arguments wiring a session to the fakes."""
    return dict(
        settings=settings,
        catalog=catalog,
        customers=customers,
        store=store,
        targets=targets,
        clock=clock,
        locale="en",
    )


@pytest.fixture
def make_session(session_kwargs):
    """Factory for sessions wired to the fakes; keyword args override."""

    def _make(**overrides):
        return InvoiceSession(**{**session_kwargs, **overrides})

    return _make


@pytest.fixture
def settings_with(settings):
    """Build settings with some financial fields replaced."""

    def _with(**financial_overrides):
        return replace(settings, financial=replace(settings.financial, **financial_overrides))

    return _with


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture
def log_capture():
    """Capture structured JSON log records; yields a callable returning them."""
    reset_logging()
    LogContext.clear()
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(level=logging.DEBUG, handler=handler)

    def _records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _records
    LogContext.clear()
    reset_logging()
