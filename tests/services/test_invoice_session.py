"""
Tests for the InvoiceSession state machine.

Covers:
- Editing: line merge, quantity/price edits, discount cap, customer
- Checkout: entry rules, cancel, commit ordering, outcomes
- At-most-once commit while a commit is in flight
- Stored invoices: read-only load, frozen VAT flag, edit, delete
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pos_engines.tax import build_line
from pos_engines.zatca import decode_tlv
from pos_kernel.domain.guard import CreditPolicy, GuardCode
from pos_kernel.domain.invoice import InvoiceKind, InvoiceTotals, SavedInvoice, TaxPolicy
from pos_kernel.domain.payment import PaymentPlan
from pos_kernel.domain.reference import CustomerRecord
from pos_kernel.domain.session import CheckoutStatus, SessionState
from pos_kernel.domain.values import RoundingMethod, format_amount
from pos_kernel.exceptions import (
    CommitInFlightError,
    ConfirmationRequiredError,
    DiscountLimitExceededError,
    EmptyInvoiceError,
    InvalidAmountError,
    InvalidQuantityError,
    InvalidSessionTransitionError,
    ItemNotFoundError,
    LineNotFoundError,
    PersistenceFailureError,
)
from pos_services.invoice_session import InvoiceSession

CASH = PaymentPlan.cash("SAFE-1")


def _checkout(session, plan=CASH, **kwargs):
    session.begin_checkout()
    return asyncio.run(session.commit(plan, **kwargs))


class TestEditing:

    def test_starts_blank(self, make_session):
        session = make_session()

        assert session.kind == SessionState.EDITING_NEW
        assert session.is_blank
        assert session.totals == InvoiceTotals.empty()

    def test_add_item_recomputes_totals(self, make_session, widget):
        session = make_session()

        session.add_item(widget, 3)

        assert session.totals.subtotal == Decimal("30")
        assert session.totals.tax == Decimal("4.50")
        assert session.totals.net == Decimal("34.50")

    def test_same_item_merges_into_one_line(self, make_session, widget):
        session = make_session()

        session.add_item(widget, 3)
        session.add_item(widget, 2)

        assert len(session.lines) == 1
        assert session.lines[0].quantity == Decimal("5")
        assert session.totals.net == Decimal("57.50")

    def test_company_inclusive_policy(self, make_session, settings_with, widget):
        session = make_session(settings=settings_with(default_tax_policy=TaxPolicy.INCLUSIVE))

        session.add_item(widget, 3)

        assert session.lines[0].tax_inclusive is True
        assert session.totals.net == Decimal("30")
        assert format_amount(session.totals.tax) == "3.91"

    def test_zero_quantity_rejected(self, make_session, widget):
        with pytest.raises(InvalidQuantityError):
            make_session().add_item(widget, 0)

    def test_change_quantity(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 3)

        session.change_quantity(0, -1)

        assert session.lines[0].quantity == Decimal("2")
        assert session.totals.net == Decimal("23.00")

    def test_change_quantity_to_zero_is_ignored(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 1)

        session.change_quantity(0, -1)

        assert session.lines[0].quantity == Decimal("1")

    def test_set_quantity_and_price(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 1)

        session.set_quantity(0, 4)
        session.set_unit_price(0, "12.50")

        assert session.lines[0].line_total == Decimal("57.5000")
        assert session.totals.net == Decimal("57.50")

    def test_negative_price_rejected(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 1)

        with pytest.raises(InvalidAmountError):
            session.set_unit_price(0, -1)

    def test_remove_line(self, make_session, widget, service_item):
        session = make_session()
        session.add_item(widget, 1)
        session.add_item(service_item, 1)

        removed = session.remove_line(0)

        assert removed.item_ref == "WIDGET"
        assert [line.item_ref for line in session.lines] == ["SERVICE"]
        assert session.totals.net == Decimal("11.50")

    def test_missing_line(self, make_session):
        with pytest.raises(LineNotFoundError) as exc_info:
            make_session().remove_line(3)

        assert exc_info.value.index == 3

    def test_discount(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 3)

        session.set_discount("4.50")

        assert session.totals.net == Decimal("30.00")

    def test_discount_cap(self, make_session, settings_with, widget):
        session = make_session(settings=settings_with(max_discount_percentage=Decimal("10")))
        session.add_item(widget, 3)

        session.set_discount("3.45")
        with pytest.raises(DiscountLimitExceededError) as exc_info:
            session.set_discount("3.46")

        assert exc_info.value.max_discount == Decimal("3.450")
        assert session.discount == Decimal("3.45")

    def test_negative_discount_rejected(self, make_session):
        with pytest.raises(InvalidAmountError):
            make_session().set_discount(-1)

    def test_add_by_barcode(self, make_session):
        session = make_session()

        line = asyncio.run(session.add_by_code("6281000000017", 2))

        assert line.item_ref == "WIDGET"

    def test_add_by_unknown_code(self, make_session):
        with pytest.raises(ItemNotFoundError):
            asyncio.run(make_session().add_by_code("nope"))

    def test_payable_uses_display_rounding(self, make_session, settings_with, widget):
        session = make_session(settings=settings_with(rounding_method=RoundingMethod.NEAREST_1_00))
        session.add_item(widget, 3)

        assert session.payable() == Decimal("35.00")


class TestCheckoutEntry:

    def test_empty_invoice_cannot_check_out(self, make_session):
        with pytest.raises(EmptyInvoiceError):
            make_session().begin_checkout()

    def test_return_only_invoice_cannot_check_out(self, make_session, widget):
        session = make_session()
        session.add_item(widget, -1)

        with pytest.raises(EmptyInvoiceError):
            session.begin_checkout()

    def test_edits_blocked_during_checkout(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 1)
        session.begin_checkout()

        with pytest.raises(InvalidSessionTransitionError):
            session.add_item(widget, 1)
        with pytest.raises(InvalidSessionTransitionError):
            session.set_discount(1)

    def test_cancel_returns_to_origin_with_draft(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 3)
        session.begin_checkout()

        session.cancel_checkout()

        assert session.kind == SessionState.EDITING_NEW
        assert session.totals.net == Decimal("34.50")

    def test_commit_requires_checkout(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 1)

        with pytest.raises(InvalidSessionTransitionError):
            asyncio.run(session.commit(CASH))

    def test_preview_payment(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 3)
        session.begin_checkout()

        result = session.preview_payment(PaymentPlan.cash("SAFE-1", tendered=Decimal("50")))

        assert result.change_due == Decimal("15.50")
        assert session.state.plan is not None
        assert session.kind == SessionState.CHECKOUT


class TestCommit:

    def test_cash_commit(self, make_session, widget, store):
        session = make_session()
        session.add_item(widget, 3)

        outcome = _checkout(session)

        assert outcome.status == CheckoutStatus.COMMITTED
        assert session.kind == SessionState.SAVED_READONLY
        assert store.calls == [("create", None)]
        assert session.invoice_id == "INV-0001"
        assert outcome.summary.invoice_kind == InvoiceKind.SIMPLIFIED_TAX_INVOICE
        assert outcome.summary.payment.cash_amount == Decimal("34.50")
        assert session.summary is outcome.summary

    def test_receipt_qr_payload(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 3)

        outcome = _checkout(session)

        values = [field.value for field in decode_tlv(outcome.summary.zatca_base64)]
        assert values == ["ACME", "123456789", "2024-01-01T10:00:00Z", "34.50", "4.50"]

    def test_commit_records_share_a_correlation_id(self, make_session, widget, log_capture):
        first = make_session()
        first.add_item(widget, 1)
        second = make_session()
        second.add_item(widget, 2)

        _checkout(first)
        _checkout(second)

        records = log_capture()
        committed = [r for r in records if r["message"] == "invoice_committed"]
        finished = [r for r in records if r["message"] == "checkout_finished"]
        assert [r["correlation_id"] for r in committed] == [r["correlation_id"] for r in finished]
        assert committed[0]["correlation_id"] != committed[1]["correlation_id"]
        assert committed[0]["session_id"] == first.session_id
        traces = [r for r in records if r["message"] == "POS_ENGINE_TRACE" and "correlation_id" in r]
        assert {r["engine_name"] for r in traces} >= {"payment", "guards"}

    def test_invoice_date_drives_qr_timestamp(self, make_session, widget):
        session = make_session()
        session.add_item(widget, 1)
        session.set_invoice_date(datetime(2024, 3, 5, 8, 15, 30, tzinfo=timezone.utc))

        outcome = _checkout(session)

        assert decode_tlv(outcome.summary.zatca_base64)[2].value == "2024-03-05T08:15:30Z"
        assert outcome.summary.invoice_date == session.invoice_date

    def test_tax_invoice_for_registered_customer(self, make_session, widget, customers):
        customer = CustomerRecord(customer_ref="CUST-9", name="Registered", tax_number="300000000000003")
        customers.put(customer)
        session = make_session()
        session.add_item(widget, 1)
        session.set_customer(customer)

        outcome = _checkout(session)

        assert outcome.summary.invoice_kind == InvoiceKind.TAX_INVOICE

    def test_payment_rejection_returns_to_editing(self, make_session, widget, store):
        session = make_session()
        session.add_item(widget, 3)

        outcome = _checkout(session, PaymentPlan.cash(None))

        assert outcome.status == CheckoutStatus.REJECTED
        assert outcome.payment_rejection.code == "MISSING_INSTRUMENT"
        assert outcome.message == "Select a safe or bank"
        assert session.kind == SessionState.EDITING_NEW
        assert len(session.lines) == 1
        assert store.calls == []

    def test_credit_requires_customer(self, make_session, widget, store):
        session = make_session()
        session.add_item(widget, 1)

        outcome = _checkout(session, PaymentPlan.credit())

        assert outcome.status == CheckoutStatus.REJECTED
        assert outcome.error_code == "MISSING_CUSTOMER"
        assert store.calls == []

    def test_guards_use_fresh_reads(self, make_session, widget, catalog, item_factory, store):
        session = make_session()
        session.add_item(widget, 3)
        # Stock drops between adding the line and saving
        catalog.put(item_factory(
            "WIDGET", name="Widget", stock=Decimal("2"), purchase_price=Decimal("6")
        ))

        outcome = _checkout(session)

        assert outcome.status == CheckoutStatus.REJECTED
        assert outcome.guard.failure.code == GuardCode.INSUFFICIENT_STOCK
        assert "WIDGET" in catalog.reads
        assert session.kind == SessionState.EDITING_NEW
        assert store.calls == []

    def test_persistence_failure_preserves_draft(self, make_session, widget, store):
        session = make_session()
        session.add_item(widget, 3)
        store.fail_with = PersistenceFailureError("create", "timeout")

        outcome = _checkout(session)

        assert outcome.status == CheckoutStatus.PERSISTENCE_FAILED
        assert outcome.error_code == "PERSISTENCE_FAILURE"
        assert session.kind == SessionState.EDITING_NEW
        assert session.totals.net == Decimal("34.50")

        retry = _checkout(session)

        assert retry.committed
        assert store.calls == [("create", None), ("create", None)]

    def test_second_commit_while_in_flight_is_ignored(self, make_session, widget, store):
        session = make_session()
        session.add_item(widget, 3)
        session.begin_checkout()

        async def scenario():
            store.gate = asyncio.Event()
            first = asyncio.create_task(session.commit(CASH))
            while not store.calls:
                await asyncio.sleep(0)

            second = await session.commit(CASH)
            with pytest.raises(CommitInFlightError):
                session.cancel_checkout()

            store.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert second.status == CheckoutStatus.IGNORED
        assert first.committed
        assert store.calls == [("create", None)]


class TestCreditLimitScenario:
    """Balance 950, limit 1000, new credit invoice of 100."""

    @pytest.fixture
    def credit_session(self, make_session, settings_with, catalog, item_factory, customer):
        def _make(policy):
            catalog.put(item_factory("BIG", unit_price=Decimal("100")))
            session = make_session(
                settings=settings_with(vat_enabled=False, credit_policy=policy)
            )
            session.add_item(catalog.items["BIG"], 1)
            session.set_customer(customer)
            return session

        return _make

    def test_block(self, credit_session, store):
        session = credit_session(CreditPolicy.BLOCK)

        outcome = _checkout(session, PaymentPlan.credit())

        assert outcome.status == CheckoutStatus.REJECTED
        assert outcome.guard.failure.code == GuardCode.CREDIT_LIMIT_EXCEEDED
        assert "1050.00" in outcome.message
        assert store.calls == []

    def test_require_approval_then_approve(self, credit_session, store):
        session = credit_session(CreditPolicy.REQUIRE_APPROVAL)

        outcome = _checkout(session, PaymentPlan.credit())

        assert outcome.status == CheckoutStatus.APPROVAL_REQUIRED
        assert session.kind == SessionState.CHECKOUT
        assert session.state.pending_approval is outcome.guard
        failure = outcome.guard.failure
        assert (failure.projected_balance, failure.credit_limit, failure.excess) == (
            Decimal("1050"), Decimal("1000"), Decimal("50"),
        )
        assert outcome.message == (
            "Projected balance 1050.00 exceeds limit 1000.00 by 50.00. Continue?"
        )
        assert store.calls == []

        approved = asyncio.run(session.commit(PaymentPlan.credit(), approval_granted=True))

        assert approved.committed
        assert approved.summary.invoice_kind == InvoiceKind.SALES_INVOICE
        assert store.calls == [("create", None)]

    def test_require_approval_can_be_cancelled(self, credit_session):
        session = credit_session(CreditPolicy.REQUIRE_APPROVAL)
        _checkout(session, PaymentPlan.credit())

        session.cancel_checkout()

        assert session.kind == SessionState.EDITING_NEW


class TestStoredInvoice:

    @pytest.fixture
    def saved(self, widget):
        line = build_line(
            widget,
            Decimal("3"),
            tax_inclusive=True,
            vat_enabled=True,
            vat_rate_percent=Decimal("15"),
        )
        return SavedInvoice(
            invoice_id="INV-0042",
            invoice_date=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
            lines=(line,),
            totals=InvoiceTotals(
                subtotal=line.net_amount,
                tax=line.tax_amount,
                discount=Decimal("0"),
                net=line.line_total,
            ),
            customer_ref="CUST-1",
        )

    def test_load_is_read_only(self, saved, session_kwargs):
        session = InvoiceSession.load(saved, **session_kwargs)

        assert session.kind == SessionState.SAVED_READONLY
        assert session.invoice_id == "INV-0042"
        assert session.totals == saved.totals
        with pytest.raises(InvalidSessionTransitionError):
            session.set_quantity(0, 5)

    def test_edit_requires_confirmation(self, saved, session_kwargs):
        session = InvoiceSession.load(saved, **session_kwargs)

        with pytest.raises(ConfirmationRequiredError):
            session.edit(confirmed=False)
        assert session.kind == SessionState.SAVED_READONLY

        session.edit(confirmed=True)

        assert session.kind == SessionState.EDITING_EXISTING
        assert session.state.existing_net == Decimal("30")
        assert session.state.existing_quantities == {"WIDGET": Decimal("3")}

    def test_vat_flag_frozen_from_stored_invoice(self, saved, session_kwargs, settings_with):
        session = InvoiceSession.load(
            saved, **{**session_kwargs, "settings": settings_with(vat_enabled=False)}
        )
        session.edit(confirmed=True)

        session.set_quantity(0, 6)

        assert session.vat_enabled is True
        assert session.lines[0].tax_inclusive is True
        assert session.totals.net == Decimal("60")
        assert format_amount(session.totals.tax) == "7.83"

    def test_frozen_inclusive_flag_survives_policy(self, saved, session_kwargs, settings_with):
        session = InvoiceSession.load(
            saved,
            **{**session_kwargs, "settings": settings_with(default_tax_policy=TaxPolicy.EXCLUSIVE)},
        )
        session.edit(confirmed=True)

        session.change_quantity(0, 1)

        assert session.lines[0].tax_inclusive is True
        assert session.totals.net == Decimal("40")

    def test_resave_uses_update(self, saved, session_kwargs, store):
        session = InvoiceSession.load(saved, **session_kwargs)
        session.edit(confirmed=True)

        outcome = _checkout(session)

        assert outcome.committed
        assert store.calls == [("update", "INV-0042")]
        assert session.kind == SessionState.SAVED_READONLY

    def test_unchanged_credit_resave_within_limit(self, saved, session_kwargs, settings_with):
        # Balance 950 already includes this invoice's 30
        session = InvoiceSession.load(
            saved,
            **{**session_kwargs, "settings": settings_with(credit_policy=CreditPolicy.BLOCK)},
        )
        session.edit(confirmed=True)
        session.set_quantity(0, 4)

        outcome = _checkout(session, PaymentPlan.credit())

        assert outcome.committed

    def test_resave_counts_own_stock_once(self, saved, session_kwargs, catalog, widget):
        # The stored sale took the last 3 units
        catalog.put(replace(widget, stock=Decimal("0")))
        session = InvoiceSession.load(saved, **session_kwargs)
        session.edit(confirmed=True)
        session.set_discount(1)

        outcome = _checkout(session)

        assert outcome.committed

    def test_edit_beyond_restored_stock_is_rejected(self, saved, session_kwargs, catalog, widget):
        catalog.put(replace(widget, stock=Decimal("1")))
        session = InvoiceSession.load(saved, **session_kwargs)
        session.edit(confirmed=True)
        session.set_quantity(0, 5)

        outcome = _checkout(session)

        assert outcome.status == CheckoutStatus.REJECTED
        assert outcome.guard.failure.code == GuardCode.INSUFFICIENT_STOCK
        assert outcome.guard.failure.stock == Decimal("4")
        assert session.kind == SessionState.EDITING_EXISTING

    def test_edit_within_restored_stock_commits(self, saved, session_kwargs, catalog, widget):
        catalog.put(replace(widget, stock=Decimal("1")))
        session = InvoiceSession.load(saved, **session_kwargs)
        session.edit(confirmed=True)
        session.set_quantity(0, 4)

        assert _checkout(session).committed

    def test_delete(self, saved, session_kwargs, store):
        session = InvoiceSession.load(saved, **session_kwargs)

        with pytest.raises(ConfirmationRequiredError):
            asyncio.run(session.delete(confirmed=False))

        asyncio.run(session.delete(confirmed=True))

        assert session.kind == SessionState.DELETED
        assert store.calls == [("delete", "INV-0042")]
        with pytest.raises(InvalidSessionTransitionError):
            session.edit(confirmed=True)

    def test_delete_only_from_saved(self, make_session):
        with pytest.raises(InvalidSessionTransitionError):
            asyncio.run(make_session().delete(confirmed=True))

    def test_new_sibling_is_independent(self, saved, session_kwargs, widget):
        session = InvoiceSession.load(saved, **session_kwargs)

        sibling = session.new_sibling()
        sibling.add_item(widget, 1)

        assert sibling.kind == SessionState.EDITING_NEW
        assert session.kind == SessionState.SAVED_READONLY
        assert session.lines == saved.lines
