"""
pos_services.invoice_session -- One invoice being edited, checked out or viewed.

Responsibility:
    Owns the draft (lines, discount, customer, date) of a single invoice
    and drives it through the session state machine. Every edit reprices
    the affected line through the tax engine and recomputes totals;
    checkout reconciles payment, re-reads catalogue and customer facts,
    runs the guards, stores the invoice exactly once and builds the
    finalized receipt summary with its ZATCA QR payload.

Architecture position:
    Services layer. Coordinates pure engines (``pos_engines``) and the
    async collaborators (``pos_services.collaborators``). Holds no
    arithmetic of its own.

Invariants enforced:
    - Only transitions listed in ``SESSION_TRANSITIONS`` happen; anything
      else raises ``InvalidSessionTransitionError``.
    - Edits are only accepted in EDITING_NEW / EDITING_EXISTING.
    - ``commit`` sets the in-flight flag before its first await; a second
      call while it is set returns IGNORED without I/O.
    - The invoice store is called at most once per commit attempt.
    - A stored invoice is recomputed with its frozen VAT flag and each
      line's frozen ``tax_inclusive`` flag, never with current settings.
    - Re-saving an edited invoice counts its own stored net and stored
      quantities once: they are added back before the credit and stock
      checks.

Failure modes:
    - Payment rejection, guard rejection, missing customer and storage
      failure return a ``CheckoutOutcome`` and put the session back in its
      originating editing state with the draft intact.
    - Credit overrun under REQUIRE_APPROVAL returns APPROVAL_REQUIRED and
      stays in CHECKOUT; the caller re-commits with ``approval_granted``.
    - ``TlvFieldTooLongError`` after a successful store propagates; the
      session is already SAVED_READONLY at that point.
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pos_config.bridges import guard_policy_from
from pos_config.schema import PosSettings
from pos_engines.guards import quantities_by_item, run_guards
from pos_engines.payment import reconcile
from pos_engines.tax import build_line, reprice_line, resolve_tax_inclusive
from pos_engines.totals import aggregate, infer_vat_enabled, max_discount_for
from pos_engines.zatca import build_zatca_payload, classify_invoice
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.domain.guard import CreditContext, GuardOutcome
from pos_kernel.domain.invoice import (
    InvoiceDraft,
    InvoiceSummary,
    InvoiceTotals,
    LineItem,
    SavedInvoice,
)
from pos_kernel.domain.payment import (
    PaymentPlan,
    PaymentRejection,
    PaymentTargets,
    ValidatedPlan,
)
from pos_kernel.domain.reference import CustomerRecord, ItemRecord
from pos_kernel.domain.session import (
    Checkout,
    CheckoutOutcome,
    CheckoutStatus,
    Deleted,
    EditingExisting,
    EditingNew,
    EditingState,
    SavedReadonly,
    SessionState,
    SessionStateData,
    is_valid_transition,
)
from pos_kernel.domain.values import ZERO, round_for_display, to_decimal
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
    MissingCustomerError,
    PersistenceFailureError,
    ValidationError,
)
from pos_kernel.logging_config import LogContext, get_logger
from pos_kernel.messages import DEFAULT_LOCALE, localize
from pos_services.collaborators import CustomerDirectory, InvoiceStore, ItemCatalog

logger = get_logger("services.invoice_session")


class InvoiceSession:
    """
    State machine for a single invoice.

    Construct with ``InvoiceSession(...)`` for a new invoice or
    ``InvoiceSession.load(saved, ...)`` to open a stored one read-only.
    """

    def __init__(
        self,
        *,
        settings: PosSettings,
        catalog: ItemCatalog,
        customers: CustomerDirectory,
        store: InvoiceStore,
        targets: PaymentTargets,
        clock: Clock | None = None,
        locale: str = DEFAULT_LOCALE,
        tab_id: str | None = None,
    ):
        self._settings = settings
        self._catalog = catalog
        self._customers = customers
        self._store = store
        self._targets = targets
        self._clock = clock or SystemClock()
        self._locale = locale
        self.session_id = str(uuid4())
        self.tab_id = tab_id

        self._state: SessionStateData = EditingNew()
        self._lines: tuple[LineItem, ...] = ()
        self._discount: Decimal = ZERO
        self._customer: CustomerRecord | None = None
        self._customer_ref: str | None = None
        self._invoice_date: datetime = self._clock.now()
        self._totals: InvoiceTotals = InvoiceTotals.empty()
        self._stored_net: Decimal = ZERO

    @classmethod
    def load(
        cls,
        saved: SavedInvoice,
        *,
        customer: CustomerRecord | None = None,
        **kwargs,
    ) -> InvoiceSession:
        """
        Open a stored invoice in SAVED_READONLY.

        The VAT flag is inferred from the stored amounts and frozen for
        the life of the session.
        """
        session = cls(**kwargs)
        vat_enabled = infer_vat_enabled(saved.totals.tax, saved.lines)
        session._lines = tuple(saved.lines)
        session._discount = saved.totals.discount
        session._totals = saved.totals
        session._invoice_date = saved.invoice_date
        session._customer = customer
        session._customer_ref = saved.customer_ref
        session._stored_net = saved.totals.net
        session._state = SavedReadonly(invoice_id=saved.invoice_id, vat_enabled=vat_enabled)
        logger.info("invoice_loaded", extra={
            "session_id": session.session_id,
            "invoice_id": saved.invoice_id,
            "vat_enabled": vat_enabled,
            "line_count": len(saved.lines),
        })
        return session

    def new_sibling(self) -> InvoiceSession:
        """Fresh EDITING_NEW session sharing this session's collaborators."""
        return InvoiceSession(
            settings=self._settings,
            catalog=self._catalog,
            customers=self._customers,
            store=self._store,
            targets=self._targets,
            clock=self._clock,
            locale=self._locale,
        )

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionStateData:
        return self._state

    @property
    def kind(self) -> SessionState:
        return self._state.kind

    @property
    def lines(self) -> tuple[LineItem, ...]:
        return self._lines

    @property
    def totals(self) -> InvoiceTotals:
        return self._totals

    @property
    def discount(self) -> Decimal:
        return self._discount

    @property
    def customer(self) -> CustomerRecord | None:
        return self._customer

    @property
    def customer_ref(self) -> str | None:
        return self._customer_ref

    @property
    def invoice_date(self) -> datetime:
        return self._invoice_date

    @property
    def invoice_id(self) -> str | None:
        state = self._state
        if isinstance(state, Checkout):
            state = state.origin
        return getattr(state, "invoice_id", None)

    @property
    def summary(self) -> InvoiceSummary | None:
        if isinstance(self._state, SavedReadonly):
            return self._state.summary
        return None

    @property
    def vat_enabled(self) -> bool:
        """Company flag for a new invoice, frozen flag for a stored one."""
        state = self._state
        if isinstance(state, Checkout):
            state = state.origin
        if isinstance(state, (EditingExisting, SavedReadonly)):
            return state.vat_enabled
        return self._settings.financial.vat_enabled

    @property
    def is_blank(self) -> bool:
        return self.kind == SessionState.EDITING_NEW and not self._lines

    def payable(self) -> Decimal:
        """Net after the company's display rounding."""
        return round_for_display(self._totals.net, self._settings.financial.rounding_method)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def add_item(self, record: ItemRecord, quantity: Decimal | int = 1) -> LineItem:
        """
        Add ``quantity`` of an item.

        Adding an item already on the invoice in the same unit increases
        that line's quantity instead of creating a second line.
        """
        self._require_editing("add_item")
        qty = to_decimal(quantity, "quantity")
        if qty == ZERO:
            raise InvalidQuantityError(qty, "quantity must be non-zero")

        for index, line in enumerate(self._lines):
            if line.item_ref == record.item_ref and line.unit_label == record.unit_label:
                return self._replace_line(index, line.quantity + qty, None)

        line = build_line(
            record,
            qty,
            tax_inclusive=resolve_tax_inclusive(
                record, self._settings.financial.default_tax_policy
            ),
            vat_enabled=self.vat_enabled,
            vat_rate_percent=self._settings.financial.vat_rate_percent,
        )
        self._lines = self._lines + (line,)
        self._recompute()
        return line

    async def add_by_code(self, query: str, quantity: Decimal | int = 1) -> LineItem:
        """Look up an item by code, barcode or name and add it."""
        self._require_editing("add_item")
        record = await self._catalog.find(query)
        if record is None:
            raise ItemNotFoundError(query)
        return self.add_item(record, quantity)

    def set_quantity(self, index: int, quantity: Decimal | int) -> LineItem:
        self._require_editing("set_quantity")
        self._line_at(index)
        return self._replace_line(index, to_decimal(quantity, "quantity"), None)

    def change_quantity(self, index: int, delta: Decimal | int) -> LineItem:
        """Add ``delta`` to a line's quantity. A result of zero is ignored."""
        self._require_editing("change_quantity")
        line = self._line_at(index)
        new_quantity = line.quantity + to_decimal(delta, "delta")
        if new_quantity == ZERO:
            return line
        return self._replace_line(index, new_quantity, None)

    def set_unit_price(self, index: int, unit_price: Decimal | int | str) -> LineItem:
        self._require_editing("set_unit_price")
        self._line_at(index)
        price = to_decimal(unit_price, "unit_price")
        if price < ZERO:
            raise InvalidAmountError("unit_price", price)
        return self._replace_line(index, None, price)

    def remove_line(self, index: int) -> LineItem:
        self._require_editing("remove_line")
        line = self._line_at(index)
        self._lines = self._lines[:index] + self._lines[index + 1:]
        self._recompute()
        return line

    def set_discount(self, discount: Decimal | int | str) -> None:
        """
        Set the invoice-level discount.

        Raises:
            InvalidAmountError: negative discount.
            DiscountLimitExceededError: above the configured percentage of
                subtotal plus tax.
        """
        self._require_editing("set_discount")
        amount = to_decimal(discount, "discount")
        if amount < ZERO:
            raise InvalidAmountError("discount", amount)
        self._check_discount_cap(amount)
        self._discount = amount
        self._recompute()

    def set_customer(self, customer: CustomerRecord | None) -> None:
        self._require_editing("set_customer")
        self._customer = customer
        self._customer_ref = customer.customer_ref if customer else None

    def set_invoice_date(self, invoice_date: datetime) -> None:
        self._require_editing("set_invoice_date")
        self._invoice_date = invoice_date

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def begin_checkout(self) -> None:
        """
        Open the payment step.

        Raises:
            EmptyInvoiceError: no line has a resolved item and a positive
                quantity.
            DiscountLimitExceededError: lines were removed after the
                discount was set and it is now above the cap.
        """
        origin = self._require_editing("begin_checkout")
        if not any(line.is_resolved and line.quantity > ZERO for line in self._lines):
            raise EmptyInvoiceError()
        self._check_discount_cap(self._discount)
        self._transition(Checkout(origin=origin), "begin_checkout")

    def cancel_checkout(self) -> None:
        """Discard the payment step. Not allowed once the commit was sent."""
        state = self._require_checkout("cancel_checkout")
        if state.commit_in_flight:
            raise CommitInFlightError(self.session_id)
        self._transition(state.origin, "cancel_checkout")

    def preview_payment(self, plan: PaymentPlan) -> ValidatedPlan | PaymentRejection:
        """Reconcile a plan against the current net without committing."""
        state = self._require_checkout("preview_payment")
        self._state = replace(state, plan=plan)
        return reconcile(self._totals.net, plan, self._targets)

    async def commit(
        self,
        plan: PaymentPlan,
        approval_granted: bool = False,
    ) -> CheckoutOutcome:
        """
        Validate, guard and store the invoice.

        Order: payment reconciliation, customer requirement, fresh reads,
        guards, storage (exactly once), QR payload.
        """
        state = self._require_checkout("commit")
        if state.commit_in_flight:
            logger.warning("commit_ignored_in_flight", extra={
                "session_id": self.session_id,
            })
            return CheckoutOutcome(status=CheckoutStatus.IGNORED)

        # Flag set before the first await
        self._state = replace(state, plan=plan, commit_in_flight=True, pending_approval=None)
        correlation_id = str(uuid4())
        start = time.monotonic()
        try:
            with LogContext.bind(
                correlation_id=correlation_id,
                session_id=self.session_id,
                tab_id=self.tab_id,
                invoice_id=self.invoice_id,
            ):
                outcome = await self._run_commit(state.origin, plan, approval_granted)
        finally:
            current = self._state
            if isinstance(current, Checkout) and current.commit_in_flight:
                self._state = replace(current, commit_in_flight=False)

        logger.info("checkout_finished", extra={
            "correlation_id": correlation_id,
            "session_id": self.session_id,
            "status": outcome.status.value,
            "net": str(self._totals.net),
            "duration_ms": round((time.monotonic() - start) * 1000, 2),
        })
        return outcome

    async def _run_commit(
        self,
        origin: EditingState,
        plan: PaymentPlan,
        approval_granted: bool,
    ) -> CheckoutOutcome:
        totals = self._totals
        vat_enabled = self.vat_enabled

        payment = reconcile(totals.net, plan, self._targets)
        if isinstance(payment, PaymentRejection):
            self._transition(origin, "payment_rejected")
            return CheckoutOutcome(
                status=CheckoutStatus.REJECTED,
                payment_rejection=payment,
                message=localize(payment.code, self._locale, **payment.details),
            )

        if payment.is_credit and self._customer_ref is None:
            return self._reject_validation(origin, MissingCustomerError())

        # Fresh reads, in sequence
        items: dict[str, ItemRecord] = {}
        for line in self._lines:
            if line.item_ref in items:
                continue
            record = await self._catalog.get_item(line.item_ref)
            if record is None:
                return self._reject_validation(origin, ItemNotFoundError(line.item_ref))
            items[line.item_ref] = record

        customer = self._customer
        if self._customer_ref is not None:
            customer = await self._customers.get_customer(self._customer_ref)
            if customer is None and payment.is_credit:
                return self._reject_validation(origin, MissingCustomerError())
            self._customer = customer

        credit = None
        if customer is not None:
            credit = CreditContext(
                customer_ref=customer.customer_ref,
                current_balance=customer.current_balance,
                credit_limit=customer.credit_limit,
                existing_net=origin.existing_net if isinstance(origin, EditingExisting) else ZERO,
            )

        guard = run_guards(
            lines=self._lines,
            items=items,
            net=totals.net,
            payment_mode=payment.mode,
            policy=guard_policy_from(self._settings.financial),
            invoice_date=self._invoice_date,
            credit=credit,
            approval_granted=approval_granted,
            existing_quantities=(
                origin.existing_quantities if isinstance(origin, EditingExisting) else None
            ),
        )
        if guard.needs_approval:
            self._state = Checkout(origin=origin, plan=plan, pending_approval=guard)
            return CheckoutOutcome(
                status=CheckoutStatus.APPROVAL_REQUIRED,
                payment=payment,
                guard=guard,
                message=self._guard_message("APPROVAL_REQUIRED", guard),
            )
        if not guard.allowed:
            self._transition(origin, "guard_rejected")
            return CheckoutOutcome(
                status=CheckoutStatus.REJECTED,
                payment=payment,
                guard=guard,
                message=self._guard_message(guard.failure.code.value, guard),
            )

        draft = InvoiceDraft(
            invoice_date=self._invoice_date,
            lines=self._lines,
            totals=totals,
            payment=payment,
            vat_enabled=vat_enabled,
            customer_ref=self._customer_ref,
            invoice_id=origin.invoice_id if isinstance(origin, EditingExisting) else None,
        )
        try:
            if isinstance(origin, EditingExisting):
                saved = await self._store.update(origin.invoice_id, draft)
            else:
                saved = await self._store.create(draft)
        except PersistenceFailureError as exc:
            logger.warning("invoice_persistence_failed", extra={
                "session_id": self.session_id,
                "operation": exc.operation,
                "reason": exc.reason,
            })
            self._transition(origin, "persistence_failed")
            return CheckoutOutcome(
                status=CheckoutStatus.PERSISTENCE_FAILED,
                payment=payment,
                guard=guard,
                error_code=exc.code,
                message=localize(exc.code, self._locale),
            )

        self._stored_net = totals.net
        self._transition(
            SavedReadonly(invoice_id=saved.invoice_id, vat_enabled=vat_enabled),
            "commit",
        )
        summary = self._build_summary(saved.invoice_id, payment, vat_enabled)
        self._state = SavedReadonly(
            invoice_id=saved.invoice_id, vat_enabled=vat_enabled, summary=summary
        )
        logger.info("invoice_committed", extra={
            "session_id": self.session_id,
            "invoice_id": saved.invoice_id,
            "invoice_kind": summary.invoice_kind.value,
            "payment_mode": payment.mode.value,
            "net": str(totals.net),
            "warnings": [w.code.value for w in guard.warnings],
        })
        return CheckoutOutcome(
            status=CheckoutStatus.COMMITTED,
            summary=summary,
            payment=payment,
            guard=guard,
        )

    def _build_summary(
        self,
        invoice_id: str,
        payment: ValidatedPlan,
        vat_enabled: bool,
    ) -> InvoiceSummary:
        seller = self._settings.seller
        payload = build_zatca_payload(
            seller.name, seller.vat_number, self._invoice_date, self._totals
        )
        tax_number = self._customer.tax_number if self._customer else None
        return InvoiceSummary(
            invoice_id=invoice_id,
            invoice_kind=classify_invoice(vat_enabled, tax_number),
            invoice_date=self._invoice_date,
            totals=self._totals,
            lines=self._lines,
            payment=payment,
            zatca_base64=payload.to_base64(),
        )

    # ------------------------------------------------------------------
    # Saved invoice lifecycle
    # ------------------------------------------------------------------

    def edit(self, confirmed: bool) -> None:
        """Reopen a saved invoice for editing."""
        state = self._require_state(SavedReadonly, "edit")
        if not confirmed:
            raise ConfirmationRequiredError("edit")
        self._transition(
            EditingExisting(
                invoice_id=state.invoice_id,
                vat_enabled=state.vat_enabled,
                existing_net=self._stored_net,
                existing_quantities=quantities_by_item(self._lines),
            ),
            "edit",
        )

    async def delete(self, confirmed: bool) -> None:
        """
        Delete a saved invoice.

        Raises:
            ConfirmationRequiredError: ``confirmed`` is False.
            PersistenceFailureError: the store refused; the session stays
                SAVED_READONLY.
        """
        state = self._require_state(SavedReadonly, "delete")
        if not confirmed:
            raise ConfirmationRequiredError("delete")
        await self._store.delete(state.invoice_id)
        self._transition(Deleted(invoice_id=state.invoice_id), "delete")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionStateData, action: str) -> None:
        from_kind = self._state.kind
        if not is_valid_transition(from_kind, new_state.kind):
            raise InvalidSessionTransitionError(from_kind.value, action)
        self._state = new_state
        logger.info("session_transition", extra={
            "session_id": self.session_id,
            "action": action,
            "from_state": from_kind.value,
            "to_state": new_state.kind.value,
        })

    def _require_state(self, state_type: type | tuple[type, ...], action: str) -> Any:
        if not isinstance(self._state, state_type):
            raise InvalidSessionTransitionError(self._state.kind.value, action)
        return self._state

    def _require_editing(self, action: str) -> EditingState:
        return self._require_state((EditingNew, EditingExisting), action)

    def _require_checkout(self, action: str) -> Checkout:
        return self._require_state(Checkout, action)

    def _line_at(self, index: int) -> LineItem:
        if not 0 <= index < len(self._lines):
            raise LineNotFoundError(index)
        return self._lines[index]

    def _replace_line(
        self,
        index: int,
        quantity: Decimal | None,
        unit_price: Decimal | None,
    ) -> LineItem:
        line = reprice_line(
            self._lines[index],
            vat_enabled=self.vat_enabled,
            vat_rate_percent=self._settings.financial.vat_rate_percent,
            quantity=quantity,
            unit_price=unit_price,
        )
        self._lines = self._lines[:index] + (line,) + self._lines[index + 1:]
        self._recompute()
        return line

    def _recompute(self) -> None:
        self._totals = aggregate(self._lines, self._discount, self.vat_enabled)

    def _check_discount_cap(self, discount: Decimal) -> None:
        max_percentage = self._settings.financial.max_discount_percentage
        if max_percentage <= ZERO:
            return
        gross = aggregate(self._lines, ZERO, self.vat_enabled)
        max_discount = max_discount_for(gross, max_percentage)
        if discount > max_discount:
            raise DiscountLimitExceededError(discount, max_discount, max_percentage)

    def _reject_validation(self, origin: EditingState, exc: ValidationError) -> CheckoutOutcome:
        logger.info("checkout_validation_failed", extra={
            "session_id": self.session_id,
            "error_code": exc.code,
        })
        self._transition(origin, "validation_failed")
        return CheckoutOutcome(
            status=CheckoutStatus.REJECTED,
            error_code=exc.code,
            message=localize(exc.code, self._locale, **vars(exc)),
        )

    def _guard_message(self, code: str, guard: GuardOutcome) -> str:
        fields = guard.failure.message_fields() if guard.failure else {}
        return localize(code, self._locale, **fields)
