"""
pos_services.collaborators -- Ports to the outside world.

Responsibility:
    Structural protocols for the item catalogue, the customer directory
    and the invoice store. The invoice session depends only on these;
    adapters for a real backend live outside this package.

Architecture position:
    Services layer. Imports kernel domain types only.

Invariants enforced:
    - Catalogue and directory reads return fresh snapshots; the session
      re-reads them immediately before the guards run.
    - ``InvoiceStore`` calls either return the stored invoice or raise
      ``PersistenceFailureError``. The session never retries.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pos_kernel.domain.invoice import InvoiceDraft, SavedInvoice
from pos_kernel.domain.reference import CustomerRecord, ItemRecord


@runtime_checkable
class ItemCatalog(Protocol):
    async def get_item(self, item_ref: str) -> ItemRecord | None:
        """Current snapshot of one item, or None if it no longer exists."""
        ...

    async def find(self, query: str) -> ItemRecord | None:
        """Look up by item code, barcode, or exact name."""
        ...


@runtime_checkable
class CustomerDirectory(Protocol):
    async def get_customer(self, customer_ref: str) -> CustomerRecord | None:
        ...


@runtime_checkable
class InvoiceStore(Protocol):
    async def create(self, draft: InvoiceDraft) -> SavedInvoice:
        ...

    async def update(self, invoice_id: str, draft: InvoiceDraft) -> SavedInvoice:
        ...

    async def delete(self, invoice_id: str) -> None:
        ...
