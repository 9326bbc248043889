"""
pos_services -- Stateful coordination of the invoice engines.

``InvoiceSession`` is the invoice state machine; ``TabManager`` holds the
parallel tabs of one register. Collaborator protocols describe the
catalogue, customer directory and invoice store the session talks to.
"""

from pos_services.collaborators import CustomerDirectory, InvoiceStore, ItemCatalog
from pos_services.invoice_session import InvoiceSession
from pos_services.tab_manager import TabManager

__all__ = [
    "CustomerDirectory",
    "InvoiceSession",
    "InvoiceStore",
    "ItemCatalog",
    "TabManager",
]
