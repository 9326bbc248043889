"""
pos_services.tab_manager -- Parallel invoice tabs at one register.

Responsibility:
    Keeps an ordered set of independent ``InvoiceSession`` objects, one per
    open tab, and which one is active.

Invariants enforced:
    - At least one tab is always open. Closing the last tab leaves exactly
      one fresh EDITING_NEW session.
    - Switching tabs never touches another tab's session; totals are only
      recomputed by edits on the session that owns them.
    - After a committed checkout or a delete, the finished tab is replaced
      by a fresh one via ``replace_finished``.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import uuid4

from pos_kernel.domain.session import SessionState
from pos_kernel.logging_config import get_logger
from pos_services.invoice_session import InvoiceSession

logger = get_logger("services.tab_manager")


class TabManager:
    """Open invoice tabs, keyed by tab id, in opening order."""

    def __init__(self, session_factory: Callable[..., InvoiceSession]):
        self._factory = session_factory
        self._tabs: dict[str, InvoiceSession] = {}
        self._active_id: str = self.open_tab()

    @property
    def active(self) -> InvoiceSession:
        return self._tabs[self._active_id]

    @property
    def active_id(self) -> str:
        return self._active_id

    @property
    def tab_ids(self) -> tuple[str, ...]:
        return tuple(self._tabs)

    def __len__(self) -> int:
        return len(self._tabs)

    def get(self, tab_id: str) -> InvoiceSession:
        return self._tabs[tab_id]

    def open_tab(self) -> str:
        """Open a blank tab and make it active."""
        tab_id = str(uuid4())
        self._tabs[tab_id] = self._factory(tab_id=tab_id)
        self._active_id = tab_id
        logger.info("tab_opened", extra={"tab_id": tab_id, "tab_count": len(self._tabs)})
        return tab_id

    def switch_to(self, tab_id: str) -> InvoiceSession:
        if tab_id not in self._tabs:
            raise KeyError(tab_id)
        self._active_id = tab_id
        return self._tabs[tab_id]

    def close_tab(self, tab_id: str) -> None:
        """
        Close a tab. The neighbour to its left (or right) becomes active;
        closing the only tab opens a fresh one.
        """
        if tab_id not in self._tabs:
            raise KeyError(tab_id)
        order = list(self._tabs)
        position = order.index(tab_id)
        del self._tabs[tab_id]
        logger.info("tab_closed", extra={"tab_id": tab_id, "tab_count": len(self._tabs)})

        if not self._tabs:
            self.open_tab()
            return
        if self._active_id == tab_id:
            remaining = list(self._tabs)
            self._active_id = remaining[max(0, position - 1)]

    def replace_finished(self, tab_id: str) -> str:
        """
        Swap a tab whose invoice was saved or deleted for a blank one in
        the same slot.

        Returns the new tab id. Tabs still being edited or checked out are left
        alone and their id is returned unchanged.
        """
        session = self._tabs[tab_id]
        if session.kind not in (SessionState.SAVED_READONLY, SessionState.DELETED):
            return tab_id
        new_id = str(uuid4())
        self._tabs = {
            (new_id if key == tab_id else key): (
                self._factory(tab_id=new_id) if key == tab_id else value
            )
            for key, value in self._tabs.items()
        }
        if self._active_id == tab_id:
            self._active_id = new_id
        logger.info("tab_replaced", extra={
            "old_tab_id": tab_id,
            "tab_id": new_id,
            "invoice_id": session.invoice_id,
        })
        return new_id
