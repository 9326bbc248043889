"""
Tests for TabManager.

Covers:
- Tabs are independent sessions
- Switching never recomputes another tab
- Closing the last tab leaves exactly one fresh session
- Finished tabs are replaced in place
"""

import asyncio
from decimal import Decimal

import pytest

from pos_kernel.domain.payment import PaymentPlan
from pos_kernel.domain.session import SessionState
from pos_services.tab_manager import TabManager


@pytest.fixture
def tabs(make_session):
    return TabManager(make_session)


class TestTabs:

    def test_starts_with_one_blank_tab(self, tabs):
        assert len(tabs) == 1
        assert tabs.active.is_blank
        assert tabs.active.tab_id == tabs.active_id

    def test_tabs_are_independent(self, tabs, widget):
        first_id = tabs.active_id
        tabs.active.add_item(widget, 3)

        second_id = tabs.open_tab()
        tabs.active.add_item(widget, 1)

        assert tabs.get(first_id).totals.net == Decimal("34.50")
        assert tabs.get(second_id).totals.net == Decimal("11.50")
        assert tabs.get(first_id) is not tabs.get(second_id)

    def test_switching_leaves_totals_untouched(self, tabs, widget):
        first_id = tabs.active_id
        tabs.active.add_item(widget, 3)
        before = tabs.get(first_id).totals
        second_id = tabs.open_tab()

        tabs.switch_to(first_id)
        tabs.switch_to(second_id)

        assert tabs.get(first_id).totals is before

    def test_switch_to_unknown_tab(self, tabs):
        with pytest.raises(KeyError):
            tabs.switch_to("missing")


class TestClosingTabs:

    def test_closing_last_tab_opens_fresh_one(self, tabs, widget):
        only_id = tabs.active_id
        tabs.active.add_item(widget, 1)

        tabs.close_tab(only_id)

        assert len(tabs) == 1
        assert tabs.active_id != only_id
        assert tabs.active.kind == SessionState.EDITING_NEW
        assert tabs.active.is_blank

    def test_closing_active_tab_activates_left_neighbour(self, tabs):
        first_id = tabs.active_id
        second_id = tabs.open_tab()
        third_id = tabs.open_tab()
        tabs.switch_to(second_id)

        tabs.close_tab(second_id)

        assert tabs.tab_ids == (first_id, third_id)
        assert tabs.active_id == first_id

    def test_closing_first_tab_activates_next(self, tabs):
        first_id = tabs.active_id
        second_id = tabs.open_tab()
        tabs.switch_to(first_id)

        tabs.close_tab(first_id)

        assert tabs.active_id == second_id

    def test_closing_inactive_tab_keeps_active(self, tabs):
        first_id = tabs.active_id
        second_id = tabs.open_tab()

        tabs.close_tab(first_id)

        assert tabs.active_id == second_id


class TestReplaceFinished:

    def test_committed_tab_is_replaced_in_place(self, tabs, widget):
        first_id = tabs.active_id
        second_id = tabs.open_tab()
        tabs.switch_to(first_id)
        session = tabs.active
        session.add_item(widget, 1)
        session.begin_checkout()
        asyncio.run(session.commit(PaymentPlan.cash("SAFE-1")))

        new_id = tabs.replace_finished(first_id)

        assert new_id != first_id
        assert tabs.tab_ids == (new_id, second_id)
        assert tabs.active_id == new_id
        assert tabs.active.is_blank
        assert session.kind == SessionState.SAVED_READONLY

    def test_open_draft_is_not_replaced(self, tabs, widget):
        tabs.active.add_item(widget, 1)

        assert tabs.replace_finished(tabs.active_id) == tabs.active_id
        assert not tabs.active.is_blank
