import pytest

from backend.app.optimistic import APPLY, COMMIT, ROLLBACK, ItemState, reduce, view


def test_apply_shows_pending_over_confirmed():
    confirmed = {"id": "i1", "outcome": "pending", "notes": None}
    state = ItemState(confirmed)
    after = reduce(state, APPLY, {"outcome": "compliant"})
    assert view(after)["outcome"] == "compliant"
    assert after.confirmed["outcome"] == "pending"
    assert after.is_pending
    # inputs are left alone
    assert state.pending is None
    assert confirmed == {"id": "i1", "outcome": "pending", "notes": None}


def test_rollback_restores_previous_value():
    state = ItemState({"id": "i1", "outcome": "compliant", "notes": "ok"})
    shown_before = view(state)
    pending = reduce(state, APPLY, {"outcome": "non_compliant", "notes": "broken"})
    restored = reduce(pending, ROLLBACK, "Audit is closed")
    assert view(restored) == shown_before
    assert restored.error == "Audit is closed"
    assert not restored.is_pending


def test_commit_takes_server_row():
    state = reduce(ItemState({"id": "i1", "outcome": "pending"}), APPLY, {"outcome": "compliant"})
    # another writer got there first; the server row is authoritative
    final = reduce(state, COMMIT, {"id": "i1", "outcome": "not_applicable", "notes": "by someone else"})
    assert view(final)["outcome"] == "not_applicable"
    assert final.pending is None
    assert final.error is None


def test_successive_applies_merge():
    state = ItemState({"id": "i1", "outcome": "pending", "notes": None})
    state = reduce(state, APPLY, {"outcome": "compliant"})
    state = reduce(state, APPLY, {"notes": "checked"})
    assert view(state) == {"id": "i1", "outcome": "compliant", "notes": "checked"}


def test_new_edit_clears_previous_error():
    state = reduce(ItemState({"id": "i1", "outcome": "pending"}), ROLLBACK, "Server unreachable")
    assert reduce(state, APPLY, {"outcome": "compliant"}).error is None


def test_unknown_action():
    with pytest.raises(ValueError):
        reduce(ItemState({"id": "i1"}), "merge", {})
