"""Optimistic view of a checklist item for interactive clients.

``ItemState`` pairs the last row the server confirmed with the edit the
client is still waiting on. :func:`reduce` returns a new state and never
touches its inputs; a failed save drops the pending edit instead of merging it.
"""
from typing import Any, Dict, NamedTuple, Optional

APPLY = "apply"
COMMIT = "commit"
ROLLBACK = "rollback"


class ItemState(NamedTuple):
    confirmed: Dict[str, Any]
    pending: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.pending is not None


def view(state: ItemState) -> Dict[str, Any]:
    shown = dict(state.confirmed)
    if state.pending:
        shown.update(state.pending)
    return shown


def reduce(state: ItemState, action: str, payload: Optional[Any] = None) -> ItemState:
    if action == APPLY:
        pending = dict(state.pending or {})
        pending.update(payload or {})
        return ItemState(state.confirmed, pending, None)
    if action == COMMIT:
        # Server row wins over whatever was shown
        return ItemState(dict(payload), None, None)
    if action == ROLLBACK:
        return ItemState(state.confirmed, None, payload)
    raise ValueError(f"Unknown action: {action}")
