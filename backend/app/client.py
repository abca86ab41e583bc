import os
from typing import Any, Callable, Dict, Optional

import requests

from .logging_config import log_event
from .optimistic import APPLY, COMMIT, ROLLBACK, ItemState, reduce, view


def _detail(r) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {r.status_code}"


class ChecklistClient:
    """Edits checklist items over the API, showing each edit before it is saved.

    Configured from ``AUDIT_API_URL``, ``AUDIT_API_TOKEN``,
    ``AUDIT_API_USER_ID`` and ``AUDIT_API_TIMEOUT`` unless given explicitly.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        base_url = base_url if base_url is not None else os.getenv("AUDIT_API_URL", "http://localhost:8000")
        self.base_url = base_url.rstrip("/")
        self.token = token if token is not None else os.getenv("AUDIT_API_TOKEN")
        self.user_id = user_id if user_id is not None else os.getenv("AUDIT_API_USER_ID")
        self.timeout = timeout if timeout is not None else float(os.getenv("AUDIT_API_TIMEOUT", "10"))

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.user_id:
            headers["X-User-ID"] = self.user_id
        return headers

    def update_item(
        self,
        state: ItemState,
        on_change: Optional[Callable[[Dict[str, Any]], None]] = None,
        **delta,
    ) -> ItemState:
        """PATCH one item and return the reconciled state.

        ``on_change`` sees the optimistic value first, then either the stored
        row or the value that was shown before the edit.
        """
        state = reduce(state, APPLY, delta)
        if on_change:
            on_change(view(state))

        item_id = state.confirmed["id"]
        url = f"{self.base_url}/checklist-items/{item_id}"
        try:
            r = requests.patch(url, headers=self._headers(), json=delta, timeout=self.timeout)
        except requests.RequestException as e:
            log_event("item_update_rolled_back", level="warning", item_id=item_id, reason="unreachable", error=str(e))
            state = reduce(state, ROLLBACK, "Server unreachable")
        else:
            if r.status_code == 200:
                state = reduce(state, COMMIT, r.json())
            else:
                log_event("item_update_rolled_back", level="warning", item_id=item_id, reason="status", status=r.status_code)
                state = reduce(state, ROLLBACK, _detail(r))

        if on_change:
            on_change(view(state))
        return state
