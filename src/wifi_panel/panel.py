"""Visibility and reload flags driven from outside the panel process."""

from __future__ import annotations

import threading


class PanelVisibility:
    """Show/hide state plus one-shot refresh and reload requests.

    The flags are set from request handlers or signal callbacks and consumed
    by the live-update poll loop, so all access is thread-safe.
    """

    def __init__(self, *, visible: bool = False) -> None:
        self._lock = threading.Lock()
        self._visible = visible
        self._refresh_requested = threading.Event()
        self._reload_requested = threading.Event()

    @property
    def visible(self) -> bool:
        with self._lock:
            return self._visible

    def show(self) -> bool:
        """Make the panel visible and ask for a fresh scan."""

        with self._lock:
            self._visible = True
        self._refresh_requested.set()
        return True

    def hide(self) -> bool:
        with self._lock:
            self._visible = False
        return False

    def toggle(self) -> bool:
        with self._lock:
            visible = self._visible
        return self.hide() if visible else self.show()

    def request_reload(self) -> None:
        self._reload_requested.set()

    def consume_refresh(self) -> bool:
        if not self._refresh_requested.is_set():
            return False
        self._refresh_requested.clear()
        return True

    def consume_reload(self) -> bool:
        if not self._reload_requested.is_set():
            return False
        self._reload_requested.clear()
        return True

    def to_dict(self) -> dict[str, bool]:
        return {
            "visible": self.visible,
            "refresh_requested": self._refresh_requested.is_set(),
            "reload_requested": self._reload_requested.is_set(),
        }


__all__ = ["PanelVisibility"]
