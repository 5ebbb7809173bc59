"""Online/offline and foreground/background tracking."""

from typing import Callable, List

import structlog

from ..domain.models import Connectivity

logger = structlog.get_logger()

ConnectivityListener = Callable[[Connectivity, Connectivity], None]


class ConnectivityMonitor:
    """Holds the platform's connectivity flags and notifies on transitions.

    Platform adapters (browser events, OS hooks, a TUI focus handler) call
    ``set_online`` / ``set_foreground``; listeners receive the previous and
    current state and are only invoked when something actually changed.
    """

    def __init__(self, online: bool = True, foreground: bool = True) -> None:
        self._state = Connectivity(online=online, foreground=foreground)
        self._listeners: List[ConnectivityListener] = []

    def is_online(self) -> bool:
        return self._state.online

    def is_foreground(self) -> bool:
        return self._state.foreground

    def snapshot(self) -> Connectivity:
        return self._state

    def on_change(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        self._update(Connectivity(online=online, foreground=self._state.foreground))

    def set_foreground(self, foreground: bool) -> None:
        self._update(Connectivity(online=self._state.online, foreground=foreground))

    def _update(self, current: Connectivity) -> None:
        previous = self._state
        if current == previous:
            return
        self._state = current
        logger.info("connectivity_changed", online=current.online, foreground=current.foreground)
        for listener in list(self._listeners):
            try:
                listener(previous, current)
            except Exception as e:
                logger.error("connectivity_listener_error", error=str(e))
