"""Media Transport Adapter: one uniform surface over the active backend."""

import logging
from typing import Dict, Optional

from watchstreak.domain import MediaKind, TransportState
from watchstreak.interfaces import IMediaTransport, StateCallback, Unsubscribe
from watchstreak.listeners import ListenerRegistry

logger = logging.getLogger(__name__)


class TransportAdapter(IMediaTransport):
    """
    Routes transport calls to the backend registered for the active media kind.

    Only the active backend's state changes reach subscribers, so a stale
    event from a backend that was just switched away from is dropped.
    """

    def __init__(self, backends: Dict[MediaKind, IMediaTransport]):
        if not backends:
            raise ValueError("At least one transport backend is required")
        self.backends = dict(backends)
        self._listeners: ListenerRegistry[TransportState] = ListenerRegistry()
        self._unsubscribers = {
            kind: backend.on_state_change(self._make_forwarder(kind))
            for kind, backend in self.backends.items()
        }
        self.active_kind: MediaKind = next(iter(self.backends))

    def _make_forwarder(self, kind: MediaKind) -> StateCallback:
        def forward(state: TransportState) -> None:
            if kind != self.active_kind:
                logger.debug("Dropping %s event from inactive %s backend", state.value, kind.value)
                return
            self._listeners.notify(state)
        return forward

    @property
    def active(self) -> IMediaTransport:
        return self.backends[self.active_kind]

    def activate(self, kind: MediaKind) -> IMediaTransport:
        """Makes the backend for `kind` active, stopping the previous one if it differs."""
        if kind not in self.backends:
            # Any backend can usually play any kind; fall back to the first one
            logger.warning("No backend registered for %s; using %s", kind.value, self.active_kind.value)
            return self.active
        if kind != self.active_kind:
            previous = self.active
            self.active_kind = kind
            previous.stop()
        return self.active

    def close(self) -> None:
        for unsubscribe in self._unsubscribers.values():
            unsubscribe()
        for backend in self.backends.values():
            backend.stop()

    # --- IMediaTransport ---

    def load(self, source: str, start_at: float = 0.0) -> None:
        self.active.load(source, start_at)

    def play(self) -> None:
        self.active.play()

    def pause(self) -> None:
        self.active.pause()

    def stop(self) -> None:
        self.active.stop()

    def seek(self, seconds: float) -> None:
        self.active.seek(seconds)

    def get_position(self) -> float:
        return self.active.get_position()

    def get_duration(self) -> float:
        return self.active.get_duration()

    def get_state(self) -> Optional[TransportState]:
        return self.active.get_state()

    def get_rate(self) -> float:
        return self.active.get_rate()

    def set_rate(self, rate: float) -> None:
        self.active.set_rate(rate)

    def get_volume(self) -> float:
        return self.active.get_volume()

    def set_volume(self, volume: float) -> None:
        self.active.set_volume(volume)

    def set_muted(self, muted: bool) -> None:
        self.active.set_muted(muted)

    def on_state_change(self, callback: StateCallback) -> Unsubscribe:
        return self._listeners.add(callback)
