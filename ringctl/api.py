"""Stable public API for building tooling on top of ringctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from ringctl.core.errors import (
    ChannelNotFoundError,
    InvalidCommandError,
    LinkLostError,
    ProfileLoadError,
    ProfileValidationError,
    RingctlError,
    ScanUnavailableError,
    ServiceDiscoveryError,
    WriteNotAcceptedError,
)
from ringctl.core.model import DeviceProfile, SessionState
from ringctl.core.profile_loader import default_profile
from ringctl.core.session import SessionEngine
from ringctl.transports.base import Transport
from ringctl.transports.ble_gatt import BleakTransport

__all__ = [
    "RingctlError",
    "ChannelNotFoundError",
    "InvalidCommandError",
    "LinkLostError",
    "ProfileLoadError",
    "ProfileValidationError",
    "ScanUnavailableError",
    "ServiceDiscoveryError",
    "WriteNotAcceptedError",
    "DeviceProfile",
    "SessionState",
    "BleakTransport",
    "Client",
]

LOGGER = logging.getLogger(__name__)
_TERMINAL_STATES = frozenset({SessionState.DISCONNECTED.value, SessionState.IDLE.value})


class Client:
    """Public client wrapping a session engine plus a reconnect policy.

    While ``auto_retry`` is enabled, every terminal state report schedules a
    fresh ``start_connect_flow`` after ``retry_delay_s``. ``close`` turns the
    policy off before stopping the session, so a user-requested disconnect
    stays disconnected.
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        profile: DeviceProfile | None = None,
        auto_retry: bool = True,
        retry_delay_s: float = 1.5,
        on_bytes: Callable[[str, bytes], None] | None = None,
        on_log: Callable[[str], None] | None = None,
        on_state: Callable[[str], None] | None = None,
        on_signal_strength: Callable[[int], None] | None = None,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = threading.Timer,
    ) -> None:
        self.auto_retry = auto_retry
        self.retry_delay_s = retry_delay_s
        self._owns_transport = transport is None
        self._transport = transport or BleakTransport()
        self._on_state_hook = on_state
        self._timer_factory = timer_factory
        self._retry_timer: threading.Timer | None = None
        self._state = SessionState.IDLE.value
        self._state_changed = threading.Condition()
        self._engine = SessionEngine(
            self._transport,
            profile or default_profile(),
            on_log=on_log or (lambda _msg: None),
            on_bytes=on_bytes or (lambda _uuid, _payload: None),
            on_state=self._handle_state,
            on_signal_strength=on_signal_strength or (lambda _rssi: None),
        )

    @property
    def engine(self) -> SessionEngine:
        return self._engine

    @property
    def profile(self) -> DeviceProfile:
        return self._engine.profile

    @property
    def state(self) -> str:
        return self._state

    def connect(self) -> None:
        self._cancel_retry()
        self._engine.start_connect_flow()

    def write_command(self, hex_string: str) -> None:
        self._engine.write_command(hex_string)

    def read_signal_strength(self) -> bool:
        return self._engine.read_signal_strength()

    def close(self, send_reboot: bool = True) -> None:
        self.auto_retry = False
        self._cancel_retry()
        self._engine.stop_and_disconnect(send_reboot=send_reboot)

    def disconnect(self) -> None:
        """Tear the session down now, without stop frames."""
        self.auto_retry = False
        self._cancel_retry()
        self._engine.disconnect()

    def shutdown(self, timeout_s: float = 2.0) -> None:
        """Release the transport this client created; call after ``close``."""
        self._engine.join_stop_sequence(timeout_s)
        if self._owns_transport and isinstance(self._transport, BleakTransport):
            self._transport.shutdown(timeout_s)

    def wait_for_state(self, state: str, timeout: float | None = None) -> bool:
        with self._state_changed:
            return self._state_changed.wait_for(lambda: self._state == state, timeout)

    def _handle_state(self, state: str) -> None:
        with self._state_changed:
            self._state = state
            self._state_changed.notify_all()
        if self._on_state_hook is not None:
            self._on_state_hook(state)
        if state in _TERMINAL_STATES and self.auto_retry:
            self._schedule_retry()

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        LOGGER.info("Scheduling reconnect in %.1fs", self.retry_delay_s)
        timer = self._timer_factory(self.retry_delay_s, self._retry)
        timer.daemon = True
        self._retry_timer = timer
        timer.start()

    def _retry(self) -> None:
        if self.auto_retry and self._state in _TERMINAL_STATES:
            LOGGER.info("Auto-retry firing")
            self._engine.start_connect_flow()

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
