"""Session engine: connection lifecycle, queued subscriptions and commands.

The engine is driven from two directions: caller methods (``start_connect_flow``,
``write_command``, ``stop_and_disconnect``, ...) and transport callbacks
delivered on the transport's callback thread. Both enter through the same
re-entrant lock, so session fields have a single writer at any instant.

Only the stop sequence runs on its own thread. Its waits between frames
happen outside the lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from ringctl.core import frame as frame_codec
from ringctl.core.commands import CommandQueue
from ringctl.core.errors import LinkLostError, ScanUnavailableError, ServiceDiscoveryError
from ringctl.core.model import DeviceProfile, DiscoveredPeripheral, OutboundFrame, SessionState
from ringctl.core.profile_loader import default_profile
from ringctl.core.scan import ScanTrigger
from ringctl.core.subscription import SubscriptionQueue
from ringctl.transports.base import GATT_SUCCESS, Link, Transport

LOGGER = logging.getLogger(__name__)


def _ignore(*_: object) -> None:
    return None


class SessionEngine:
    """One peripheral session at a time; implements ``LinkCallbacks``."""

    def __init__(
        self,
        transport: Transport,
        profile: DeviceProfile | None = None,
        *,
        on_log: Callable[[str], None] = _ignore,
        on_bytes: Callable[[str, bytes], None] = _ignore,
        on_state: Callable[[str], None] = _ignore,
        on_signal_strength: Callable[[int], None] = _ignore,
    ) -> None:
        self.profile = profile or default_profile()
        self._transport = transport
        self._on_log = on_log
        self._on_bytes = on_bytes
        self._on_state = on_state
        self._on_signal_strength = on_signal_strength

        self._lock = threading.RLock()
        self._link: Link | None = None
        self._state = SessionState.IDLE
        self._scanning = False
        self._pending_command: OutboundFrame | None = None
        self._stop_requested = False
        self._stop_send_reboot = False
        self._stopping = False
        self._stop_cancel: threading.Event | None = None
        self._stop_worker: threading.Thread | None = None
        self._rssi_in_flight = False

        self._scan = ScanTrigger(
            self.profile.target,
            on_log=self._log,
            on_match=self._connect,
            log_throttle_s=self.profile.scan_log_throttle_s,
        )
        self.subscriptions = SubscriptionQueue(
            self.profile.notify_uuids,
            link=self._current_link,
            on_log=self._log,
            on_complete=self._on_subscriptions_complete,
        )
        self.commands = CommandQueue(
            self.profile.command_uuids,
            link=self._current_link,
            on_log=self._log,
        )

    # --- introspection ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def link(self) -> Link | None:
        return self._link

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def is_subscribing(self) -> bool:
        return self.subscriptions.in_progress

    @property
    def is_stopping(self) -> bool:
        return self._stopping

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def pending_command(self) -> OutboundFrame | None:
        return self._pending_command

    @property
    def rssi_in_flight(self) -> bool:
        return self._rssi_in_flight

    @property
    def unique_seen(self) -> int:
        return self._scan.unique_seen

    # --- caller API ---

    def start_connect_flow(self) -> None:
        """Reset everything, then scan for the target. Safe to call repeatedly."""
        with self._lock:
            self.disconnect()
            self.start_scan()

    def start_scan(self) -> None:
        with self._lock:
            if self._scanning:
                self._log("Already scanning.")
                self._set_state(SessionState.SCANNING)
                return

            self._scanning = True
            self._scan.reset()
            try:
                self._transport.start_scan(self._on_scan_result, self._on_scan_failed)
            except ScanUnavailableError as exc:
                self._scanning = False
                self._log(f"No BLE scanner available: {exc}")
                self._set_state(SessionState.DISCONNECTED)
                return

            self._log("Scanning... (logging discoveries)")
            self._set_state(SessionState.SCANNING)

    def stop_scan(self) -> None:
        with self._lock:
            if not self._scanning:
                return
            self._scanning = False
            try:
                self._transport.stop_scan()
            except Exception as exc:
                LOGGER.debug("stop_scan failed: %s", exc)
            self._log(f"Scan stopped. uniqueSeen={self._scan.unique_seen}")

    def disconnect(self) -> None:
        """Tear down the link and reset all session state, from any state."""
        with self._lock:
            self._cancel_stop_sequence()
            self.stop_scan()

            link = self._link
            self._link = None
            if link is not None:
                self._release(link, disconnect=True)

            self._reset_session_state()
            self._log("Disconnected.")
            self._set_state(SessionState.DISCONNECTED)

    def write_command(self, hex_string: str) -> None:
        """Queue a command for the peripheral.

        Raises:
            InvalidCommandError: If ``hex_string`` is not a valid frame command.
        """
        outbound = self._frame(hex_string)
        with self._lock:
            if self._link is None:
                self._log(f"writeCommand: no link, dropping {outbound.command}")
                return
            if self._stopping:
                self._log(f"writeCommand ignored while stop sequence runs: {outbound.command}")
                return
            if self._state is not SessionState.STREAMING:
                self._log(f"writeCommand deferred until streaming starts ({self._state.value}): {outbound.command}")
                self._pending_command = outbound
                return

            self._log(f"writeCommand({outbound.command}) forceWithResponse={outbound.force_response}")
            self.commands.enqueue(outbound)

    def stop_and_disconnect(self, send_reboot: bool = False) -> None:
        """Send the stop frames (optionally reboot), then disconnect."""
        with self._lock:
            if self._link is None:
                self.disconnect()
                return
            if self._stopping:
                self._log("Stop sequence already running.")
                return
            if self.subscriptions.in_progress:
                self._log("Stop deferred until notify enable completes.")
                self._stop_requested = True
                self._stop_send_reboot = send_reboot
                return

            self._start_stop_sequence(send_reboot)

    def read_signal_strength(self) -> bool:
        """Start an RSSI read; True also means one is already in progress."""
        with self._lock:
            link = self._link
            if link is None:
                return False
            if self._rssi_in_flight:
                return True
            try:
                started = link.read_rssi()
            except Exception as exc:
                LOGGER.debug("read_rssi failed: %s", exc)
                started = False
            if started:
                self._rssi_in_flight = True
            return started

    def join_stop_sequence(self, timeout: float | None = None) -> bool:
        """Wait for a running stop sequence thread; True when none is left running."""
        worker = self._stop_worker
        if worker is None or worker is threading.current_thread():
            return True
        worker.join(timeout)
        return not worker.is_alive()

    # --- discovery ---

    def on_peripheral_found(self, address: str, name: str, signal_strength: int) -> None:
        with self._lock:
            if not self._scanning:
                return
            self._scan.on_peripheral_found(address, name, signal_strength)

    def _on_scan_result(self, peripheral: DiscoveredPeripheral) -> None:
        self.on_peripheral_found(peripheral.address, peripheral.name, peripheral.rssi)

    def _on_scan_failed(self, reason: str) -> None:
        with self._lock:
            self._scanning = False
            self._log(f"Scan failed: {reason}")
            self._set_state(SessionState.DISCONNECTED)

    def _connect(self, peripheral: DiscoveredPeripheral) -> None:
        self._set_state(SessionState.CONNECTING)
        self.stop_scan()
        self._log("Connecting GATT...")
        self._link = self._transport.connect(peripheral.address, self)

    # --- transport callbacks ---

    def on_connection_state_changed(self, link: Link, connected: bool, status: int) -> None:
        with self._lock:
            if link is not self._link:
                LOGGER.debug("Ignoring state change from stale link (connected=%s)", connected)
                if connected:
                    self._release(link, disconnect=True)
                return

            self._log(f"GATT state change: status={status} connected={connected}")
            if connected:
                self._log("Connected. Discovering services...")
                self._set_state(SessionState.DISCOVERING)
                if not link.discover_services():
                    self._fail_discovery(link, "service discovery could not start")
                return

            self._log(str(LinkLostError(f"Disconnected (state callback). status={status}")))
            self._cancel_stop_sequence()
            self._link = None
            self._release(link, disconnect=False)
            self._reset_session_state()
            self._set_state(SessionState.DISCONNECTED)

    def on_services_discovered(self, link: Link, status: int) -> None:
        with self._lock:
            if link is not self._link:
                return
            self._log(f"Services discovered: status={status}")
            if status != GATT_SUCCESS:
                self._fail_discovery(link, f"status={status}")
                return

            self._set_state(SessionState.SUBSCRIBING)
            self._pending_command = self._frame(self.profile.commands.start_raw)
            self.subscriptions.begin(link)

    def on_descriptor_write(self, link: Link, uuid: str, status: int) -> None:
        with self._lock:
            if link is not self._link:
                return
            self._log(f"Desc write: {uuid} status={status}")
            self.subscriptions.advance()

    def on_characteristic_write(self, link: Link, uuid: str, status: int) -> None:
        with self._lock:
            if link is not self._link:
                return
            self._log(f"Char write cb: {uuid} status={status}")
            self.commands.on_write_complete()

    def on_characteristic_changed(self, link: Link, uuid: str, payload: bytes) -> None:
        with self._lock:
            current = link is self._link
        if current:
            self._on_bytes(uuid, bytes(payload))

    def on_rssi_read(self, link: Link, rssi: int, status: int) -> None:
        with self._lock:
            if link is not self._link:
                return
            self._rssi_in_flight = False
            if status != GATT_SUCCESS:
                self._log(f"Read RSSI failed status={status}")
                return
        self._on_signal_strength(rssi)

    # --- internals ---

    def _current_link(self) -> Link | None:
        return self._link

    def _fail_discovery(self, link: Link, reason: str) -> None:
        self._log(str(ServiceDiscoveryError(f"Service discovery failed: {reason}")))
        self._link = None
        self._release(link, disconnect=True)
        self._reset_session_state()
        self._set_state(SessionState.IDLE)

    def _on_subscriptions_complete(self) -> None:
        self._flush_pending_command()
        if self._stop_requested:
            send_reboot = self._stop_send_reboot
            self._stop_requested = False
            self._stop_send_reboot = False
            self._log("Deferred stop requested during subscribe; running stop sequence now.")
            self._start_stop_sequence(send_reboot)

    def _flush_pending_command(self) -> None:
        outbound = self._pending_command
        self._pending_command = None
        if outbound is None or self._link is None:
            return

        self._log(f"Sending pending command AFTER notifications: {outbound.command}")
        self.commands.enqueue(outbound)
        if not self._stop_requested:
            self._set_state(SessionState.STREAMING)

    def _start_stop_sequence(self, send_reboot: bool) -> None:
        commands = self.profile.commands
        timing = self.profile.stop_timing
        steps = [
            (commands.stop_raw, timing.step_delay_s),
            (commands.stop_raw, timing.step_delay_s),
            (commands.stop_camera, timing.step_delay_s),
        ]
        if send_reboot:
            steps.append((commands.reboot, timing.reboot_delay_s))

        dropped = len(self.commands)
        if dropped:
            self._log(f"Stop sequence: discarding {dropped} queued command(s).")
        self._stopping = True
        self._set_state(SessionState.DISCONNECTING)
        cancel = threading.Event()
        self._stop_cancel = cancel
        self._stop_worker = threading.Thread(
            target=self._run_stop_sequence,
            args=(steps, cancel),
            name="ringctl-stop-sequence",
            daemon=True,
        )
        self._stop_worker.start()

    def _run_stop_sequence(self, steps: list[tuple[str, float]], cancel: threading.Event) -> None:
        try:
            for command, delay in steps:
                with self._lock:
                    if cancel.is_set():
                        return
                    self._log(f"Stop sequence: sending {command}")
                    self.commands.send_now(self._frame(command))
                if cancel.wait(delay):
                    return
        finally:
            self._finish_stop_sequence(cancel)

    def _finish_stop_sequence(self, cancel: threading.Event) -> None:
        with self._lock:
            if cancel.is_set():
                return
            self._log("Stop sequence done -> disconnecting.")
            self.disconnect()

    def _cancel_stop_sequence(self) -> None:
        if self._stop_cancel is not None:
            self._stop_cancel.set()
            self._stop_cancel = None

    def _reset_session_state(self) -> None:
        self.subscriptions.clear()
        self.commands.clear()
        self._pending_command = None
        self._stop_requested = False
        self._stop_send_reboot = False
        self._stopping = False
        self._rssi_in_flight = False

    def _release(self, link: Link, *, disconnect: bool) -> None:
        calls = (link.disconnect, link.close) if disconnect else (link.close,)
        for call in calls:
            try:
                call()
            except Exception as exc:
                LOGGER.debug("Link %s failed: %s", call.__name__, exc)

    def _frame(self, command: str) -> OutboundFrame:
        reboot = self.profile.commands.reboot
        return OutboundFrame(
            payload=frame_codec.encode(command, reboot_command=reboot),
            command=frame_codec.normalize_hex(command),
            force_response=frame_codec.is_reboot(command, reboot_command=reboot),
        )

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        self._on_state(state.value)

    def _log(self, message: str) -> None:
        LOGGER.info(message)
        self._on_log(message)
