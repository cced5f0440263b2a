"""BLE GATT transport implementation on top of bleak.

bleak is asyncio-based while the session engine expects fire-and-forget
requests with completion callbacks, so the transport runs one event loop on
a daemon thread. That loop thread is the single callback thread: every
``LinkCallbacks`` method is invoked from it.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
from collections.abc import Callable, Coroutine
from typing import Any

from ringctl.core.errors import ScanUnavailableError, ServiceDiscoveryError, WriteNotAcceptedError
from ringctl.core.model import Channel, DiscoveredPeripheral
from ringctl.transports.base import GATT_FAILURE, GATT_SUCCESS, LinkCallbacks

LOGGER = logging.getLogger(__name__)


def _require_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise ScanUnavailableError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class _LoopThread:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._futures: set[concurrent.futures.Future[Any]] = set()

    def loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="ringctl-ble-loop",
                    daemon=True,
                )
                self._thread.start()
            return self._loop

    def submit(self, coro: Coroutine[Any, Any, None]) -> bool:
        try:
            future = asyncio.run_coroutine_threadsafe(coro, self.loop())
        except RuntimeError as exc:
            coro.close()
            LOGGER.debug("Event loop rejected request: %s", exc)
            return False
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return True

    def _forget(self, future: concurrent.futures.Future[Any]) -> None:
        with self._lock:
            self._futures.discard(future)

    def call_soon(self, callback: Callable[..., None], *args: Any) -> bool:
        try:
            self.loop().call_soon_threadsafe(callback, *args)
        except RuntimeError as exc:
            LOGGER.debug("Event loop rejected callback: %s", exc)
            return False
        return True

    def stop(self, timeout_s: float) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
            pending = list(self._futures)
        if loop is None or thread is None:
            return
        concurrent.futures.wait(pending, timeout=timeout_s)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout_s)
        if not thread.is_alive():
            loop.close()


class BleakLink:
    """One connection to a peripheral; reports connect and disconnect once each."""

    def __init__(self, transport: BleakTransport, address: str, callbacks: LinkCallbacks) -> None:
        self.address = address
        self._transport = transport
        self._callbacks = callbacks
        self._client: Any = None
        self._channels: dict[str, tuple[Channel, Any]] = {}
        self._closed = False
        self._disconnect_reported = False

    def __repr__(self) -> str:
        return f"BleakLink({self.address!r})"

    async def _connect(self) -> None:
        try:
            bleak = _require_bleak()
            self._client = bleak.BleakClient(self.address, disconnected_callback=self._handle_disconnected)
            await self._client.connect()
        except Exception as exc:
            LOGGER.warning("BLE connect failed for %s: %s", self.address, exc)
            self._report_disconnected(GATT_FAILURE)
            return

        if self._closed:
            await self._disconnect()
            return
        self._callbacks.on_connection_state_changed(self, True, GATT_SUCCESS)

    def _handle_disconnected(self, _client: Any) -> None:
        self._report_disconnected(GATT_SUCCESS)

    def _report_disconnected(self, status: int) -> None:
        if self._disconnect_reported:
            return
        self._disconnect_reported = True
        self._callbacks.on_connection_state_changed(self, False, status)

    def _submit(self, coro: Coroutine[Any, Any, None]) -> bool:
        if self._closed or self._client is None:
            coro.close()
            return False
        return self._transport._loop.submit(coro)

    def discover_services(self) -> bool:
        return self._submit(self._discover())

    async def _discover(self) -> None:
        status = GATT_SUCCESS
        try:
            for service in self._client.services:
                for char in service.characteristics:
                    uuid = char.uuid.lower()
                    if uuid in self._channels:
                        continue
                    properties = frozenset(prop.lower() for prop in char.properties)
                    self._channels[uuid] = (Channel(uuid=uuid, properties=properties), char)
            if not self._channels:
                raise ServiceDiscoveryError(f"No characteristics found on {self.address}")
        except Exception as exc:
            LOGGER.warning("Service discovery failed for %s: %s", self.address, exc)
            status = GATT_FAILURE
        self._callbacks.on_services_discovered(self, status)

    def find_channel(self, uuid: str) -> Channel | None:
        entry = self._channels.get(uuid.lower())
        return entry[0] if entry else None

    def _characteristic(self, channel: Channel) -> Any:
        entry = self._channels.get(channel.uuid)
        if entry is None:
            raise WriteNotAcceptedError(f"Unknown characteristic {channel.uuid}")
        return entry[1]

    def write_descriptor(self, channel: Channel, *, indicate: bool) -> bool:
        # The backend writes the CCCD itself and picks notify or indicate from
        # the characteristic properties.
        return self._submit(self._start_notify(channel))

    async def _start_notify(self, channel: Channel) -> None:
        def _notify_handler(_: Any, data: bytearray) -> None:
            self._callbacks.on_characteristic_changed(self, channel.uuid, bytes(data))

        status = GATT_SUCCESS
        try:
            await self._client.start_notify(self._characteristic(channel), _notify_handler)
        except Exception as exc:
            LOGGER.warning("Enabling notifications on %s failed: %s", channel.uuid, exc)
            status = GATT_FAILURE
        self._callbacks.on_descriptor_write(self, channel.uuid, status)

    def write_characteristic(self, channel: Channel, payload: bytes, *, response: bool) -> bool:
        return self._submit(self._write(channel, payload, response))

    async def _write(self, channel: Channel, payload: bytes, response: bool) -> None:
        status = GATT_SUCCESS
        try:
            await self._client.write_gatt_char(self._characteristic(channel), payload, response=response)
        except Exception as exc:
            LOGGER.warning("Write to %s failed: %s", channel.uuid, exc)
            status = GATT_FAILURE
        self._callbacks.on_characteristic_write(self, channel.uuid, status)

    def read_rssi(self) -> bool:
        # bleak has no portable RSSI read for a connected link; report the
        # latest advertisement RSSI seen for this address instead.
        if self._closed or self._client is None:
            return False
        sample = self._transport.advertised_rssi(self.address)
        if sample is None:
            return self._transport._loop.call_soon(self._callbacks.on_rssi_read, self, 0, GATT_FAILURE)
        rssi, age_s = sample
        LOGGER.info("RSSI %d dBm for %s is the last advertised value, %.1fs old", rssi, self.address, age_s)
        return self._transport._loop.call_soon(self._callbacks.on_rssi_read, self, rssi, GATT_SUCCESS)

    def disconnect(self) -> None:
        if self._client is not None:
            self._transport._loop.submit(self._disconnect())

    async def _disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except Exception as exc:
            LOGGER.debug("BLE disconnect for %s failed: %s", self.address, exc)

    def close(self) -> None:
        self._closed = True
        self._channels.clear()


class BleakTransport:
    """Scanner and link factory backed by bleak's BleakScanner/BleakClient."""

    def __init__(self) -> None:
        self._loop = _LoopThread()
        self._scanner: Any = None
        self._scan_wanted = False
        self._on_found: Callable[[DiscoveredPeripheral], None] | None = None
        self._last_rssi: dict[str, tuple[int, float]] = {}

    def advertised_rssi(self, address: str) -> tuple[int, float] | None:
        """Last advertisement RSSI seen for ``address`` and its age in seconds."""
        entry = self._last_rssi.get(address.upper())
        if entry is None:
            return None
        rssi, seen_at = entry
        return rssi, time.monotonic() - seen_at

    def start_scan(
        self,
        on_found: Callable[[DiscoveredPeripheral], None],
        on_failed: Callable[[str], None],
    ) -> None:
        bleak = _require_bleak()
        self._scan_wanted = True
        self._on_found = on_found
        if not self._loop.submit(self._start_scan(bleak, on_failed)):
            raise ScanUnavailableError("BLE event loop is not running")

    async def _start_scan(self, bleak: Any, on_failed: Callable[[str], None]) -> None:
        try:
            scanner = bleak.BleakScanner(detection_callback=self._detected)
            await scanner.start()
        except Exception as exc:
            LOGGER.warning("BLE scan failed to start: %s", exc)
            self._scan_wanted = False
            on_failed(str(exc))
            return

        self._scanner = scanner
        if not self._scan_wanted:
            await self._stop_scan()

    def _detected(self, device: Any, advertisement: Any) -> None:
        address = device.address.upper()
        rssi = advertisement.rssi
        self._last_rssi[address] = (rssi, time.monotonic())
        if not self._scan_wanted or self._on_found is None:
            return
        name = advertisement.local_name or device.name or ""
        self._on_found(DiscoveredPeripheral(address=address, name=name, rssi=rssi))

    def stop_scan(self) -> None:
        self._scan_wanted = False
        self._loop.submit(self._stop_scan())

    async def _stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except Exception as exc:
            LOGGER.debug("BLE scan stop failed: %s", exc)

    def connect(self, address: str, callbacks: LinkCallbacks) -> BleakLink:
        link = BleakLink(self, address, callbacks)
        if not self._loop.submit(link._connect()):
            self._loop.call_soon(link._report_disconnected, GATT_FAILURE)
        return link

    def shutdown(self, timeout_s: float = 2.0) -> None:
        """Let outstanding requests finish, then stop the event loop thread."""
        self._scan_wanted = False
        self._loop.submit(self._stop_scan())
        self._loop.stop(timeout_s)
