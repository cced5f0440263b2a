"""Transport interfaces.

Every request method returns immediately with whether the request was
started; its outcome arrives later through the matching ``LinkCallbacks``
method on the transport's callback thread. Status ``0`` means success.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from ringctl.core.model import Channel, DiscoveredPeripheral

GATT_SUCCESS = 0
GATT_FAILURE = 1


class Link(Protocol):
    def discover_services(self) -> bool:
        """Start service discovery; completes via ``on_services_discovered``."""

    def find_channel(self, uuid: str) -> Channel | None:
        """Return the discovered characteristic with this UUID, if any."""

    def write_descriptor(self, channel: Channel, *, indicate: bool) -> bool:
        """Start enabling notify (or indicate) delivery on a channel."""

    def write_characteristic(self, channel: Channel, payload: bytes, *, response: bool) -> bool:
        """Start a characteristic write; completes via ``on_characteristic_write``."""

    def read_rssi(self) -> bool:
        """Start a signal-strength read; completes via ``on_rssi_read``."""

    def disconnect(self) -> None: ...

    def close(self) -> None: ...


class LinkCallbacks(Protocol):
    def on_connection_state_changed(self, link: Link, connected: bool, status: int) -> None: ...

    def on_services_discovered(self, link: Link, status: int) -> None: ...

    def on_descriptor_write(self, link: Link, uuid: str, status: int) -> None: ...

    def on_characteristic_write(self, link: Link, uuid: str, status: int) -> None: ...

    def on_characteristic_changed(self, link: Link, uuid: str, payload: bytes) -> None: ...

    def on_rssi_read(self, link: Link, rssi: int, status: int) -> None: ...


class Transport(Protocol):
    def start_scan(
        self,
        on_found: Callable[[DiscoveredPeripheral], None],
        on_failed: Callable[[str], None],
    ) -> None:
        """Start scanning; raises ScanUnavailableError when scanning is impossible."""

    def stop_scan(self) -> None: ...

    def connect(self, address: str, callbacks: LinkCallbacks) -> Link:
        """Open a link; the outcome arrives via ``on_connection_state_changed``."""
