from __future__ import annotations

import dataclasses
from collections.abc import Callable

import pytest

from ringctl.core.errors import ScanUnavailableError
from ringctl.core.model import Channel, DeviceProfile, StopTiming
from ringctl.core.profile_loader import default_profile
from ringctl.core.session import SessionEngine

NUS_TX = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"
NUS_RX = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"
VENDOR_NOTIFY = "de5bf729-d711-4e47-af26-65e3012a5dc7"
VENDOR_WRITE = "de5bf72a-d711-4e47-af26-65e3012a5dc7"
FEA1 = "0000fea1-0000-1000-8000-00805f9b34fb"
FEA2 = "0000fea2-0000-1000-8000-00805f9b34fb"
TARGET_ADDRESS = "30:35:47:33:DA:00"


def channel(uuid: str, *props: str) -> Channel:
    return Channel(uuid=uuid, properties=frozenset(props))


def ring_channels() -> dict[str, Channel]:
    """Four notify candidates, two of which can notify."""
    return {
        NUS_TX: channel(NUS_TX, "notify"),
        VENDOR_NOTIFY: channel(VENDOR_NOTIFY, "read"),
        FEA1: channel(FEA1, "notify", "indicate"),
        FEA2: channel(FEA2, "read", "write"),
        NUS_RX: channel(NUS_RX, "write", "write-without-response"),
        VENDOR_WRITE: channel(VENDOR_WRITE, "write"),
    }


class FakeLink:
    def __init__(
        self,
        channels: dict[str, Channel] | None = None,
        *,
        refuse_descriptors: frozenset[str] = frozenset(),
        refuse_writes: frozenset[str] = frozenset(),
        discover_ok: bool = True,
    ) -> None:
        self.channels = ring_channels() if channels is None else channels
        self.refuse_descriptors = refuse_descriptors
        self.refuse_writes = refuse_writes
        self.discover_ok = discover_ok
        self.address = ""
        self.descriptor_writes: list[tuple[str, bool]] = []
        self.writes: list[tuple[str, bytes, bool]] = []
        self.rssi_reads = 0
        self.disconnected = False
        self.closed = False

    def discover_services(self) -> bool:
        return self.discover_ok

    def find_channel(self, uuid: str) -> Channel | None:
        return self.channels.get(uuid)

    def write_descriptor(self, channel: Channel, *, indicate: bool) -> bool:
        if channel.uuid in self.refuse_descriptors:
            return False
        self.descriptor_writes.append((channel.uuid, indicate))
        return True

    def write_characteristic(self, channel: Channel, payload: bytes, *, response: bool) -> bool:
        if channel.uuid in self.refuse_writes:
            return False
        self.writes.append((channel.uuid, payload, response))
        return True

    def read_rssi(self) -> bool:
        self.rssi_reads += 1
        return True

    def disconnect(self) -> None:
        self.disconnected = True

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    def __init__(self, *, scan_available: bool = True) -> None:
        self.scan_available = scan_available
        self.scans = 0
        self.scan_stops = 0
        self.next_link: FakeLink | None = None
        self.links: list[FakeLink] = []
        self.on_found: Callable | None = None
        self.on_failed: Callable | None = None

    def start_scan(self, on_found: Callable, on_failed: Callable) -> None:
        if not self.scan_available:
            raise ScanUnavailableError("no adapter")
        self.scans += 1
        self.on_found = on_found
        self.on_failed = on_failed

    def stop_scan(self) -> None:
        self.scan_stops += 1

    def connect(self, address: str, callbacks: object) -> FakeLink:
        link = self.next_link or FakeLink()
        self.next_link = None
        link.address = address
        self.links.append(link)
        return link


class Recorder:
    def __init__(self) -> None:
        self.logs: list[str] = []
        self.states: list[str] = []
        self.received: list[tuple[str, bytes]] = []
        self.rssi: list[int] = []

    def on_bytes(self, uuid: str, payload: bytes) -> None:
        self.received.append((uuid, payload))


@pytest.fixture
def profile() -> DeviceProfile:
    return dataclasses.replace(default_profile(), stop_timing=StopTiming(step_delay_s=0.0, reboot_delay_s=0.0))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def engine(transport: FakeTransport, profile: DeviceProfile, recorder: Recorder) -> SessionEngine:
    return SessionEngine(
        transport,
        profile,
        on_log=recorder.logs.append,
        on_bytes=recorder.on_bytes,
        on_state=recorder.states.append,
        on_signal_strength=recorder.rssi.append,
    )


@pytest.fixture
def connect(engine: SessionEngine, transport: FakeTransport) -> Callable[..., FakeLink]:
    """Drive the engine from scan to services discovered; returns the link."""

    def _connect(link: FakeLink | None = None) -> FakeLink:
        transport.next_link = link
        engine.start_connect_flow()
        engine.on_peripheral_found(TARGET_ADDRESS, "", -60)
        current = transport.links[-1]
        engine.on_connection_state_changed(current, True, 0)
        engine.on_services_discovered(current, 0)
        return current

    return _connect


@pytest.fixture
def complete_writes(engine: SessionEngine) -> Callable[[FakeLink], None]:
    """Acknowledge every outstanding command write until the queue is idle."""

    def _complete(link: FakeLink) -> None:
        acknowledged = 0
        while engine.commands.in_flight and engine.link is link:
            engine.on_characteristic_write(link, link.writes[-1][0], 0)
            acknowledged += 1
            assert acknowledged < 50

    return _complete


@pytest.fixture
def complete_descriptors(engine: SessionEngine) -> Callable[[FakeLink], None]:
    def _complete(link: FakeLink) -> None:
        acknowledged = 0
        while engine.is_subscribing and engine.link is link:
            engine.on_descriptor_write(link, link.descriptor_writes[-1][0], 0)
            acknowledged += 1
            assert acknowledged < 50

    return _complete


@pytest.fixture
def make_link() -> type[FakeLink]:
    return FakeLink
