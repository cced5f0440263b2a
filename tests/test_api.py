from __future__ import annotations

import pytest

from ringctl.api import Client

TARGET_ADDRESS = "30:35:47:33:DA:00"


class FakeTimer:
    def __init__(self, delay: float, function) -> None:
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True


@pytest.fixture
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture
def client(transport, profile, timers) -> Client:
    def _factory(delay, function):
        timer = FakeTimer(delay, function)
        timers.append(timer)
        return timer

    return Client(transport=transport, profile=profile, timer_factory=_factory)


def _open_link(client: Client, transport):
    client.engine.on_peripheral_found(TARGET_ADDRESS, "", -60)
    link = transport.links[-1]
    client.engine.on_connection_state_changed(link, True, 0)
    return link


def test_connect_starts_scanning(client: Client, transport) -> None:
    client.connect()
    assert client.state == "Scanning"
    assert transport.scans == 1


def test_link_loss_schedules_retry(client: Client, transport, timers) -> None:
    client.connect()
    link = _open_link(client, transport)
    client.engine.on_connection_state_changed(link, False, 8)

    assert client.state == "Disconnected"
    assert timers[-1].started
    assert timers[-1].delay == 1.5
    assert all(timer.cancelled for timer in timers[:-1])

    timers[-1].function()
    assert transport.scans == 2
    assert client.state == "Scanning"


def test_discovery_failure_schedules_retry(client: Client, transport, timers) -> None:
    client.connect()
    link = _open_link(client, transport)
    scheduled = len(timers)
    client.engine.on_services_discovered(link, 129)
    assert client.state == "Idle"
    assert len(timers) == scheduled + 1


def test_retry_is_noop_once_reconnecting(client: Client, transport, timers) -> None:
    client.connect()
    timers[-1].function()
    assert transport.scans == 1


def test_close_disables_retry(client: Client, transport, timers) -> None:
    client.connect()
    scheduled = len(timers)
    client.close(send_reboot=True)

    assert client.state == "Disconnected"
    assert not client.auto_retry
    assert len(timers) == scheduled
    assert timers[-1].cancelled


def test_retry_disabled_by_option(transport, profile, timers) -> None:
    client = Client(transport=transport, profile=profile, auto_retry=False, timer_factory=lambda d, f: timers.append(f))
    client.connect()
    assert timers == []


def test_wait_for_state(client: Client) -> None:
    client.connect()
    assert client.wait_for_state("Scanning", timeout=0.1)
    assert not client.wait_for_state("Streaming", timeout=0.05)


def test_hooks_receive_state_and_bytes(transport, profile) -> None:
    states: list[str] = []
    received: list[bytes] = []
    client = Client(
        transport=transport,
        profile=profile,
        auto_retry=False,
        on_state=states.append,
        on_bytes=lambda uuid, payload: received.append(payload),
    )
    client.connect()
    link = _open_link(client, transport)
    client.engine.on_characteristic_changed(link, "6e400003-b5a3-f393-e0a9-e50e24dcca9e", b"\x00\x03")
    assert states[:2] == ["Disconnected", "Scanning"]
    assert received == [b"\x00\x03"]


def test_disconnect_skips_stop_frames_and_retry(client: Client, transport, timers) -> None:
    client.connect()
    link = _open_link(client, transport)
    scheduled = len(timers)
    client.disconnect()
    assert link.disconnected and link.closed
    assert link.writes == []
    assert client.state == "Disconnected"
    assert len(timers) == scheduled
