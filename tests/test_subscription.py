from __future__ import annotations

import pytest

from ringctl.core.model import Channel
from ringctl.core.subscription import SubscriptionQueue

A = "0000aaa1-0000-1000-8000-00805f9b34fb"
B = "0000aaa2-0000-1000-8000-00805f9b34fb"
C = "0000aaa3-0000-1000-8000-00805f9b34fb"
D = "0000aaa4-0000-1000-8000-00805f9b34fb"


def _channel(uuid: str, *props: str) -> Channel:
    return Channel(uuid=uuid, properties=frozenset(props))


class Harness:
    def __init__(self, link, notify_uuids: tuple[str, ...] = (A, B, C, D)) -> None:
        self.link = link
        self.logs: list[str] = []
        self.completions = 0
        self.queue = SubscriptionQueue(
            notify_uuids,
            link=lambda: self.link,
            on_log=self.logs.append,
            on_complete=self._complete,
        )

    def _complete(self) -> None:
        self.completions += 1

    def ack(self) -> None:
        self.queue.advance()


def test_missing_channels_are_skipped_with_diagnostic(make_link) -> None:
    link = make_link({A: _channel(A, "notify"), C: _channel(C, "notify")})
    harness = Harness(link)
    harness.queue.begin(link)

    assert any(line == f"Notify char not found: {B}" for line in harness.logs)
    assert any(line == f"Notify char not found: {D}" for line in harness.logs)
    assert "Queueing 2 notification enables..." in harness.logs


def test_one_descriptor_write_at_a_time(make_link) -> None:
    link = make_link({A: _channel(A, "notify"), B: _channel(B, "indicate")})
    harness = Harness(link)
    harness.queue.begin(link)

    assert link.descriptor_writes == [(A, False)]
    assert harness.queue.in_progress
    harness.ack()
    assert link.descriptor_writes == [(A, False), (B, True)]
    assert harness.completions == 0
    harness.ack()
    assert harness.completions == 1
    assert not harness.queue.in_progress


def test_notify_preferred_over_indicate(make_link) -> None:
    link = make_link({A: _channel(A, "notify", "indicate")})
    harness = Harness(link)
    harness.queue.begin(link)
    assert link.descriptor_writes == [(A, False)]


def test_channel_without_notify_or_indicate_is_skipped(make_link) -> None:
    link = make_link({A: _channel(A, "read", "write"), B: _channel(B, "notify")})
    harness = Harness(link)
    harness.queue.begin(link)

    assert link.descriptor_writes == [(B, False)]
    assert any(line.startswith(f"Skip enable (no notify/indicate): uuid={A} props=READ|WRITE") for line in harness.logs)


def test_refused_descriptor_write_does_not_stall(make_link) -> None:
    link = make_link(
        {A: _channel(A, "notify"), B: _channel(B, "notify")},
        refuse_descriptors=frozenset({A}),
    )
    harness = Harness(link)
    harness.queue.begin(link)

    assert link.descriptor_writes == [(B, False)]
    harness.ack()
    assert harness.completions == 1


def test_descriptor_write_exception_is_absorbed(make_link) -> None:
    class RaisingLink(make_link):
        def write_descriptor(self, channel, *, indicate):
            raise RuntimeError("gatt busy")

    link = RaisingLink({A: _channel(A, "notify")})
    harness = Harness(link)
    harness.queue.begin(link)
    assert harness.completions == 1


def test_no_channels_completes_immediately(make_link) -> None:
    link = make_link({})
    harness = Harness(link)
    harness.queue.begin(link)
    assert harness.completions == 1
    assert not harness.queue.in_progress


@pytest.mark.parametrize("capable", [0, 1, 2, 3, 4])
def test_exactly_capable_channels_get_descriptor_writes(make_link, capable: int) -> None:
    uuids = (A, B, C, D)
    channels = {
        uuid: _channel(uuid, "notify") if index < capable else _channel(uuid, "read")
        for index, uuid in enumerate(uuids)
    }
    link = make_link(channels)
    harness = Harness(link)
    harness.queue.begin(link)

    for _ in range(capable):
        assert harness.completions == 0
        harness.ack()

    assert len(link.descriptor_writes) == capable
    assert harness.completions == 1


def test_advance_after_clear_is_ignored(make_link) -> None:
    link = make_link({A: _channel(A, "notify"), B: _channel(B, "notify")})
    harness = Harness(link)
    harness.queue.begin(link)
    harness.queue.clear()
    harness.ack()
    assert link.descriptor_writes == [(A, False)]
    assert harness.completions == 0
    assert len(harness.queue) == 0
