"""Serialized notification enabling, one descriptor write at a time."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from ringctl.core.errors import ChannelNotFoundError
from ringctl.core.model import Channel
from ringctl.transports.base import Link

LOGGER = logging.getLogger(__name__)


class SubscriptionQueue:
    """Enables delivery on every notify-capable candidate channel.

    Not thread-safe: the session engine owns it and calls it under its lock.
    ``in_progress``, not queue emptiness, says whether subscribing is running.
    """

    def __init__(
        self,
        notify_uuids: tuple[str, ...],
        *,
        link: Callable[[], Link | None],
        on_log: Callable[[str], None],
        on_complete: Callable[[], None],
    ) -> None:
        self._notify_uuids = notify_uuids
        self._link = link
        self._on_log = on_log
        self._on_complete = on_complete
        self._pending: deque[Channel] = deque()
        self.in_progress = False

    def __len__(self) -> int:
        return len(self._pending)

    def clear(self) -> None:
        self._pending.clear()
        self.in_progress = False

    def begin(self, link: Link) -> None:
        self._pending.clear()
        self.in_progress = True

        for uuid in self._notify_uuids:
            channel = link.find_channel(uuid)
            if channel is None:
                self._on_log(str(ChannelNotFoundError(f"Notify char not found: {uuid}")))
                continue
            self._pending.append(channel)

        self._on_log(f"Queueing {len(self._pending)} notification enables...")
        self.advance()

    def advance(self) -> None:
        """Issue the next descriptor write, skipping channels that cannot take one."""
        while self.in_progress:
            if not self._pending:
                self.in_progress = False
                self._on_log("All notifications enabled (queue empty).")
                self._on_complete()
                return

            channel = self._pending.popleft()
            props = channel.describe_properties()
            if not channel.can_notify and not channel.can_indicate:
                self._on_log(f"Skip enable (no notify/indicate): uuid={channel.uuid} props={props}")
                continue

            indicate = channel.can_indicate and not channel.can_notify
            started = self._write_descriptor(channel, indicate=indicate)
            mode = "INDICATE" if indicate else "NOTIFY"
            self._on_log(f"Enable step uuid={channel.uuid} ok={started} mode={mode} props={props}")
            if started:
                return

    def _write_descriptor(self, channel: Channel, *, indicate: bool) -> bool:
        link = self._link()
        if link is None:
            return False
        try:
            return link.write_descriptor(channel, indicate=indicate)
        except Exception as exc:
            LOGGER.debug("Descriptor write on %s raised: %s", channel.uuid, exc)
            return False
