"""Serialized command writes, exactly one outstanding at a time."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from ringctl.core.errors import WriteNotAcceptedError
from ringctl.core.model import OutboundFrame
from ringctl.transports.base import Link

LOGGER = logging.getLogger(__name__)


class CommandQueue:
    """FIFO of framed commands written to the first channel that accepts them.

    Not thread-safe: the session engine owns it and calls it under its lock.
    """

    def __init__(
        self,
        command_uuids: tuple[str, ...],
        *,
        link: Callable[[], Link | None],
        on_log: Callable[[str], None],
    ) -> None:
        self._command_uuids = command_uuids
        self._link = link
        self._on_log = on_log
        self._frames: deque[OutboundFrame] = deque()
        self.in_flight = False

    def __len__(self) -> int:
        return len(self._frames)

    def clear(self) -> None:
        self._frames.clear()
        self.in_flight = False

    def enqueue(self, frame: OutboundFrame) -> None:
        self._frames.append(frame)
        if not self.in_flight:
            self.kick()

    def send_now(self, frame: OutboundFrame) -> bool:
        """Write immediately, ahead of anything queued or in flight.

        Queued frames are discarded. Used by the stop sequence, which paces its
        own frames.
        """
        self._frames.clear()
        link = self._link()
        if link is None:
            return False
        try:
            self._write_first_accepting(link, frame)
        except WriteNotAcceptedError as exc:
            self._on_log(str(exc))
            return False
        self.in_flight = True
        return True

    def on_write_complete(self) -> None:
        self.in_flight = False
        self.kick()

    def kick(self) -> None:
        """Start the next write unless one is already outstanding."""
        while not self.in_flight:
            link = self._link()
            if link is None or not self._frames:
                return

            frame = self._frames.popleft()
            self.in_flight = True
            try:
                self._write_first_accepting(link, frame)
            except WriteNotAcceptedError as exc:
                self._on_log(str(exc))
                self.in_flight = False

    def _write_first_accepting(self, link: Link, frame: OutboundFrame) -> None:
        for uuid in self._command_uuids:
            channel = link.find_channel(uuid)
            if channel is None:
                continue
            if not channel.can_write:
                self._on_log(f"cmd uuid={uuid} not writable props={channel.describe_properties()}")
                continue

            response = frame.force_response or not channel.can_write_no_response
            try:
                started = link.write_characteristic(channel, frame.payload, response=response)
            except Exception as exc:
                LOGGER.debug("Characteristic write on %s raised: %s", uuid, exc)
                started = False
            write_type = "WITH_RESPONSE" if response else "NO_RESPONSE"
            self._on_log(f"cmd write try uuid={uuid} ok={started} writeType={write_type} hex={frame.command}")
            if started:
                return

        raise WriteNotAcceptedError(f"No command channel accepted write of {frame.command}; dropping frame")
