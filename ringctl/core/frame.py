"""Command frame codec for 16-byte ring command frames.

Frame layout::

    +-----------------------------+----------+
    | Command bytes + zero fill   | Checksum |
    | bytes 0-14                  | byte 15  |
    +-----------------------------+----------+

- Checksum: unsigned 8-bit sum of bytes 0-14, modulo 256
- Reboot (``08``) uses a fixed layout instead: opcode at bytes 0 and 15,
  zeros elsewhere, no checksum
"""

from __future__ import annotations

import re

from ringctl.core.errors import InvalidCommandError

FRAME_SIZE = 16
MAX_COMMAND_BYTES = FRAME_SIZE - 1
REBOOT_COMMAND = "08"

_HEX_RE = re.compile(r"^[0-9A-F]*$")


def normalize_hex(command: str) -> str:
    """Strip spaces and hyphens and uppercase a hex command string."""
    return command.replace(" ", "").replace("-", "").strip().upper()


def parse_command(command: str) -> bytes:
    clean = normalize_hex(command)
    if not clean:
        raise InvalidCommandError("Command must not be empty")
    if not _HEX_RE.match(clean):
        raise InvalidCommandError(f"Command must contain only hex digits: {command!r}")
    if len(clean) % 2 != 0:
        raise InvalidCommandError(f"Command must have even-length hex: {command!r}")
    payload = bytes.fromhex(clean)
    if len(payload) > MAX_COMMAND_BYTES:
        raise InvalidCommandError(
            f"Command too long for {FRAME_SIZE}-byte frame: {command!r} ({len(payload)} bytes)"
        )
    return payload


def checksum(frame: bytes) -> int:
    return sum(frame[:MAX_COMMAND_BYTES]) & 0xFF


def verify_checksum(frame: bytes) -> bool:
    return len(frame) == FRAME_SIZE and frame[MAX_COMMAND_BYTES] == checksum(frame)


def reboot_frame(opcode: int = 0x08) -> bytes:
    frame = bytearray(FRAME_SIZE)
    frame[0] = opcode
    frame[FRAME_SIZE - 1] = opcode
    return bytes(frame)


def checksum_frame(command: str) -> bytes:
    """Build the general checksum frame without the reboot special case."""
    payload = parse_command(command)
    frame = bytearray(FRAME_SIZE)
    frame[: len(payload)] = payload
    frame[FRAME_SIZE - 1] = checksum(frame)
    return bytes(frame)


def encode(command: str, *, reboot_command: str = REBOOT_COMMAND) -> bytes:
    """Encode a hex command string into a 16-byte frame.

    Args:
        command: Hex string, case-insensitive; spaces and hyphens are ignored.
        reboot_command: Hex literal of the reboot command, which gets the
            fixed reboot layout instead of a checksum frame.

    Raises:
        InvalidCommandError: If the command is not valid hex or exceeds 15 bytes.
    """
    clean = normalize_hex(command)
    reboot = normalize_hex(reboot_command)
    if clean == reboot:
        return reboot_frame(parse_command(reboot)[0])
    return checksum_frame(clean)


def is_reboot(command: str, *, reboot_command: str = REBOOT_COMMAND) -> bool:
    return normalize_hex(command) == normalize_hex(reboot_command)


def format_frame(frame: bytes) -> str:
    return frame.hex(" ").upper()
