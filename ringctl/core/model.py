"""Core data models used across the codec, queues, session engine, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PROPERTY_READ = "read"
PROPERTY_WRITE = "write"
PROPERTY_WRITE_NO_RESPONSE = "write-without-response"
PROPERTY_NOTIFY = "notify"
PROPERTY_INDICATE = "indicate"

_PROPERTY_LABELS = (
    (PROPERTY_READ, "READ"),
    (PROPERTY_WRITE, "WRITE"),
    (PROPERTY_WRITE_NO_RESPONSE, "WRITE_NR"),
    (PROPERTY_NOTIFY, "NOTIFY"),
    (PROPERTY_INDICATE, "INDICATE"),
)


class SessionState(str, Enum):
    IDLE = "Idle"
    SCANNING = "Scanning"
    CONNECTING = "Connecting"
    DISCOVERING = "Discovering services"
    SUBSCRIBING = "Subscribing"
    STREAMING = "Streaming"
    DISCONNECTING = "Disconnecting"
    DISCONNECTED = "Disconnected"


@dataclass(frozen=True)
class TargetIdentity:
    address: str
    name: str


@dataclass(frozen=True)
class CommandSet:
    start_raw: str
    stop_raw: str
    stop_camera: str
    reboot: str


@dataclass(frozen=True)
class StopTiming:
    step_delay_s: float = 0.2
    reboot_delay_s: float = 0.65


@dataclass(frozen=True)
class DeviceProfile:
    """Endpoint directory for one peripheral model.

    Candidate UUID order is priority order: the first present (or writable)
    channel wins.
    """

    id: str
    name: str
    target: TargetIdentity
    notify_uuids: tuple[str, ...]
    command_uuids: tuple[str, ...]
    commands: CommandSet
    stop_timing: StopTiming = StopTiming()
    scan_log_throttle_s: float = 1.5


@dataclass(frozen=True)
class DiscoveredPeripheral:
    address: str
    name: str
    rssi: int


@dataclass(frozen=True)
class Channel:
    uuid: str
    properties: frozenset[str]

    @property
    def can_notify(self) -> bool:
        return PROPERTY_NOTIFY in self.properties

    @property
    def can_indicate(self) -> bool:
        return PROPERTY_INDICATE in self.properties

    @property
    def can_write(self) -> bool:
        return PROPERTY_WRITE in self.properties or self.can_write_no_response

    @property
    def can_write_no_response(self) -> bool:
        return PROPERTY_WRITE_NO_RESPONSE in self.properties

    def describe_properties(self) -> str:
        return "|".join(label for prop, label in _PROPERTY_LABELS if prop in self.properties)


@dataclass(frozen=True)
class OutboundFrame:
    payload: bytes
    command: str
    force_response: bool = False
