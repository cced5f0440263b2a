"""Scan trigger: throttled discovery diagnostics and target hand-off."""

from __future__ import annotations

import time
from collections.abc import Callable

from ringctl.core.device_match import is_target
from ringctl.core.model import DiscoveredPeripheral, TargetIdentity


class ScanTrigger:
    """Matches discovered peripherals against the target identity.

    The dedup table maps address to the last time a discovery line was logged
    for it; it only throttles diagnostics and plays no part in session state.
    """

    def __init__(
        self,
        target: TargetIdentity,
        *,
        on_log: Callable[[str], None],
        on_match: Callable[[DiscoveredPeripheral], None],
        log_throttle_s: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.target = target
        self._on_log = on_log
        self._on_match = on_match
        self._log_throttle_s = log_throttle_s
        self._clock = clock
        self._started_at = 0.0
        self._last_logged: dict[str, float] = {}
        self.unique_seen = 0

    def reset(self) -> None:
        self._started_at = self._clock()
        self._last_logged.clear()
        self.unique_seen = 0

    def on_peripheral_found(self, address: str, name: str, signal_strength: int) -> bool:
        """Record one discovery event; returns True when it matched the target."""
        now = self._clock()
        last = self._last_logged.get(address)
        if last is None:
            self.unique_seen += 1
        if last is None or now - last >= self._log_throttle_s:
            self._last_logged[address] = now
            self._on_log(
                f"scan t={now - self._started_at:.1f}s rssi={signal_strength:4d} "
                f"addr={address} name={name or '<no-name>'}"
            )

        peripheral = DiscoveredPeripheral(address=address, name=name, rssi=signal_strength)
        if not is_target(peripheral, self.target):
            return False

        self._on_log(f"Found TARGET: name={name} addr={address} rssi={signal_strength} (connecting)")
        self._on_match(peripheral)
        return True
