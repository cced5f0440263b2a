"""Target identity matching for discovered peripherals."""

from __future__ import annotations

from ringctl.core.model import DiscoveredPeripheral, TargetIdentity


def _address_match(address: str, target: TargetIdentity) -> bool:
    return address.upper() == target.address.upper()


def _name_match(name: str, target: TargetIdentity) -> bool:
    return bool(name) and name == target.name


def is_target(peripheral: DiscoveredPeripheral, target: TargetIdentity) -> bool:
    return _address_match(peripheral.address, target) or _name_match(peripheral.name, target)
