from ringctl.core.device_match import is_target
from ringctl.core.model import DiscoveredPeripheral, TargetIdentity

TARGET = TargetIdentity(address="30:35:47:33:DA:00", name="R02_DA00")


def test_address_match_is_case_insensitive() -> None:
    device = DiscoveredPeripheral(address="30:35:47:33:da:00", name="", rssi=-70)
    assert is_target(device, TARGET)


def test_name_match_alone_is_enough() -> None:
    device = DiscoveredPeripheral(address="11:22:33:44:55:66", name="R02_DA00", rssi=-70)
    assert is_target(device, TARGET)


def test_other_device_does_not_match() -> None:
    device = DiscoveredPeripheral(address="11:22:33:44:55:66", name="R02_FFFF", rssi=-70)
    assert not is_target(device, TARGET)


def test_empty_name_never_matches_by_name() -> None:
    target = TargetIdentity(address="30:35:47:33:DA:00", name="")
    device = DiscoveredPeripheral(address="11:22:33:44:55:66", name="", rssi=-70)
    assert not is_target(device, target)
