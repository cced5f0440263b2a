"""Read ringctl device profiles from YAML and turn them into ``DeviceProfile``."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import validators
from jsonschema.exceptions import best_match

from ringctl.core import frame
from ringctl.core.errors import InvalidCommandError, ProfileLoadError, ProfileValidationError
from ringctl.core.model import CommandSet, DeviceProfile, StopTiming, TargetIdentity

LOGGER = logging.getLogger(__name__)

DEFAULT_PROFILE = "r02_ring.yaml"
BLUETOOTH_BASE_UUID = "0000-1000-8000-00805f9b34fb"

_SHORT_UUID = re.compile(r"[0-9a-f]{4}|[0-9a-f]{8}")
_FULL_UUID = re.compile(r"[0-9a-f]{8}(-[0-9a-f]{4}){3}-[0-9a-f]{12}")
_YAML_BOOL_TAG = "tag:yaml.org,2002:bool"


class ProfileYamlLoader(yaml.SafeLoader):
    """Safe loader that refuses repeated keys and never produces booleans.

    Command hex such as ``0206`` and target names such as ``no`` or ``on`` must
    come through as plain strings.
    """

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        self.flatten_mapping(node)
        seen: set[Any] = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                line = key_node.start_mark.line + 1
                raise ProfileValidationError(f"Key '{key}' repeated at line {line}")
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


ProfileYamlLoader.yaml_implicit_resolvers = {
    first_char: [(tag, pattern) for tag, pattern in resolvers if tag != _YAML_BOOL_TAG]
    for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class LoadedProfile:
    profile: DeviceProfile
    source: str
    warnings: tuple[str, ...] = ()


@lru_cache(maxsize=1)
def _schema_validator() -> Any:
    schema_file = resources.files("ringctl.schemas") / "profile.schema.json"
    schema = json.loads(schema_file.read_text(encoding="utf-8"))
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _packaged_profile() -> Traversable:
    return resources.files("ringctl.profiles") / DEFAULT_PROFILE


def user_profile_path() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "ringctl" / "profile.yaml"


def _parse(source: Path | Traversable) -> dict[str, Any]:
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Cannot open profile {source}: {exc}") from exc

    try:
        doc = yaml.load(text, Loader=ProfileYamlLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"{source} is not valid YAML: {exc}") from exc

    if not isinstance(doc, dict):
        raise ProfileValidationError(f"{source}: top level must be a mapping")
    return doc


def expand_uuid(value: str, *, field: str) -> str:
    """Lower-case a UUID and widen 16/32-bit short forms onto the Bluetooth base."""
    text = value.strip().lower()
    if _FULL_UUID.fullmatch(text):
        return text
    if _SHORT_UUID.fullmatch(text):
        return f"{text.rjust(8, '0')}-{BLUETOOTH_BASE_UUID}"
    raise ProfileValidationError(f"{field}: '{value}' is not a 16-bit, 32-bit or 128-bit UUID")


def _uuid_order(values: list[str], *, field: str) -> tuple[str, ...]:
    ordered: list[str] = []
    for position, value in enumerate(values):
        uuid = expand_uuid(value, field=f"{field}[{position}]")
        if uuid in ordered:
            raise ProfileValidationError(f"{field}: {uuid} listed more than once")
        ordered.append(uuid)
    return tuple(ordered)


def _command_hex(value: str, *, field: str) -> str:
    try:
        frame.parse_command(value)
    except InvalidCommandError as exc:
        raise ProfileValidationError(f"{field}: {exc}") from exc
    return frame.normalize_hex(value)


def _to_profile(doc: dict[str, Any], source: Path | Traversable) -> DeviceProfile:
    error = best_match(_schema_validator().iter_errors(doc))
    if error is not None:
        location = "/".join(str(part) for part in error.path) or "<root>"
        raise ProfileValidationError(f"{source}: {location}: {error.message}")

    pid = doc["id"]
    target = doc["target"]
    timing = doc.get("stop_sequence", {})
    defaults = StopTiming()

    return DeviceProfile(
        id=pid,
        name=doc["name"],
        target=TargetIdentity(address=target["address"].strip().upper(), name=target["name"]),
        notify_uuids=_uuid_order(doc["notify_uuids"], field=f"{pid}.notify_uuids"),
        command_uuids=_uuid_order(doc["command_uuids"], field=f"{pid}.command_uuids"),
        commands=CommandSet(
            **{
                role: _command_hex(hex_string, field=f"{pid}.commands.{role}")
                for role, hex_string in doc["commands"].items()
            }
        ),
        stop_timing=StopTiming(
            step_delay_s=float(timing.get("step_delay_s", defaults.step_delay_s)),
            reboot_delay_s=float(timing.get("reboot_delay_s", defaults.reboot_delay_s)),
        ),
        scan_log_throttle_s=float(doc.get("scan", {}).get("log_throttle_s", 1.5)),
    )


def load_profile(path: Path | None = None) -> LoadedProfile:
    """Resolve and load the device profile.

    An explicit path wins, then ``$XDG_CONFIG_HOME/ringctl/profile.yaml``,
    then the profile shipped with the package. A user file that shadows the
    packaged one is reported in ``warnings``.
    """
    if path is not None:
        return LoadedProfile(profile=_to_profile(_parse(path), path), source=str(path))

    override = user_profile_path()
    if not override.is_file():
        return LoadedProfile(profile=default_profile(), source=str(_packaged_profile()))

    profile = _to_profile(_parse(override), override)
    message = f"Using {override} ('{profile.id}'); it overrides packaged profile '{DEFAULT_PROFILE}'"
    LOGGER.warning(message)
    return LoadedProfile(profile=profile, source=str(override), warnings=(message,))


def default_profile() -> DeviceProfile:
    packaged = _packaged_profile()
    return _to_profile(_parse(packaged), packaged)
