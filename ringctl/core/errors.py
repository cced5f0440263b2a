"""Domain-specific errors for ringctl."""


class RingctlError(Exception):
    """Base error for ringctl."""


class ProfileValidationError(RingctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(RingctlError):
    """Raised when reading a profile source fails."""


class InvalidCommandError(RingctlError):
    """Raised when a command is not valid hex or does not fit a frame."""


class ScanUnavailableError(RingctlError):
    """Raised when the host has no scanning capability."""


class LinkLostError(RingctlError):
    """Raised on an unexpected disconnect of the peripheral link."""


class ServiceDiscoveryError(RingctlError):
    """Raised when service discovery on the peripheral fails."""


class ChannelNotFoundError(RingctlError):
    """Raised when an expected characteristic is absent from the peripheral."""


class WriteNotAcceptedError(RingctlError):
    """Raised when the transport refuses to start a write."""
