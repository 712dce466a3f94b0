"""Error types raised by the Z-Wave lock controller."""

from __future__ import annotations


class ZWaveLockError(Exception):
    """Base error for the Z-Wave lock controller."""


class ConfigError(ZWaveLockError):
    """Configuration is missing or invalid. Never retried."""


class NotReadyError(ZWaveLockError):
    """The driver connection is not ready."""


class ReadyTimeoutError(NotReadyError):
    """The driver did not become ready within the readiness timeout."""


class TransportError(ZWaveLockError):
    """The connection to the Z-Wave JS server failed or was lost."""


class NotFoundError(ZWaveLockError):
    """Unknown node or slot."""


class UnsupportedCommandClassError(NotFoundError):
    """The node does not support the command class an operation needs."""


class InvalidFormatError(ZWaveLockError):
    """Malformed PIN, slot, code length or stored secret."""


class UnreachableError(ZWaveLockError):
    """A device command failed: node asleep, out of range or not answering."""


class CommandRejectedError(ZWaveLockError):
    """The driver refused a device command: invalid argument or unsupported API."""
