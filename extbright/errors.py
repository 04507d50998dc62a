"""Error types shared by the protocol backends, enumeration and the store."""

from typing import Optional


class ExtBrightError(Exception):
    """Base class for all extbright errors."""


class ProtocolError(ExtBrightError):
    """A brightness command failed at the protocol level."""

    def __init__(self, message: str, display: Optional[str] = None):
        self.display = display
        if display:
            message = f"{display}: {message}"
        super().__init__(message)


class CommunicationError(ProtocolError):
    """Transient transport failure (I2C NACK, bad checksum, HID I/O error).

    Callers may retry; the DDC/CI backend already retries internally before
    raising this.
    """


class UnsupportedError(ProtocolError):
    """The device cannot perform the requested operation. Never retried."""


class EnumerationError(ExtBrightError):
    """A single device failed to probe during enumeration."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class CorrelationUnavailable(ExtBrightError):
    """The external output-naming service could not be reached."""


class DisplayNotFound(ExtBrightError):
    """No live handle is registered for the display id."""


class ConfigMigrationWarning(UserWarning):
    """Stored settings reference identities from an older id scheme."""
