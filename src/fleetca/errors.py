"""
Error taxonomy of the certificate authority engine
"""

from typing import Optional


class FleetCAError(Exception):
    """Base class for every error raised by fleetca"""

    wrapped: Optional[BaseException] = None

    def wrap(self, exc: BaseException) -> "FleetCAError":
        """
        Keeps a reference to the lower level exception that caused this one

        Args:
            exc: Original exception

        Returns:
            FleetCAError: self, so it can be raised directly
        """
        self.wrapped = exc
        return self


class InvalidNameError(FleetCAError):
    """Certname is empty, malformed or not lowercase"""


class CryptoError(FleetCAError):
    """A key generation or signature operation failed"""


class ChainError(FleetCAError):
    """A key does not match the certificate or CRL it should belong to"""


class LedgerCorruptError(FleetCAError):
    """Serial or inventory content cannot be parsed"""


class ValidationError(FleetCAError):
    """
    Rejection raised (or collected) while validating an imported CA bundle

    Attributes:
        reason: Stable human readable reason
        detail: Optional raw offending content or path, for operator diagnosis
    """

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(reason if detail is None else f"{reason}:\n{detail}")

    def __eq__(self, other):
        if not isinstance(other, ValidationError):
            return NotImplemented
        return (self.reason, self.detail) == (other.reason, other.detail)

    def __hash__(self):
        return hash((self.reason, self.detail))


__all__ = [
    'FleetCAError',
    'InvalidNameError',
    'CryptoError',
    'ChainError',
    'LedgerCorruptError',
    'ValidationError',
]
