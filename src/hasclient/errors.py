from __future__ import annotations


class HasError(Exception):
    pass


class ConfigError(HasError):
    """Bad endpoint, bad settings, or no secure random source."""


class TransportError(HasError):
    """The socket could not be opened or written to."""


class ConflictError(HasError):
    """A pending operation of the same kind already exists."""


class RequestTimeoutError(HasError, TimeoutError):
    """No terminal frame arrived before the deadline."""


class RejectedError(HasError):
    """The approver explicitly rejected the request."""


class ProtocolError(HasError):
    """The relay reported an error or a payload could not be decrypted."""


class RequestCancelledError(HasError):
    """The pending operation was cancelled locally."""


class NotAuthenticatedError(HasError):
    """Signing was requested without a live session."""


class DecryptionError(HasError):
    """Ciphertext is malformed or was not produced with this secret."""
