"""
Exceptions raised by Memory Bridge.

Every error derives from MemoryBridgeError so callers can catch the whole
family, while backend failures stay distinguishable: an AuthenticationError
means the configuration is wrong, a BackendUnavailableError may be retried.
"""


class MemoryBridgeError(Exception):
    """Base exception for all Memory Bridge errors."""


# === Validation ===

class ValidationError(MemoryBridgeError, ValueError):
    """Input that cannot be stored or queried as given."""


class EmptyContentError(ValidationError):
    """Content is empty after trimming."""


# === Configuration ===

class ConfigError(MemoryBridgeError):
    """Invalid or unreadable configuration."""


# === Backends ===

class BackendError(MemoryBridgeError):
    """Error reported by a storage backend."""


class BackendUnavailableError(BackendError):
    """Storage could not be opened or the remote store is unreachable."""


class BackendTimeoutError(BackendUnavailableError):
    """A backend operation did not complete within the configured timeout."""


class AuthenticationError(BackendError):
    """The remote store rejected the configured credentials."""


class NotFoundError(MemoryBridgeError):
    """Reserved for point lookups; empty query results are not errors."""
