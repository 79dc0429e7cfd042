"""Error taxonomy surfaced by the engine and the vault."""


class EphemeraError(Exception):
    """Base class for all engine errors."""


class ValidationError(EphemeraError):
    """Malformed input. Rejected before any mutation."""


class Expired(EphemeraError):
    """A view-once message has already used up its opens."""


class AuthError(EphemeraError):
    """Vault credential mismatch."""


class NotFound(EphemeraError):
    """The message (or item) does not exist, or was already purged."""


class Unavailable(EphemeraError):
    """A storage or transport collaborator failed. Nothing was applied."""
