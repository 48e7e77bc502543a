"""Error types raised by the storage layer."""


class StoreError(Exception):
    pass


class ConfigurationError(StoreError):
    """Required connection configuration is missing."""


class StoreConnectionError(StoreError):
    """The backend could not be reached, even after retries."""


class SerializationError(StoreError):
    """A payload could not be encoded or decoded."""


class ConversationNotFoundError(StoreError):
    """A message was created for a conversation that does not exist."""
