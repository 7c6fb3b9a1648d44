"""Exception hierarchy shared by the memory, capture and generation layers."""


class VibeChatError(Exception):
    """Base class for every error the core raises on purpose."""


class StorageError(VibeChatError):
    """The backing store is unavailable, corrupt or unwritable."""


class ConstraintError(VibeChatError):
    """A write would violate a referential or value invariant."""


class CaptureError(VibeChatError):
    """A screen grab or capture write failed. Safe to retry."""


class LLMConnectionError(VibeChatError):
    """The model endpoint could not be reached or spoke an unexpected protocol."""


class NotReadyError(VibeChatError):
    """Generation was requested before the client finished initializing."""


class GenerationError(VibeChatError):
    """A generation call failed in transport, status, timeout or parsing."""
