class MessagingError(Exception):
    """Base class for errors raised by the messaging core."""


class ValidationError(MessagingError, ValueError):
    """Message content rejected before it reaches the store."""


class NotAuthorized(MessagingError, PermissionError):
    """Sender/receiver do not match the conversation's two participants."""


class ConversationNotFound(NotAuthorized):
    """No engagement exists for the conversation id."""


class TransientIOError(MessagingError):
    """Store or push channel unreachable; safe to retry."""


class InvalidSessionState(MessagingError):
    """Operation not allowed in the chat session's current state."""
