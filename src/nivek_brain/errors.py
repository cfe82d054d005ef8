"""Error taxonomy for the conversational core.

None of these are process-fatal: the orchestrator degrades gracefully
(offline fallback replies, silent peripheral absence) instead of crashing.
"""


class CompanionError(Exception):
    """Base class for all conversational core errors."""


class TransportError(CompanionError):
    """Connection refused, closed mid-turn, or a malformed frame arrived."""


class MediaUnavailableError(CompanionError):
    """No capture device, missing permission, or missing audio backend."""


class RecognitionError(CompanionError):
    """The speech recognition service failed during a listening cycle."""


class MediaDecodeError(CompanionError):
    """An inbound audio payload could not be decoded."""


class SessionBusyError(CompanionError):
    """A session operation was requested while a turn is in flight."""


class ConversationNotFoundError(CompanionError, KeyError):
    """No stored conversation matches the requested id."""
