# backend/errors.py


class VoiceAgentError(Exception):
    """Base class for errors raised by the voice agent."""


class ConfigError(VoiceAgentError):
    """Required configuration is missing or malformed. Fatal at startup."""


class StorageError(VoiceAgentError):
    """An append-only sink could not be written or read."""


class GatewayError(VoiceAgentError):
    """The messaging provider rejected the message or could not be reached."""
