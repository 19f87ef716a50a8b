class RelayRunError(Exception):
    """
    A common superclass for all
    exceptions regarding relayrun.
    """
    pass

class ConfigError(RelayRunError):
    """
    Raised when the process configuration is
    missing a required value or holds one that
    cannot be used.
    """
    pass

class MalformedEventError(RelayRunError, ValueError):
    """
    Raised when a decoded event object does not
    have the shape of a Nostr event.
    """
    pass

class UnknownLanguageError(RelayRunError, KeyError):
    """
    Raised when a language token is not present
    in the language table.
    """
    pass

class SigningKeyError(RelayRunError, ValueError):
    """
    Raised when a secret key cannot be used to
    sign events.
    """
    pass

# == Execution backend errors ==

class ExecutionBackendError(RelayRunError):
    """
    Raised when the remote execution backend
    cannot be reached or answers with something
    that is not an execution result.
    """
    pass

# == Relay errors ==

class RelayError(RelayRunError):
    """
    A common superclass for all exceptions
    involving relayrun.backends.nostr.NostrRelay.
    """
    pass

class RelayConnectionError(RelayError):
    """
    Raised when the relay connection is lost,
    refused, or used after being closed.
    """
    pass

class RelayPublishError(RelayError):
    """
    Raised when a relay rejects a published
    event, or does not acknowledge it in time.
    """
    pass
