"""Error taxonomy for the daemon core."""


class TidingsError(Exception):
    """Base class for all daemon errors."""


class ProtocolError(TidingsError):
    """Malformed request on the notification protocol. Answered per call."""


class NotFound(TidingsError):
    """Operation referenced an unknown notification id."""


class ConfigError(TidingsError):
    """Configuration could not be read, parsed or validated."""

    def __init__(self, message: str, key: str = ""):
        self.key = key
        super().__init__(f"{key}: {message}" if key else message)


class WatcherError(TidingsError):
    """External status command could not be started."""


class CacheComputeError(TidingsError):
    """Decoding an icon or theme asset failed."""


class StartupError(TidingsError):
    """Unrecoverable failure while bringing the daemon up."""
