"""Error types raised inside the relay."""


class RelayError(Exception):
    """Base class for all hr-relay errors."""


class DecodeError(RelayError, ValueError):
    """Notification bytes could not be decoded; the reading is skipped."""


class AdaptorError(RelayError):
    """No adaptor could be resolved for a connected device."""


class NoCompatibleAdaptor(AdaptorError):
    pass


class UnknownAdaptor(AdaptorError):
    pass


class LinkError(RelayError):
    """Connecting to, or talking with, a peripheral failed."""


class LinkTimeout(LinkError):
    pass


class PairingRejected(LinkError):
    pass


class RadioUnavailable(RelayError):
    """The Bluetooth adapter is missing or turned off. Fatal."""


class LogWriteFailure(RelayError):
    """The durable log could not store a reading."""


class SubscriptionClosed(RelayError):
    """The subscription was removed from the hub."""
