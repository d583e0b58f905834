"""Exceptions raised by the collator monitor."""


class CollatorMonitorError(Exception):
    """Base class for all monitor errors."""


class ConfigurationError(CollatorMonitorError):
    """Startup configuration is missing or invalid."""


class InvalidAddressError(CollatorMonitorError, ValueError):
    """A public key or address cannot be encoded for the target chain."""


class NodeUnavailableError(CollatorMonitorError):
    """The chain node could not be reached or the storage query failed."""


class IndexerQueryError(CollatorMonitorError):
    """The block indexer failed or returned an unexpected response."""


class EmptyCollatorSetError(CollatorMonitorError):
    """The node reported no collators, so no expected share can be computed."""


class NotifierDeliveryError(CollatorMonitorError):
    """The Slack webhook did not accept the message."""
