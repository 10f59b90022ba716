"""Custom exceptions for the harvester domain."""


class HarvesterError(Exception):
    """Base exception for this project."""


class ConfigError(HarvesterError):
    """Raised when runtime configuration is invalid."""


class TransientNavigationError(HarvesterError):
    """Raised when loading the search page fails in a way worth retrying."""


class ElementNotFoundError(HarvesterError):
    """Raised when a required page control cannot be located."""


class PersistenceError(HarvesterError):
    """Raised when a checkpoint or result file cannot be written or read."""


class DriverFatalError(HarvesterError):
    """Raised when the browser session itself is no longer usable."""
