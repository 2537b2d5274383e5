class DataUnavailable(RuntimeError):
    """The review corpus could not be read or is corrupt."""


class ConfigurationError(ValueError):
    """The model or training setup is structurally invalid."""


class EmptyHistory(LookupError):
    """A report was requested before any epoch completed."""
