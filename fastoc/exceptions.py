"""Exception types raised by fastoc."""


class FastOCError(Exception):
    """Base class for all fastoc errors."""


class InvalidInput(FastOCError, ValueError):
    """Input has the wrong shape, type or value range."""


class ConfigurationError(FastOCError, ValueError):
    """Parameters are inconsistent with each other or with the data."""


class NotFound(FastOCError, KeyError):
    """A species or gene is not present in the catalog."""

    def __str__(self):
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class StageNotRun(FastOCError, RuntimeError):
    """A result was requested before the pipeline stage producing it ran."""
