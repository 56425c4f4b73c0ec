"""
Errors - The Remedy exception hierarchy.

Only ConfigError and BrowserSessionError abort a repair pass. The rest are
recovered at a well-defined boundary (probe, pattern store read, AI call).
"""


class RemedyError(Exception):
    """Base class for every error raised by Remedy."""


class ConfigError(RemedyError):
    """Missing target URL, or a route/result file that cannot be loaded."""


class BrowserSessionError(RemedyError):
    """The browser session could not be opened."""


class DriverError(RemedyError):
    """
    A navigation or probe call failed.

    Raised by ProbeDriver implementations. The Selector Resolver catches it
    and marks the affected probe as unresolved.
    """

    def __init__(self, message: str, selector: str = ""):
        super().__init__(message)
        self.selector = selector


class PatternStoreCorruption(RemedyError):
    """The pattern store file exists but is not a readable JSON object."""


class LanguageModelUnavailable(RemedyError):
    """The language model timed out, failed, or has no credentials."""
