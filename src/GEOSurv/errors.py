"""
Error types for GEOSurv pipelines.

Every fatal failure carries the name of the pipeline stage that raised it so
the CLI can report where a run stopped.
"""


class GEOSurvError(RuntimeError):
    """Base class for fatal pipeline errors."""

    def __init__(self, message: str, stage: str = "unknown"):
        super().__init__(message)
        self.stage = stage


class ResolutionError(GEOSurvError):
    """Raised when an accession or query target cannot be resolved."""


class FetchError(GEOSurvError):
    """Raised when a network fetch or the metadata snapshot download fails."""


class WriteError(GEOSurvError):
    """Raised when the output file cannot be written."""
