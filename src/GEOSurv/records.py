"""
Record domain models.

Defines the SampleRecord and DatasetCatalogEntry dataclasses for the rows
written by the Clinical Extractor and the Survival Dataset Finder.
"""

import re
from dataclasses import dataclass, field

# Patterns
_GSM_PATTERN = re.compile(r"^GSM\d+$")
_GSE_PATTERN = re.compile(r"^GSE\d+$")
_GPL_PATTERN = re.compile(r"^GPL\d+$")

IDENTITY_COLUMNS = ("sample", "patient", "type")

CATALOG_COLUMNS = (
    "gse",
    "title",
    "type",
    "sample_count",
    "gpl",
    "gpl_title",
    "manufacturer",
)


@dataclass
class SampleRecord:
    """
    Represents one sample row of a clinical characteristics table.

    Attributes:
        sample: GSM accession (e.g. 'GSM773534').
        patient: Sample title as submitted to GEO.
        type: Sample type (usually 'RNA').
        attributes: Clinical attribute name → value, channel suffix removed.
    """

    sample: str
    patient: str
    type: str
    attributes: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not _GSM_PATTERN.match(self.sample):
            raise ValueError(f"Invalid sample accession: {self.sample!r}")


@dataclass
class DatasetCatalogEntry:
    """
    One (series, platform) pair from the survival dataset catalog.
    """

    gse: str
    title: str
    type: str
    sample_count: int
    gpl: str
    gpl_title: str
    manufacturer: str

    def __post_init__(self):
        if not _GSE_PATTERN.match(self.gse):
            raise ValueError(f"Invalid series accession: {self.gse!r}")
        if not _GPL_PATTERN.match(self.gpl):
            raise ValueError(f"Invalid platform accession: {self.gpl!r}")
        if isinstance(self.sample_count, bool) or not isinstance(self.sample_count, int):
            raise ValueError(
                f"sample_count must be an int, got {type(self.sample_count).__name__}"
            )
        if self.sample_count < 0:
            raise ValueError(f"sample_count must be non-negative, got {self.sample_count}")
