"""
Clinical Extractor.

Fetches a GEO Series with GEOparse, lays its sample metadata out as a
GEOquery-style phenotype matrix (one `<name>:ch<N>` column per sample
characteristic), and normalizes the `:ch1` columns into a sample-by-attribute
table written as `<output>.tsv`.
"""

import logging
import os
import pathlib
import re
import typing

import GEOparse
import pandas as pd

from collections import OrderedDict
from stairval.notepad import Notepad

from .errors import FetchError, ResolutionError
from .records import IDENTITY_COLUMNS, SampleRecord
from .writer import tsv_path, write_tsv

logger = logging.getLogger(__name__)

CLINICAL_MARKER = ":ch1"
DEFAULT_CACHE_DIR = os.getenv("GEOSURV_CACHE_DIR", "geo_cache")

_SERIES_ACCESSION = re.compile(r"^GSE\d+$")
_CHARACTERISTICS_KEY = re.compile(r"^characteristics_ch(?P<channel>\d+)$")

# identity column → source column in the phenotype matrix
IDENTITY_SOURCES = OrderedDict(
    [("sample", "geo_accession"), ("patient", "title"), ("type", "type")]
)


def fetch_series(accession: str, destdir: typing.Union[str, os.PathLike] = DEFAULT_CACHE_DIR):
    """
    Download and parse one GEO Series. No retries.

    The family SOFT file lists the samples of every platform in the series, so
    a multi-platform series yields all of its samples, not only those of the
    first platform's series matrix.

    Raises ResolutionError when the accession is malformed or unknown to GEO, and
    FetchError for any other network or file failure.
    """
    if not _SERIES_ACCESSION.match(accession):
        raise ResolutionError(
            f"{accession!r} is not a GEO Series accession (expected GSE followed by digits)",
            stage="fetch",
        )
    pathlib.Path(destdir).mkdir(parents=True, exist_ok=True)
    logger.info(f"Fetching {accession} into {destdir}")
    try:
        return GEOparse.get_GEO(geo=accession, destdir=str(destdir), silent=True)
    except ValueError as e:
        raise ResolutionError(f"GEO could not resolve {accession}: {e}", stage="fetch") from e
    except OSError as e:
        if _is_not_found(e):
            raise ResolutionError(f"{accession} was not found on GEO: {e}", stage="fetch") from e
        raise FetchError(f"Failed to fetch {accession}: {e}", stage="fetch") from e


def _is_not_found(exc: OSError) -> bool:
    # urllib's HTTPError exposes `code`; requests errors carry a `response`
    code = getattr(exc, "code", None)
    response = getattr(exc, "response", None)
    if response is not None:
        code = getattr(response, "status_code", code)
    return code == 404


def split_characteristic(entry: str) -> typing.Optional[typing.Tuple[str, str]]:
    """
    Split a `key: value` characteristic; entries without a colon yield None.
    """
    if ":" not in entry:
        return None
    key, value = entry.split(":", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip()


def build_phenotype_matrix(gse) -> pd.DataFrame:
    """
    Lay out every GSM of `gse` as one row of a phenotype matrix.

    Plain metadata keys become columns of the same name (multiple values joined
    with "; "). Characteristics become `<name>:ch<N>` columns, mirroring the
    GEOquery phenoData layout the clinical marker is defined against.
    """
    rows: dict[str, dict[str, str]] = OrderedDict()
    for gsm_name, gsm in gse.gsms.items():
        row: dict[str, str] = {}
        for key, values in gsm.metadata.items():
            m = _CHARACTERISTICS_KEY.match(key)
            if not m:
                row[key] = "; ".join(str(v) for v in values)
                continue
            suffix = f":ch{m.group('channel')}"
            for entry in values:
                parsed = split_characteristic(str(entry))
                if parsed is None:
                    continue
                name, value = parsed
                column = name + suffix
                row[column] = f"{row[column]}; {value}" if column in row else value
        rows[gsm_name] = row

    # list-of-dicts keeps sample order and first-seen column order
    matrix = pd.DataFrame(list(rows.values()), index=list(rows.keys()))
    logger.debug(f"Phenotype matrix: {matrix.shape[0]} samples x {matrix.shape[1]} columns")
    return matrix


def normalize_clinical_attributes(
    pheno: pd.DataFrame, notepad: Notepad, marker: str = CLINICAL_MARKER
) -> pd.DataFrame:
    """
    Reduce a phenotype matrix to `sample`, `patient`, `type` and its clinical columns.

    - Only columns containing `marker` are kept, with the marker stripped.
    - If two columns strip to the same name, the last one wins.
    - Row order is preserved.
    """
    missing = [src for src in IDENTITY_SOURCES.values() if src not in pheno.columns]
    if missing:
        raise ResolutionError(
            f"Phenotype data lacks identifying column(s): {', '.join(missing)}",
            stage="normalize",
        )

    clinical: dict[str, pd.Series] = OrderedDict()
    for column in pheno.columns:
        if marker not in str(column):
            continue
        name = str(column).replace(marker, "")
        if name in clinical:
            notepad.add_warning(f"Attribute {name!r}: column {column!r} overrides an earlier column")
            del clinical[name]
        if name in IDENTITY_SOURCES:
            notepad.add_warning(
                f"Attribute {name!r} shares its name with an identifying column; kept after it"
            )
        clinical[name] = pheno[column]

    if not clinical:
        notepad.add_warning(f"No columns carry the clinical marker {marker!r}; only identifiers written")

    identity = pd.DataFrame(
        {target: pheno[source] for target, source in IDENTITY_SOURCES.items()},
        index=pheno.index,
    )
    attributes = pd.DataFrame(clinical, index=pheno.index)
    return pd.concat([identity, attributes], axis=1).reset_index(drop=True)


def sample_records(table: pd.DataFrame, notepad: Notepad) -> list[SampleRecord]:
    """Convert a normalized clinical table into SampleRecord objects, noting rows that fail validation."""
    records: list[SampleRecord] = []
    attribute_positions = range(len(IDENTITY_COLUMNS), table.shape[1])
    for values in table.itertuples(index=False, name=None):
        attributes = {
            str(table.columns[i]): values[i]
            for i in attribute_positions
            if not pd.isna(values[i])
        }
        try:
            records.append(
                SampleRecord(
                    sample=str(values[0]),
                    patient=str(values[1]),
                    type=str(values[2]),
                    attributes=attributes,
                )
            )
        except ValueError as e:
            notepad.add_warning(str(e))
    return records


def extract_clinical_data(
    accession: str,
    output: typing.Optional[str],
    notepad: Notepad,
    destdir: typing.Union[str, os.PathLike] = DEFAULT_CACHE_DIR,
) -> typing.Tuple[pathlib.Path, list[SampleRecord]]:
    """
    Fetch `accession`, normalize its clinical attributes and write `<output>.tsv`.

    `output` defaults to the accession itself. Returns the written path and the
    validated sample records.
    """
    gse = fetch_series(accession, destdir)
    pheno = build_phenotype_matrix(gse)
    if pheno.empty:
        notepad.add_warning(f"{accession} lists no samples")
        pheno = pd.DataFrame(columns=list(IDENTITY_SOURCES.values()))
    elif "platform_id" in pheno.columns and pheno["platform_id"].nunique() > 1:
        platforms = ", ".join(sorted(pheno["platform_id"].dropna().unique()))
        notepad.add_warning(f"{accession} spans several platforms ({platforms}); samples from all of them are written")
    table = normalize_clinical_attributes(pheno, notepad)
    logger.info(f"{accession}: {len(table)} samples, {table.shape[1] - len(IDENTITY_COLUMNS)} clinical attributes")
    path = write_tsv(table, tsv_path(output or accession), quote_all=False)
    return path, sample_records(table, notepad)
