"""
GEOmetadb snapshot access.

High level
----------
GEOmetadb is a SQLite mirror of the NCBI GEO metadata (gse, gsm, gpl and their
membership tables). This module downloads the snapshot once, opens scoped
read-only connections to it, and builds every query with pypika so that no
caller-supplied text is ever spliced into SQL by hand.

Environment
-----------
GEOMETADB_URL   : Optional snapshot URL override
                  (default "https://gbnci.cancer.gov/geo/GEOmetadb.sqlite.gz")
GEOMETADB_PATH  : Optional local snapshot path (default "GEOmetadb.sqlite")
"""

from __future__ import annotations

import enum
import gzip
import logging
import os
import pathlib
import shutil
import sqlite3
import tempfile
import typing

from contextlib import contextmanager

import pandas as pd
import requests
from pypika import Criterion, CustomFunction, Query, Table
from pypika import functions as fn

from .errors import FetchError
from .keywords import SURVIVAL_TERMS
from .writer import publish

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# Module configuration
# ------------------------------------------------------------------------------

DEFAULT_METADB_URL = os.getenv(
    "GEOMETADB_URL", "https://gbnci.cancer.gov/geo/GEOmetadb.sqlite.gz"
)
DEFAULT_METADB_PATH = os.getenv("GEOMETADB_PATH", "GEOmetadb.sqlite")
HUMAN = "Homo sapiens"

_CHUNK_SIZE = 1 << 20

# SQLite INSTR(haystack, needle): 1-based position, 0 when absent
Instr = CustomFunction("INSTR", ["haystack", "needle"])

gsm = Table("gsm")
gse = Table("gse")
gpl = Table("gpl")
gse_gsm = Table("gse_gsm")
gse_gpl = Table("gse_gpl")


class OrganismScope(enum.Enum):
    """
    Where the `organism_ch1 = 'Homo sapiens'` restriction applies.

    LAST_TERM reproduces the historical query, where the restriction was ANDed
    onto the final survival term only (`... OR (pfi AND human)`), so non-human
    samples still pass through every other term. ALL restricts every match.
    """

    LAST_TERM = "last-term"
    ALL = "all"


# ------------------------------------------------------------------------------
# Snapshot retrieval
# ------------------------------------------------------------------------------


def ensure_metadb(
    path: typing.Union[str, os.PathLike] = DEFAULT_METADB_PATH,
    url: str = DEFAULT_METADB_URL,
    *,
    timeout: float = 60.0,
) -> pathlib.Path:
    """
    Return `path`, downloading and decompressing the snapshot first if it is absent.

    The archive is several gigabytes; it is streamed to a temporary file beside
    `path`, gunzipped into a second temporary file and renamed into place. Any
    failure removes the temporaries and raises FetchError. No retries.
    """
    target = pathlib.Path(path)
    if target.is_file():
        logger.debug(f"Using existing GEOmetadb snapshot at {target}")
        return target

    target.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Downloading GEOmetadb snapshot from {url}")
    gz_name = sqlite_name = None
    try:
        with tempfile.NamedTemporaryFile(dir=target.parent, suffix=".sqlite.gz", delete=False) as gz_tmp:
            gz_name = gz_tmp.name
            with requests.get(url, stream=True, timeout=timeout) as resp:
                resp.raise_for_status()
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    gz_tmp.write(chunk)

        with tempfile.NamedTemporaryFile(dir=target.parent, suffix=".sqlite", delete=False) as db_tmp:
            sqlite_name = db_tmp.name
            with gzip.open(gz_name, "rb") as src:
                shutil.copyfileobj(src, db_tmp, _CHUNK_SIZE)

        publish(sqlite_name, target)
        sqlite_name = None
    except (requests.RequestException, OSError, EOFError) as e:
        raise FetchError(f"GEOmetadb download from {url} failed: {e}", stage="download") from e
    finally:
        for leftover in (gz_name, sqlite_name):
            if leftover and os.path.exists(leftover):
                os.unlink(leftover)

    logger.info(f"Saved GEOmetadb snapshot to {target}")
    return target


@contextmanager
def metadb_connection(path: typing.Union[str, os.PathLike]) -> typing.Iterator[sqlite3.Connection]:
    """
    Open a read-only connection to the snapshot and close it on every exit path.
    """
    target = pathlib.Path(path)
    if not target.is_file():
        raise FetchError(f"GEOmetadb snapshot not found at {str(target)!r}", stage="connect")
    try:
        conn = sqlite3.connect(f"{target.resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise FetchError(f"Cannot open GEOmetadb snapshot {str(target)!r}: {e}", stage="connect") from e
    try:
        yield conn
    finally:
        conn.close()


# ------------------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------------------


def survival_criterion(
    scope: OrganismScope = OrganismScope.LAST_TERM,
    terms: typing.Sequence[str] = SURVIVAL_TERMS,
) -> Criterion:
    """
    Case-insensitive literal substring match of any survival term in characteristics_ch1.
    """
    haystack = fn.Lower(gsm.characteristics_ch1)
    matches = [Instr(haystack, term.lower()) > 0 for term in terms]
    human = gsm.organism_ch1 == HUMAN
    if scope is OrganismScope.ALL:
        return Criterion.any(matches) & human
    return Criterion.any(matches[:-1] + [matches[-1] & human])


def _read(conn: sqlite3.Connection, stmt, stage: str) -> pd.DataFrame:
    sql = str(stmt)
    logger.debug(f"[{stage}] {sql}")
    try:
        return pd.read_sql(sql, conn)
    except (sqlite3.Error, pd.errors.DatabaseError) as e:
        raise FetchError(f"GEOmetadb query failed: {e}", stage=stage) from e


def select_survival_samples(
    conn: sqlite3.Connection, scope: OrganismScope = OrganismScope.LAST_TERM
) -> pd.DataFrame:
    """
    All distinct GSM rows with survival annotations, `title` renamed to `sample_title`.
    """
    stmt = Query.from_(gsm).select("*").distinct().where(survival_criterion(scope))
    samples = _read(conn, stmt, "survival-samples")
    return samples.rename(columns={"title": "sample_title"})


def select_series(conn: sqlite3.Connection) -> pd.DataFrame:
    stmt = Query.from_(gse).select(gse.gse, gse.title, gse.type).distinct()
    return _read(conn, stmt, "series")


def select_platforms(conn: sqlite3.Connection) -> pd.DataFrame:
    stmt = Query.from_(gpl).select(gpl.gpl, gpl.title, gpl.manufacturer).distinct()
    return _read(conn, stmt, "platforms")


def select_series_samples(
    conn: sqlite3.Connection, scope: OrganismScope = OrganismScope.LAST_TERM
) -> pd.DataFrame:
    """
    gse_gsm pairs whose sample carries survival annotations.

    The restriction runs as a subquery so the full membership table (tens of
    millions of rows) never has to be loaded.
    """
    survival_gsms = Query.from_(gsm).select(gsm.gsm).where(survival_criterion(scope))
    stmt = (
        Query.from_(gse_gsm)
        .select(gse_gsm.gse, gse_gsm.gsm)
        .where(gse_gsm.gsm.isin(survival_gsms))
    )
    return _read(conn, stmt, "series-samples")


def select_series_platforms(conn: sqlite3.Connection) -> pd.DataFrame:
    stmt = Query.from_(gse_gpl).select(gse_gpl.gse, gse_gpl.gpl)
    return _read(conn, stmt, "series-platforms")
