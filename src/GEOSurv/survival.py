"""
Survival Dataset Finder.

Walks GEOmetadb from survival-annotated samples up to the series that contain
them, keeps series with enough such samples, joins in their platforms and
narrows the result to expression assays whose title names the cancer of
interest.
"""

import logging
import os
import pathlib
import sqlite3
import typing

import pandas as pd

from stairval.notepad import Notepad

from . import metadb
from .keywords import EXPRESSION_ASSAY_TYPES, KeywordMatcher
from .metadb import OrganismScope
from .records import CATALOG_COLUMNS, DatasetCatalogEntry
from .writer import tsv_path, write_tsv

logger = logging.getLogger(__name__)

MIN_SURVIVAL_SAMPLES = 50


def _note_if_empty(df: pd.DataFrame, stage: str, notepad: Notepad) -> pd.DataFrame:
    if df.empty:
        notepad.add_warning(f"Stage {stage!r} returned no rows; the catalog will be empty")
    else:
        logger.info(f"[{stage}] {len(df)} rows")
    return df


def count_series_samples(
    series_samples: pd.DataFrame,
    survival_samples: pd.DataFrame,
    series: pd.DataFrame,
    min_samples: int = MIN_SURVIVAL_SAMPLES,
) -> pd.DataFrame:
    """
    Count survival-annotated samples per series and keep series with at least `min_samples`.

    Pairs whose series is missing from `series` are dropped before counting.
    Result columns: gse, sample_count; sorted by count descending, ties by accession.
    """
    pairs = series_samples[series_samples["gsm"].isin(survival_samples["gsm"])]
    pairs = pairs.merge(series[["gse"]].drop_duplicates(), on="gse", how="inner")
    counts = (
        pairs.groupby("gse", sort=True)
        .size()
        .rename("sample_count")
        .reset_index()
        .sort_values("sample_count", ascending=False, kind="mergesort")
    )
    counts = counts[counts["sample_count"] >= min_samples]
    return counts.astype({"sample_count": int}).reset_index(drop=True)


def annotate_series(counts: pd.DataFrame, series: pd.DataFrame) -> pd.DataFrame:
    """Join series title and type onto the per-series counts, keeping count order."""
    return counts.merge(series[["gse", "title", "type"]], on="gse", how="inner")


def attach_platforms(
    annotated: pd.DataFrame, series_platforms: pd.DataFrame, platforms: pd.DataFrame
) -> pd.DataFrame:
    """
    Expand each series into one row per platform it used.
    """
    pairs = series_platforms[series_platforms["gse"].isin(annotated["gse"])]
    platform_info = platforms[["gpl", "title", "manufacturer"]].rename(columns={"title": "gpl_title"})
    pairs = pairs.merge(platform_info, on="gpl", how="inner")
    catalog = annotated.merge(pairs, on="gse", how="inner")
    catalog = catalog.sort_values(
        ["sample_count", "gse", "gpl"], ascending=[False, True, True], kind="mergesort"
    )
    return catalog.reindex(columns=list(CATALOG_COLUMNS)).reset_index(drop=True)


def filter_expression_assays(catalog: pd.DataFrame) -> pd.DataFrame:
    """
    Keep rows whose `type` names one of the expression assays (case-sensitive).

    Tabs inside `type` are turned into single spaces first.
    """
    catalog = catalog.copy()
    catalog["type"] = catalog["type"].fillna("").astype(str).str.replace("\t", " ", regex=False)
    keep = catalog["type"].map(lambda t: any(assay in t for assay in EXPRESSION_ASSAY_TYPES))
    return catalog[keep.astype(bool)].reset_index(drop=True)


def filter_cancer_keywords(catalog: pd.DataFrame, matcher: KeywordMatcher) -> pd.DataFrame:
    """Keep rows whose series title matches `matcher`."""
    keep = catalog["title"].map(matcher.matches)
    return catalog[keep.astype(bool)].reset_index(drop=True)


def find_survival_datasets(
    conn: sqlite3.Connection,
    matcher: KeywordMatcher,
    notepad: Notepad,
    scope: OrganismScope = OrganismScope.LAST_TERM,
    min_samples: int = MIN_SURVIVAL_SAMPLES,
) -> pd.DataFrame:
    """
    Run the full discovery pipeline against an open GEOmetadb connection.

    Every stage consumes the previous stage's complete result. An empty stage is
    recorded on `notepad` and propagates as an empty catalog with all columns.
    """
    if scope is OrganismScope.LAST_TERM:
        notepad.add_warning(
            "Organism filter applies only to the last survival term ('pfi'); "
            "use --organism-scope all to restrict every match to Homo sapiens"
        )

    survival_samples = _note_if_empty(metadb.select_survival_samples(conn, scope), "survival-samples", notepad)
    series = metadb.select_series(conn)
    series_samples = metadb.select_series_samples(conn, scope)

    counts = _note_if_empty(
        count_series_samples(series_samples, survival_samples, series, min_samples),
        "sample-threshold",
        notepad,
    )
    annotated = annotate_series(counts, series)

    catalog = _note_if_empty(
        attach_platforms(annotated, metadb.select_series_platforms(conn), metadb.select_platforms(conn)),
        "platforms",
        notepad,
    )
    catalog = _note_if_empty(filter_expression_assays(catalog), "expression-assays", notepad)
    catalog = _note_if_empty(filter_cancer_keywords(catalog, matcher), "cancer-keywords", notepad)
    return catalog


def catalog_entries(catalog: pd.DataFrame) -> list[DatasetCatalogEntry]:
    return [
        DatasetCatalogEntry(
            gse=str(row["gse"]),
            title=str(row["title"]),
            type=str(row["type"]),
            sample_count=int(row["sample_count"]),
            gpl=str(row["gpl"]),
            gpl_title=str(row["gpl_title"]),
            manufacturer=str(row["manufacturer"]),
        )
        for _, row in catalog.iterrows()
    ]


def extract_survival_datasets(
    output: str,
    keywords: KeywordMatcher,
    notepad: Notepad,
    metadb_path: typing.Union[str, os.PathLike] = metadb.DEFAULT_METADB_PATH,
    metadb_url: str = metadb.DEFAULT_METADB_URL,
    scope: OrganismScope = OrganismScope.LAST_TERM,
    min_samples: int = MIN_SURVIVAL_SAMPLES,
) -> typing.Tuple[pathlib.Path, list[DatasetCatalogEntry]]:
    """
    Ensure the snapshot exists, run the finder and write `<output>.tsv` with every field quoted.
    """
    snapshot = metadb.ensure_metadb(metadb_path, metadb_url)
    with metadb.metadb_connection(snapshot) as conn:
        catalog = find_survival_datasets(conn, keywords, notepad, scope=scope, min_samples=min_samples)
    path = write_tsv(catalog, tsv_path(output), quote_all=True)
    return path, catalog_entries(catalog)
