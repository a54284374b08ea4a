"""
Isolated tests for GEOmetadb access without hitting the network.

requests.get is patched with a fake streaming response so that ensure_metadb
can be exercised end to end on a tiny gzipped payload.
"""

import gzip
import os
import sqlite3
import stat

import pytest
import requests

from unittest.mock import MagicMock, patch

from GEOSurv.errors import FetchError
from GEOSurv.metadb import (
    OrganismScope,
    ensure_metadb,
    metadb_connection,
    select_platforms,
    select_series,
    select_series_platforms,
    select_series_samples,
    select_survival_samples,
    survival_criterion,
)


def _fake_response(payload: bytes, status_error: Exception = None):
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    if status_error is not None:
        resp.raise_for_status.side_effect = status_error
    resp.iter_content.return_value = [payload[i:i + 7] for i in range(0, len(payload), 7)]
    return resp


def test_ensure_metadb_downloads_and_decompresses(tmp_path):
    target = tmp_path / "db" / "GEOmetadb.sqlite"
    payload = gzip.compress(b"SQLite format 3\x00 fake")

    with patch("GEOSurv.metadb.requests.get", return_value=_fake_response(payload)) as get:
        path = ensure_metadb(target, "https://example.org/GEOmetadb.sqlite.gz")

    get.assert_called_once()
    assert path == target
    assert target.read_bytes() == b"SQLite format 3\x00 fake"
    # no temporaries left next to the snapshot
    assert sorted(p.name for p in target.parent.iterdir()) == ["GEOmetadb.sqlite"]


def test_ensure_metadb_skips_existing_file(tmp_path):
    target = tmp_path / "GEOmetadb.sqlite"
    target.write_bytes(b"already here")
    with patch("GEOSurv.metadb.requests.get") as get:
        assert ensure_metadb(target) == target
    get.assert_not_called()


def test_ensure_metadb_http_error_leaves_nothing_behind(tmp_path):
    target = tmp_path / "GEOmetadb.sqlite"
    failing = _fake_response(b"", status_error=requests.HTTPError("503 Server Error"))
    with patch("GEOSurv.metadb.requests.get", return_value=failing):
        with pytest.raises(FetchError) as info:
            ensure_metadb(target, "https://example.org/GEOmetadb.sqlite.gz")
    assert info.value.stage == "download"
    assert list(tmp_path.iterdir()) == []


def test_ensure_metadb_truncated_archive_is_fatal(tmp_path):
    target = tmp_path / "GEOmetadb.sqlite"
    truncated = gzip.compress(b"x" * 1000)[:20]
    with patch("GEOSurv.metadb.requests.get", return_value=_fake_response(truncated)):
        with pytest.raises(FetchError):
            ensure_metadb(target, "https://example.org/GEOmetadb.sqlite.gz")
    assert not target.exists()
    assert list(tmp_path.iterdir()) == []


def test_metadb_connection_missing_file(tmp_path):
    with pytest.raises(FetchError):
        with metadb_connection(tmp_path / "absent.sqlite"):
            pass


def test_metadb_connection_is_read_only_and_closed(metadb_path):
    with metadb_connection(metadb_path) as conn:
        with pytest.raises(sqlite3.OperationalError):
            conn.execute("CREATE TABLE scratch (x TEXT)")
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_survival_criterion_sql_shape():
    legacy = str(survival_criterion(OrganismScope.LAST_TERM))
    everywhere = str(survival_criterion(OrganismScope.ALL))
    assert "INSTR(LOWER(\"characteristics_ch1\"),'os_')>0" in legacy
    assert legacy.count("Homo sapiens") == 1
    assert legacy.index("'pfi'") < legacy.index("Homo sapiens")
    assert everywhere.rstrip().endswith("\"organism_ch1\"='Homo sapiens'")


def test_survival_criterion_quotes_terms():
    sql = str(survival_criterion(terms=["o'brien", "pfi"]))
    assert "'o''brien'" in sql


def test_select_survival_samples_renames_title(metadb_conn):
    samples = select_survival_samples(metadb_conn, OrganismScope.ALL)
    assert "sample_title" in samples.columns
    assert "title" not in samples.columns
    # human survival samples: 60 + 55 + 70 + 10 + 52
    assert len(samples) == 247
    assert "GSM999002" not in set(samples["gsm"])


def test_select_survival_samples_legacy_scope_includes_mouse_non_pfi(metadb_conn):
    samples = select_survival_samples(metadb_conn, OrganismScope.LAST_TERM)
    assert set(samples["organism_ch1"]) == {"Homo sapiens", "Mus musculus"}
    assert not samples["characteristics_ch1"].str.startswith("pfi").any()
    assert len(samples) == 247 + 51


def test_select_series_samples_restricted_to_survival(metadb_conn):
    pairs = select_series_samples(metadb_conn, OrganismScope.ALL)
    assert list(pairs.columns) == ["gse", "gsm"]
    assert "GSM999001" not in set(pairs["gsm"])
    # GSM100001 is also listed under a series absent from gse
    assert set(pairs.loc[pairs["gsm"] == "GSM100001", "gse"]) == {"GSE100", "GSE999"}


def test_select_reference_tables(metadb_conn):
    assert list(select_series(metadb_conn).columns) == ["gse", "title", "type"]
    assert list(select_platforms(metadb_conn).columns) == ["gpl", "title", "manufacturer"]
    series_platforms = select_series_platforms(metadb_conn)
    assert set(series_platforms.loc[series_platforms["gse"] == "GSE100", "gpl"]) == {"GPL570", "GPL96"}


def test_downloaded_snapshot_follows_umask(tmp_path):
    target = tmp_path / "GEOmetadb.sqlite"
    previous = os.umask(0o022)
    try:
        with patch("GEOSurv.metadb.requests.get", return_value=_fake_response(gzip.compress(b"snapshot"))):
            ensure_metadb(target, "https://example.org/GEOmetadb.sqlite.gz")
    finally:
        os.umask(previous)
    assert stat.S_IMODE(os.stat(target).st_mode) == 0o644
