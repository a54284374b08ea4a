import os
import sqlite3
import pytest

from types import SimpleNamespace
from stairval.notepad import create_notepad

# gse → (title, type, n_samples, characteristic, organism, platforms)
SERIES_FIXTURES = {
    "GSE100": ("Gene expression of lung adenocarcinoma (LUAD) with outcome", "Expression profiling by array",
               60, "os: 34.2", "Homo sapiens", ["GPL570", "GPL96"]),
    "GSE200": ("Breast carcinoma cohort", "Expression profiling by array",
               55, "vital status: Alive", "Homo sapiens", ["GPL570"]),
    "GSE300": ("Methylation of lung cancer", "Methylation profiling by array",
               70, "DFS: 1", "Homo sapiens", ["GPL13534"]),
    "GSE400": ("Lung cancer small cohort", "Expression profiling by array",
               10, "death: yes", "Homo sapiens", ["GPL570"]),
    "GSE500": ("Colon cancer survival study", "Expression profiling by high throughput sequencing\tOther",
               52, "RFS_status: 0", "Homo sapiens", ["GPL11154"]),
    "GSE600": ("Rectal adenocarcinoma in mice", "Expression profiling by array",
               51, "survival: 12", "Mus musculus", ["GPL1261"]),
    "GSE700": ("Colon carcinoma xenografts", "Expression profiling by array",
               50, "pfi: 1", "Mus musculus", ["GPL1261"]),
}

PLATFORM_FIXTURES = {
    "GPL570": ("[HG-U133_Plus_2] Affymetrix Human Genome U133 Plus 2.0 Array", "Affymetrix"),
    "GPL96": ("[HG-U133A] Affymetrix Human Genome U133A Array", "Affymetrix"),
    "GPL13534": ("Illumina HumanMethylation450 BeadChip", "Illumina, Inc."),
    "GPL11154": ("Illumina HiSeq 2000 (Homo sapiens)", "Illumina Inc."),
    "GPL1261": ("[Mouse430_2] Affymetrix Mouse Genome 430 2.0 Array", "Affymetrix"),
}

# samples in GSE100 without survival annotations, plus one near-miss on "os"
UNANNOTATED_SAMPLES = [
    ("GSM999001", "tumor 1", "tissue: lung", "Homo sapiens"),
    ("GSM999002", "tumor 2", "histology: osteosarcoma", "Homo sapiens"),
]


def build_metadb(path: str) -> str:
    """
    Write a miniature GEOmetadb snapshot with the tables the finder reads.
    """
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE gsm (ID REAL, title TEXT, gsm TEXT, series_id TEXT,
                              characteristics_ch1 TEXT, organism_ch1 TEXT);
            CREATE TABLE gse (ID REAL, title TEXT, gse TEXT, type TEXT, summary TEXT);
            CREATE TABLE gpl (ID REAL, title TEXT, gpl TEXT, manufacturer TEXT);
            CREATE TABLE gse_gsm (gse TEXT, gsm TEXT);
            CREATE TABLE gse_gpl (gse TEXT, gpl TEXT);
            """
        )
        sample_number = 100000
        for series_index, (gse, (title, kind, n, characteristic, organism, platforms)) in enumerate(
            SERIES_FIXTURES.items()
        ):
            conn.execute("INSERT INTO gse VALUES (?, ?, ?, ?, ?)", (series_index, title, gse, kind, ""))
            for gpl in platforms:
                conn.execute("INSERT INTO gse_gpl VALUES (?, ?)", (gse, gpl))
            for _ in range(n):
                sample_number += 1
                gsm = f"GSM{sample_number}"
                conn.execute(
                    "INSERT INTO gsm VALUES (?, ?, ?, ?, ?, ?)",
                    (sample_number, f"patient {sample_number}", gsm, gse, f"{characteristic};\ttissue: tumor", organism),
                )
                conn.execute("INSERT INTO gse_gsm VALUES (?, ?)", (gse, gsm))
        for gsm, title, characteristic, organism in UNANNOTATED_SAMPLES:
            conn.execute("INSERT INTO gsm VALUES (?, ?, ?, ?, ?, ?)", (0, title, gsm, "GSE100", characteristic, organism))
            conn.execute("INSERT INTO gse_gsm VALUES (?, ?)", ("GSE100", gsm))
        # membership pointing at a series missing from the gse table
        conn.execute("INSERT INTO gse_gsm VALUES (?, ?)", ("GSE999", "GSM100001"))
        for gpl, (title, manufacturer) in PLATFORM_FIXTURES.items():
            conn.execute("INSERT INTO gpl VALUES (?, ?, ?, ?)", (0, title, gpl, manufacturer))
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture(scope="session")
def metadb_path(tmp_path_factory) -> str:
    """
    Path to a miniature GEOmetadb SQLite file shared by the whole session.
    """
    return build_metadb(os.path.join(str(tmp_path_factory.mktemp("metadb")), "GEOmetadb.sqlite"))


@pytest.fixture
def metadb_conn(metadb_path):
    from GEOSurv.metadb import metadb_connection

    with metadb_connection(metadb_path) as conn:
        yield conn


@pytest.fixture
def notepad():
    return create_notepad("test")


def make_gsm(accession: str, title: str, characteristics: list, sample_type: str = "RNA", **extra):
    metadata = {
        "title": [title],
        "geo_accession": [accession],
        "type": [sample_type],
        "characteristics_ch1": characteristics,
    }
    metadata.update(extra)
    return SimpleNamespace(name=accession, metadata=metadata)


@pytest.fixture
def fake_gse():
    """
    A stand-in for a GEOparse GSE with three samples; one lacks the 'stage' characteristic.
    """
    gsms = {
        "GSM773534": make_gsm("GSM773534", "Patient 1", ["age: 61", "gender: female", "pathological stage: IA"]),
        "GSM773535": make_gsm("GSM773535", "Patient 2", ["age: 55", "gender: male", "pathological stage: II"],
                              characteristics_ch2=["reference: pool"]),
        "GSM773536": make_gsm("GSM773536", "Patient 3", ["age: 70", "gender: male", "smoking status"]),
    }
    return SimpleNamespace(name="GSE31210", gsms=gsms)


@pytest.fixture
def gsm_factory():
    return make_gsm
