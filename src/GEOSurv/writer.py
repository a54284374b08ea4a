import csv
import logging
import os
import pathlib
import re
import tempfile

import pandas as pd

from .errors import WriteError

logger = logging.getLogger(__name__)

# Unquoted output never quotes, so the csv quote character must not occur in any value
_UNUSED_QUOTECHAR = "\x1f"

# Characters that would break a row or a column in an unquoted TSV
_UNSAFE_CHARS = re.compile(r"[\t\r\n\x1f]")


def tsv_path(output: str) -> pathlib.Path:
    """Append the `.tsv` extension unless the caller already gave one."""
    path = pathlib.Path(output)
    return path if path.suffix == ".tsv" else path.with_name(path.name + ".tsv")


def flatten_whitespace(df: pd.DataFrame) -> pd.DataFrame:
    """Replace tabs and newlines inside string cells and column names with single spaces."""
    cleaned = df.copy()
    cleaned.columns = [_flatten(str(c)) for c in cleaned.columns]
    # positional, since normalized tables may repeat a column name
    for position in range(cleaned.shape[1]):
        cleaned.iloc[:, position] = cleaned.iloc[:, position].map(_flatten, na_action="ignore")
    return cleaned


def _flatten(value):
    return _UNSAFE_CHARS.sub(" ", value) if isinstance(value, str) else value


def publish(tmp_name: str, path: pathlib.Path) -> None:
    """
    Move a finished temporary file onto `path` with the permissions a plain
    `open(path, "w")` would have given it.
    """
    umask = os.umask(0)
    os.umask(umask)
    os.chmod(tmp_name, 0o666 & ~umask)
    os.replace(tmp_name, path)


def write_tsv(df: pd.DataFrame, path: pathlib.Path, quote_all: bool = False) -> pathlib.Path:
    """
    Write `df` as a tab-separated file with a header row and no index.

    The table is written to a temporary file in the target directory and renamed
    into place on success, so a failed run never leaves a partial file behind.

    - quote_all=False: values are flattened to one line each and written
      verbatim, never quoted (a `"` inside a value stays a literal `"`).
    - quote_all=True: every field, header included, is double-quoted.
    """
    path = pathlib.Path(path)
    if quote_all:
        table = df
        csv_options = dict(quoting=csv.QUOTE_ALL)
    else:
        table = flatten_whitespace(df)
        csv_options = dict(quoting=csv.QUOTE_NONE, quotechar=_UNUSED_QUOTECHAR)

    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            newline="",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_name = tmp.name
            table.to_csv(tmp, sep="\t", index=False, lineterminator="\n", **csv_options)
        publish(tmp_name, path)
        tmp_name = None
    except (OSError, csv.Error) as e:
        raise WriteError(f"Cannot write {str(path)!r}: {e}", stage="write") from e
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.info(f"Wrote {len(table)} rows to {path}")
    return path
