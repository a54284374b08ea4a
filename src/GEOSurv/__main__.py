"""
Command-line interface for GEOSurv.

Two pipelines over NCBI GEO metadata:
  - extract-clinical: one GSE accession → per-sample clinical characteristics TSV
  - find-datasets:    cancer category or keywords → survival dataset catalog TSV
plus download-metadb to prefetch the GEOmetadb snapshot the finder queries.
"""

import functools
import logging
import sys
import typing

import click

from stairval.notepad import create_notepad

from .clinical import DEFAULT_CACHE_DIR, extract_clinical_data
from .errors import GEOSurvError
from .keywords import resolve_keywords
from .metadb import DEFAULT_METADB_PATH, DEFAULT_METADB_URL, OrganismScope, ensure_metadb
from .survival import MIN_SURVIVAL_SAMPLES, extract_survival_datasets

logger = logging.getLogger(__name__)


def _logging_options(command):
    """Attach --verbose-logging / --log-file-path and configure logging before the command runs."""

    @click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
    @click.option(
        "--log-file-path",
        type=click.Path(dir_okay=False, writable=True),
        help="Append timestamped logs to this file",
    )
    @functools.wraps(command)
    def wrapper(*args, verbose_logging: bool, log_file_path: typing.Optional[str], **kwargs):
        _configure_logging(verbose_logging, log_file_path)
        return command(*args, **kwargs)

    return wrapper


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else logging.INFO,
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
            force=True,
        )


def _fail(err: GEOSurvError) -> typing.NoReturn:
    # stderr gets the message below; log it only where a handler was configured
    if logging.getLogger().handlers:
        logger.error(f"[{err.stage}] {err}")
    click.echo(f"Error [{err.stage}]: {err}", err=True)
    sys.exit(1)


def _report_issues(notepad):
    # if there were errors, show them
    if notepad.has_errors(include_subsections=True):
        click.echo("Errors found in pipeline:")
        for err in notepad.errors():
            click.echo(f"- {err}")
    # show any warnings but keep going
    if notepad.has_warnings(include_subsections=True):
        click.echo("Warnings found in pipeline:")
        for w in notepad.warnings():
            click.echo(f"- {w}")


@click.command(name="extract-clinical")
@click.argument("accession")
@click.argument("output", required=False)
@click.option(
    "--cache-dir",
    default=DEFAULT_CACHE_DIR,
    show_default=True,
    type=click.Path(file_okay=False),
    help="where GEOparse keeps downloaded SOFT files",
)
@_logging_options
def extract_clinical(accession: str, output: typing.Optional[str], cache_dir: str):
    """
    Write the per-sample clinical characteristics of ACCESSION (e.g. GSE31210)
    to OUTPUT.tsv (default: ACCESSION.tsv).
    """
    notepad = create_notepad("clinical")
    try:
        path, records = extract_clinical_data(accession, output, notepad, destdir=cache_dir)
    except GEOSurvError as e:
        _fail(e)

    _report_issues(notepad)
    attribute_names = {name for record in records for name in record.attributes}
    click.echo(f"Wrote {len(records)} samples with {len(attribute_names)} clinical attributes to {path}")


@click.command(name="find-datasets")
@click.argument("output")
@click.argument("keywords")
@click.option(
    "--regex",
    is_flag=True,
    help="treat a custom KEYWORDS string as one regular expression instead of |-separated literals",
)
@click.option(
    "--organism-scope",
    type=click.Choice([s.value for s in OrganismScope]),
    default=OrganismScope.LAST_TERM.value,
    show_default=True,
    help="apply the Homo sapiens restriction to the last survival term only, or to all of them",
)
@click.option(
    "--min-samples",
    type=click.IntRange(min=1),
    default=MIN_SURVIVAL_SAMPLES,
    show_default=True,
    help="minimum number of survival-annotated samples per series",
)
@click.option(
    "--metadb-path",
    default=DEFAULT_METADB_PATH,
    show_default=True,
    type=click.Path(dir_okay=False),
    help="local GEOmetadb SQLite snapshot (downloaded if absent)",
)
@click.option("--metadb-url", default=DEFAULT_METADB_URL, help="where to download the snapshot from")
@_logging_options
def find_datasets(
    output: str,
    keywords: str,
    regex: bool,
    organism_scope: str,
    min_samples: int,
    metadb_path: str,
    metadb_url: str,
):
    """
    Find GEO expression series with survival-annotated samples whose title matches
    KEYWORDS and write them to OUTPUT.tsv.

    KEYWORDS is one of the built-in categories (lung_cancer, colon_cancer,
    prostate_cancer, breast_cancer, pancreatic_cancer) or a |-separated list
    such as "colon cancer|CRC|COAD".
    """
    try:
        matcher = resolve_keywords(keywords, regex=regex)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEYWORDS")

    if matcher.category:
        click.echo(f"Using built-in {matcher.category} keywords: {', '.join(matcher.terms)}")

    notepad = create_notepad("survival")
    try:
        path, entries = extract_survival_datasets(
            output,
            matcher,
            notepad,
            metadb_path=metadb_path,
            metadb_url=metadb_url,
            scope=OrganismScope(organism_scope),
            min_samples=min_samples,
        )
    except GEOSurvError as e:
        _fail(e)

    _report_issues(notepad)
    series = {entry.gse for entry in entries}
    click.echo(f"Wrote {len(entries)} dataset-platform rows ({len(series)} series) to {path}")


@click.command(name="download-metadb")
@click.option(
    "--metadb-path",
    default=DEFAULT_METADB_PATH,
    show_default=True,
    type=click.Path(dir_okay=False),
    help="where to save the GEOmetadb SQLite snapshot",
)
@click.option("--metadb-url", default=DEFAULT_METADB_URL, help="snapshot URL (gzipped SQLite)")
@_logging_options
def download_metadb(metadb_path: str, metadb_url: str):
    """
    Download the GEOmetadb snapshot (several GB) unless it is already present.
    """
    click.echo(f"Ensuring GEOmetadb snapshot at {metadb_path} …")
    try:
        path = ensure_metadb(metadb_path, metadb_url)
    except GEOSurvError as e:
        _fail(e)
    click.echo(f"GEOmetadb snapshot ready at {path}")


@click.group()
def main():
    """GEOSurv: GEO clinical data and survival dataset extraction."""
    pass


main.add_command(extract_clinical)
main.add_command(find_datasets)
main.add_command(download_metadb)


if __name__ == "__main__":
    main()
