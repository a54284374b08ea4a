"""
Keyword vocabularies and matchers.

Holds the survival annotation terms used to pick GSM samples, the expression
assay types accepted for a series, and the curated cancer category synonyms
matched against series titles.
"""

import re
import typing

from dataclasses import dataclass, field

# Searched case-insensitively as literal substrings of characteristics_ch1
SURVIVAL_TERMS: tuple[str, ...] = (
    "rfs",
    "dfs",
    "surv",
    "dead",
    "death",
    "os_",
    "pfs",
    "dss",
    "alive",
    "os:",
    "vital status",
    "dfi",
    "pfi",
)

# Case-sensitive, matched as substrings of gse.type
EXPRESSION_ASSAY_TYPES: tuple[str, ...] = (
    "Expression profiling by array",
    "Expression profiling by high throughput sequencing",
    "Non-coding RNA profiling by array",
    "Non-coding RNA profiling by high throughput sequencing",
)

CANCER_CATEGORIES: dict[str, tuple[str, ...]] = {
    "lung_cancer": (
        "lung cancer",
        "lung carcinoma",
        "lung adenocarcinoma",
        "SCLC",
        "lung squamous",
        "LUAD",
        "LUSC",
    ),
    "colon_cancer": (
        "colon cancer",
        "colon carcinoma",
        "colon adenocarcinoma",
        "colonic cancer",
        "colonic carcinoma",
        "colonic adenocarcinoma",
        "rectal cancer",
        "rectal carcinoma",
        "rectal adenocarcinoma",
        "CRC",
        "COAD",
        "READ",
    ),
    "prostate_cancer": (
        "prostate cancer",
        "prostatic carcinoma",
        "prostatic adenocarcinoma",
        "prostate carcinoma",
        "PRAD",
        "prostate adenocarcinoma",
    ),
    "breast_cancer": (
        "breast cancer",
        "breast carcinoma",
        "BRCA",
        "breast adenocarcinoma",
    ),
    "pancreatic_cancer": (
        "pancreatic cancer",
        "pancreatic carcinoma",
        "pancreatic adenocarcinoma",
        "PAAD",
    ),
}


@dataclass(frozen=True)
class KeywordMatcher:
    """
    Case-insensitive title matcher.

    Attributes:
        terms: Literal match terms, or a single expression when `regex` is set.
        regex: Treat the single term as a regular expression instead of a literal.
        category: Name of the built-in category the terms came from, if any.
    """

    terms: tuple[str, ...]
    regex: bool = False
    category: typing.Optional[str] = None
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.terms:
            raise ValueError("At least one keyword is required")
        if self.regex:
            if len(self.terms) != 1:
                raise ValueError("A regex matcher takes exactly one expression")
            try:
                pattern = re.compile(self.terms[0], re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"Invalid keyword expression {self.terms[0]!r}: {e}")
        else:
            pattern = re.compile("|".join(re.escape(t) for t in self.terms), re.IGNORECASE)
        # frozen dataclass: bypass __setattr__ for the derived pattern
        object.__setattr__(self, "_pattern", pattern)

    def matches(self, text: typing.Any) -> bool:
        if not isinstance(text, str):
            return False
        return self._pattern.search(text) is not None

    @property
    def pattern(self) -> re.Pattern:
        return self._pattern


def resolve_keywords(text: str, regex: bool = False) -> KeywordMatcher:
    """
    Build a matcher from a category name or a `|`-separated keyword list.

    A recognized category name is replaced by its curated synonym list. Anything
    else is split on `|` into literal terms, unless `regex` is set, in which case
    the whole string is compiled as one expression.
    """
    key = text.strip()
    if key in CANCER_CATEGORIES:
        return KeywordMatcher(terms=CANCER_CATEGORIES[key], category=key)
    if regex:
        return KeywordMatcher(terms=(key,), regex=True)
    terms = tuple(piece.strip() for piece in key.split("|") if piece.strip())
    return KeywordMatcher(terms=terms)
