"""Matching tables loader: reads the bilingual keyword tables used by the matcher."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel

TABLES_PATH = Path(__file__).parent / "tables.yaml"


class PatternShortcut(BaseModel):
    """A literal query that selects every service of a kind."""

    queries: list[str]
    target: Literal["name_suffix", "display_contains"]
    value: str


class TermGroup(BaseModel):
    term: str
    synonyms: list[str] = []

    @property
    def members(self) -> list[str]:
        return [self.term.lower()] + [s.lower() for s in self.synonyms]


class MatchTables(BaseModel):
    patterns: list[PatternShortcut] = []
    semantic_synonyms: list[TermGroup] = []
    service_keywords: list[TermGroup] = []
    abbreviations: dict[str, str] = {}
    variant_pairs: dict[str, list[str]] = {}
    affix_words: list[str] = []
    common_suffix_words: list[str] = []


def load_match_tables(path: Path | None = None) -> MatchTables:
    """Load the tables shipped with the package, or a replacement file."""
    text = (path or TABLES_PATH).read_text(encoding="utf-8")
    return MatchTables(**(yaml.safe_load(text) or {}))
