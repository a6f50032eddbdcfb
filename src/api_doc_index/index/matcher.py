"""Fuzzy service matcher.

Scores every known service against a free-text service name (English or
Chinese, abbreviations, ``|``-separated alternatives) and picks the best one.
Scores are additive integers, not normalized similarities.
"""

import logging
import re

from pydantic import BaseModel

from api_doc_index.index.tables import MatchTables, PatternShortcut, load_match_tables
from api_doc_index.parser.base import ServiceInfo

logger = logging.getLogger(__name__)

MAX_AGGREGATE_METHODS = 20000

EXACT_SCORE = 100
PATTERN_SCORE = 90
# Additive scores stay below a pattern or exact hit
MAX_FUZZY_SCORE = 89

NAME_CONTAINS = 25
DISPLAY_CONTAINS = 20
NORMALIZED_CONTAINS = 15
SEMANTIC_HIT = 12
KEYWORD_HIT = 10
SHARED_WORD = 3
COMMON_SUFFIX = 7
ABBREVIATION_HIT = 5
LENGTH_TOLERANCE = 20

WORD_SPLIT_RE = re.compile(r"[\s\-_]+")


class MatchResult(BaseModel):
    service: ServiceInfo
    score: int
    truncated: bool = False
    total_methods: int = 0


def _words(text: str) -> list[str]:
    return [w for w in WORD_SPLIT_RE.split(text.lower()) if len(w) > 1]


def _normalize(text: str) -> str:
    return re.sub(r"[\W_]+", "", text.lower())


def _contains_either(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a in b or b in a)


class ServiceMatcher:
    """Selects the best-matching ServiceInfo for a requested service name."""

    def __init__(self, tables: MatchTables | None = None):
        self.tables = tables or load_match_tables()
        self._suffixes = sorted(
            {w.lower() for w in self.tables.common_suffix_words}, key=len, reverse=True
        )

    # -- pattern shortcuts -------------------------------------------------

    def find_pattern(self, query: str) -> PatternShortcut | None:
        query = query.strip().lower()
        for pattern in self.tables.patterns:
            if query in (q.lower() for q in pattern.queries):
                return pattern
        return None

    @staticmethod
    def matches_pattern(pattern: PatternShortcut, service: ServiceInfo) -> bool:
        value = pattern.value.lower()
        if pattern.target == "name_suffix":
            return service.service_name.lower().endswith(value) or (
                service.service_display_name.lower().endswith(value)
            )
        return value in service.service_display_name.lower()

    def aggregate(
        self, query: str, pattern: PatternShortcut, services: list[ServiceInfo]
    ) -> MatchResult | None:
        """Combine the methods of every service matching a pattern shortcut."""
        matched = [s for s in services if self.matches_pattern(pattern, s)]
        if not matched:
            return None
        methods = [m for s in matched for m in s.methods]
        total = len(methods)
        combined = ServiceInfo(
            service_name=pattern.value,
            service_display_name=f"{len(matched)} services matching '{query}'",
            methods=methods[:MAX_AGGREGATE_METHODS],
        )
        return MatchResult(
            service=combined,
            score=PATTERN_SCORE,
            truncated=total > MAX_AGGREGATE_METHODS,
            total_methods=total,
        )

    # -- table rules -------------------------------------------------------

    def is_similar_service_name(self, requested: str, service: ServiceInfo) -> bool:
        """Requested name is a term of a semantic group the service also names."""
        req = requested.lower()
        haystack = f"{service.service_name} {service.service_display_name}".lower()
        for group in self.tables.semantic_synonyms:
            members = group.members
            if req in members and any(m in haystack for m in members):
                return True
        return False

    def matches_service_keyword(self, requested: str, service: ServiceInfo) -> bool:
        """Some keyword group appears in both the request and the service, any language."""
        req = requested.lower()
        haystack = f"{service.service_name} {service.service_display_name}".lower()
        for group in self.tables.service_keywords:
            members = group.members
            if any(m in req for m in members) and any(m in haystack for m in members):
                return True
        return False

    def shared_word_count(self, requested: str, service: ServiceInfo) -> int:
        display_words = _words(service.service_display_name)
        count = 0
        for word in _words(requested):
            if any(word in d or d in word for d in display_words):
                count += 1
        return count

    def strip_common_suffixes(self, text: str) -> str:
        text = text.lower().strip(" -_")
        changed = True
        while changed:
            changed = False
            for suffix in self._suffixes:
                if text.endswith(suffix) and len(text) > len(suffix):
                    text = text[: -len(suffix)].strip(" -_")
                    changed = True
        return text

    def has_common_suffix_match(self, requested: str, service: ServiceInfo) -> bool:
        stripped = self.strip_common_suffixes(requested)
        if not stripped:
            return False
        candidates = {
            self.strip_common_suffixes(service.service_name),
            self.strip_common_suffixes(service.service_display_name),
        }
        candidates.update(
            self.strip_common_suffixes(part) for part in service.service_display_name.split("-")
        )
        return stripped in candidates

    def has_abbreviation_match(self, requested: str, service: ServiceInfo) -> bool:
        req_words = set(_words(requested)) | {requested.lower()}
        name_words = set(_words(service.service_name)) | set(_words(service.service_display_name))
        haystack = f"{service.service_name} {service.service_display_name}".lower()
        for abbr, full in self.tables.abbreviations.items():
            if abbr in req_words and full in haystack:
                return True
            if full in req_words and abbr in name_words:
                return True
        return False

    # -- scoring -----------------------------------------------------------

    def score(self, requested: str, service: ServiceInfo) -> int:
        """Additive match score of one service for one requested name."""
        return self._score(requested, service)[0]

    def _score(self, requested: str, service: ServiceInfo) -> tuple[int, int]:
        """``(reported, raw)``: raw is the uncapped additive total used to break ties."""
        req = requested.strip().lower()
        name = service.service_name.lower()
        display = service.service_display_name.lower()
        if not req:
            return 0, 0
        if req == name or req == display:
            return EXACT_SCORE, EXACT_SCORE

        pattern = self.find_pattern(req)
        if pattern and self.matches_pattern(pattern, service):
            return PATTERN_SCORE, PATTERN_SCORE

        score = 0
        if _contains_either(req, name):
            score += NAME_CONTAINS
        if _contains_either(req, display):
            score += DISPLAY_CONTAINS
        if _contains_either(_normalize(req), _normalize(display)):
            score += NORMALIZED_CONTAINS
        if self.is_similar_service_name(req, service):
            score += SEMANTIC_HIT
        if self.matches_service_keyword(req, service):
            score += KEYWORD_HIT
        score += SHARED_WORD * self.shared_word_count(req, service)
        if self.has_common_suffix_match(req, service):
            score += COMMON_SUFFIX
        if self.has_abbreviation_match(req, service):
            score += ABBREVIATION_HIT

        diff = abs(len(requested.strip()) - len(service.service_display_name))
        if diff > LENGTH_TOLERANCE:
            score = max(0, score - diff // 5)
        return min(score, MAX_FUZZY_SCORE), score

    def name_variants(self, term: str) -> list[str]:
        """The term plus affix-stripped, split and abbreviation-substituted forms."""
        base = term.strip().lower()
        variants = [base]

        def add(value: str) -> None:
            value = value.strip(" -_")
            if len(value) >= 2 and value not in variants:
                variants.append(value)

        for affix in self.tables.affix_words:
            affix = affix.lower()
            if base.endswith(affix) and len(base) > len(affix):
                add(base[: -len(affix)])
            if base.startswith(affix) and len(base) > len(affix):
                add(base[len(affix):])
        affixes = {a.lower() for a in self.tables.affix_words}
        for part in WORD_SPLIT_RE.split(base):
            # two-letter fragments such as "no" or "hr" match too much on their own
            if (len(part) > 2 or not part.isascii()) and part not in affixes:
                add(part)

        for value in list(variants):
            for full, abbrs in self.tables.variant_pairs.items():
                for abbr in abbrs:
                    if full in value:
                        add(value.replace(full, abbr))
                    elif re.search(rf"(?<![a-z]){re.escape(abbr)}(?![a-z])", value):
                        add(re.sub(rf"(?<![a-z]){re.escape(abbr)}(?![a-z])", full, value))
        return variants

    # -- selection ---------------------------------------------------------

    @staticmethod
    def split_terms(service_name: str) -> list[str]:
        return [t.strip() for t in service_name.split("|") if t.strip()]

    def find_best(self, service_name: str, services: list[ServiceInfo]) -> MatchResult | None:
        """Best service for a (possibly ``|``-separated) name, or None."""
        terms = self.split_terms(service_name)

        for term in terms:
            low = term.lower()
            for service in services:
                if low in (service.service_name.lower(), service.service_display_name.lower()):
                    return MatchResult(service=service, score=EXACT_SCORE)

        best: MatchResult | None = None
        best_rank = (0, 0)
        for term in terms:
            for variant in self.name_variants(term):
                for service in services:
                    rank = self._score(variant, service)
                    if rank[0] > 0 and rank > best_rank:
                        best = MatchResult(service=service, score=rank[0])
                        best_rank = rank
        if best:
            logger.debug(
                "Matched %r to %s (score %d)", service_name, best.service.service_display_name, best.score
            )
        return best

    def find_similar_services(
        self, service_name: str, services: list[ServiceInfo], limit: int = 3
    ) -> list[ServiceInfo]:
        """Up to ``limit`` loosely related services, for not-found suggestions."""
        scored = []
        for index, service in enumerate(services):
            best = 0
            for term in self.split_terms(service_name):
                req = term.lower()
                score = 0
                if _contains_either(req, service.service_name.lower()):
                    score += 2
                if _contains_either(req, service.service_display_name.lower()):
                    score += 2
                if self.is_similar_service_name(req, service):
                    score += 1
                if self.matches_service_keyword(req, service):
                    score += 1
                best = max(best, score)
            if best > 0:
                scored.append((-best, index, service))
        scored.sort(key=lambda item: (item[0], item[1]))
        return [service for _, _, service in scored[:limit]]
