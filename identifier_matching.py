"""
identifier_matching.py — Identifier-based template matching for wos2template
==============================================================================
Attaches WoS records to the persons of a template roster.

1. IDENTIFIER INDEX
   Every template row is indexed by its email address and its author id
   (ORCID or free-form), both trimmed and case-folded. Blank identifiers are
   never indexed, otherwise every data row without an email would match
   every template row without one.

2. FAN-OUT MERGE
   A data row that resolves to one or more template rows produces one copy of
   each of those rows carrying the record's UT (and DocumentID when the data
   row has one). The template rows themselves are kept, untouched, at the
   top of the output; a person with five matching records appears six times.

Usage
-----
    from identifier_matching import IdentifierMatcher, MatchPolicy

    matcher = IdentifierMatcher(MatchPolicy())          # final policy
    outcome = matcher.match(template_rows, data_rows)
    # outcome.rows     → list[dict]  sorted output rows
    # outcome.matched  → data rows that hit at least one template row
    # outcome.orphaned → data rows with a UT but no template match
    # outcome.skipped  → data rows without any UT

Earlier iterations of the tool differed in three ways (synthesize a row for
unmatched records, which keys to match on, how to sort). Those are fields of
MatchPolicy rather than separate code paths.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from normalize import (
    CANONICAL_FIELDS,
    extract_author_ids,
    extract_document_id,
    extract_emails,
    extract_record_id,
    normalize_identifier,
)

logger = logging.getLogger("wos_template.matching")

MATCH_KEYS = ("email", "authorId", "both")


# ---------------------------------------------------------------------------
# Sort strategies
# ---------------------------------------------------------------------------

def _original_first_key(row: Dict[str, str]) -> tuple:
    ut = row.get("UT", "")
    return (1 if ut else 0, row.get("EmailAddress", "").casefold(), ut)


def _email_first_key(row: Dict[str, str]) -> tuple:
    return (row.get("EmailAddress", "").casefold(), row.get("UT", ""))


def _author_id_first_key(row: Dict[str, str]) -> tuple:
    return (row.get("AuthorID", ""), row.get("DocumentID", ""))


SORT_STRATEGIES: Dict[str, Callable[[Dict[str, str]], tuple]] = {
    "original-first": _original_first_key,
    "email-first": _email_first_key,
    "authorId-first": _author_id_first_key,
}


def _config_flag(value, default: bool) -> bool:
    """Config booleans may arrive as JSON strings ("false", "0", "no")."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchPolicy:
    """
    How data rows are merged into the template.

    synthesize_unmatched : bool
        Build a row from the data row's own fields when it matches no
        template row (earlier behaviour). Off: such rows are dropped.
    match_keys : str
        "email", "authorId" or "both" (union of the two lookups).
    sort_strategy : str
        Name of an entry in SORT_STRATEGIES.
    seed_template : bool
        Start the output with every template row verbatim.
    """

    synthesize_unmatched: bool = False
    match_keys: str = "both"
    sort_strategy: str = "original-first"
    seed_template: bool = True

    def __post_init__(self):
        if self.match_keys not in MATCH_KEYS:
            raise ValueError(
                f"Unknown match_keys {self.match_keys!r}; expected one of {MATCH_KEYS}"
            )
        if self.sort_strategy not in SORT_STRATEGIES:
            raise ValueError(
                f"Unknown sort_strategy {self.sort_strategy!r}; "
                f"expected one of {tuple(SORT_STRATEGIES)}"
            )

    @classmethod
    def from_config(cls, cfg: dict) -> "MatchPolicy":
        return cls(
            synthesize_unmatched=_config_flag(cfg.get("synthesize_unmatched"), False),
            match_keys=str(cfg.get("match_keys", "both")),
            sort_strategy=str(cfg.get("sort_strategy", "original-first")),
            seed_template=_config_flag(cfg.get("seed_template"), True),
        )

    @property
    def sort_key(self) -> Callable[[Dict[str, str]], tuple]:
        return SORT_STRATEGIES[self.sort_strategy]

    def as_dict(self) -> dict:
        return {
            "synthesize_unmatched": self.synthesize_unmatched,
            "match_keys": self.match_keys,
            "sort_strategy": self.sort_strategy,
            "seed_template": self.seed_template,
        }


@dataclass
class IdentifierIndex:
    emails: Dict[str, List[int]] = field(default_factory=dict)
    author_ids: Dict[str, List[int]] = field(default_factory=dict)

    def lookup(self, emails: Iterable[str], author_ids: Iterable[str],
               match_keys: str = "both") -> List[int]:
        """
        Template positions matched by ANY email OR ANY author id.

        Positions are returned once each, in template order.
        """
        hits: set[int] = set()
        if match_keys in ("email", "both"):
            for key in emails:
                hits.update(self.emails.get(key, ()))
        if match_keys in ("authorId", "both"):
            for key in author_ids:
                hits.update(self.author_ids.get(key, ()))
        return sorted(hits)


@dataclass
class MatchOutcome:
    rows: List[Dict[str, str]] = field(default_factory=list)
    matched: int = 0
    orphaned: int = 0
    skipped: int = 0
    synthesized: int = 0


# ---------------------------------------------------------------------------
# Index builder
# ---------------------------------------------------------------------------

def build_identifier_index(template_rows: List[Dict[str, str]]) -> IdentifierIndex:
    """Index template rows by email and author id (O(N), blanks skipped)."""
    index = IdentifierIndex()
    for pos, row in enumerate(template_rows):
        email = normalize_identifier(row.get("EmailAddress", ""))
        if email:
            index.emails.setdefault(email, []).append(pos)
        author_id = normalize_identifier(row.get("AuthorID", ""))
        if author_id:
            index.author_ids.setdefault(author_id, []).append(pos)
    logger.info(
        "Identifier index built: %d email keys, %d author-id keys from %d template rows.",
        len(index.emails), len(index.author_ids), len(template_rows),
    )
    return index


# ---------------------------------------------------------------------------
# Core matcher
# ---------------------------------------------------------------------------

def _synthesize_row(data_row: Dict[str, str], record_id: str,
                    document_id: str) -> Dict[str, str]:
    row = {name: data_row.get(name, "") or "" for name in CANONICAL_FIELDS}
    row["DocumentID"] = document_id
    row["UT"] = record_id
    return row


class IdentifierMatcher:
    """
    Merge normalized data rows into normalized template rows.

    Parameters
    ----------
    policy : MatchPolicy
        Chosen once, at construction; defaults to the final policy
        (no synthesis, email + author id, original rows first).
    """

    def __init__(self, policy: Optional[MatchPolicy] = None):
        self.policy = policy or MatchPolicy()

    def match(self, template_rows: List[Dict[str, str]],
              data_rows: Iterable[Dict[str, str]],
              index: Optional[IdentifierIndex] = None) -> MatchOutcome:
        if index is None:
            index = build_identifier_index(template_rows)

        outcome = MatchOutcome()
        if self.policy.seed_template:
            outcome.rows.extend(dict(r) for r in template_rows)

        for data_row in data_rows:
            record_id = extract_record_id(data_row)
            if not record_id:
                outcome.skipped += 1
                continue

            document_id = extract_document_id(data_row)
            positions = index.lookup(
                extract_emails(data_row.get("EmailAddress", "")),
                extract_author_ids(data_row.get("AuthorID", "")),
                self.policy.match_keys,
            )

            if positions:
                outcome.matched += 1
                for pos in positions:
                    merged = dict(template_rows[pos])
                    merged["UT"] = record_id
                    if document_id:
                        merged["DocumentID"] = document_id
                    outcome.rows.append(merged)
            elif self.policy.synthesize_unmatched:
                outcome.synthesized += 1
                outcome.rows.append(_synthesize_row(data_row, record_id, document_id))
            else:
                outcome.orphaned += 1
                logger.debug("No template match for record %s", record_id)

        outcome.rows = sorted(outcome.rows, key=self.policy.sort_key)
        logger.info(
            "Matched %d data rows (%d orphaned, %d synthesized, %d without UT) -> %d output rows.",
            outcome.matched, outcome.orphaned, outcome.synthesized,
            outcome.skipped, len(outcome.rows),
        )
        return outcome


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def collect_columns(rows: Iterable[Dict[str, str]]) -> List[str]:
    """Union of row keys in first-seen order."""
    columns: Dict[str, None] = {}
    for row in rows:
        for key in row:
            columns.setdefault(key, None)
    return list(columns)
