"""
normalize.py — Column-name normalization and identifier extraction
for the WoS template reconciliation tool.

Template rosters and WoS exports name the same columns in many ways
("Email Addresses", "EmailAddress", "ORCIDs", "UT (Unique WOS ID)", ...).
Everything downstream works on the canonical names below.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List


# ─── Canonical Schema ─────────────────────────────────────────────────────────

CANONICAL_FIELDS: tuple[str, ...] = (
    "PersonID",
    "FirstName",
    "LastName",
    "OrganizationID",
    "DocumentID",
    "AuthorID",
    "EmailAddress",
    "OtherNames",
    "UT",
)

# Exact header aliases, compared on the lower-cased trimmed key.
EXACT_ALIASES: Dict[str, str] = {
    "email addresses": "EmailAddress",
    "orcids": "AuthorID",
    "ut": "UT",
}

# (substrings that must all occur in the lower-cased key, canonical name).
# Order matters: the first rule that matches wins, so "AuthorID" can never
# end up as "UT" just because it contains "ut".
COLUMN_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("documentid",), "DocumentID"),
    (("authorid",), "AuthorID"),
    (("orcid",), "AuthorID"),
    (("email",), "EmailAddress"),
    (("personid",), "PersonID"),
    (("firstname",), "FirstName"),
    (("lastname",), "LastName"),
    (("organization",), "OrganizationID"),
    (("ut", "wos"), "UT"),
)

ORCID_PATTERN = re.compile(r"\d{4}-\d{4}-\d{4}-\d{3}[\dXx]")
WOS_ID_PATTERN = re.compile(r"WOS:\d+")


# ─── Column Names ─────────────────────────────────────────────────────────────

def canonical_column(key: str) -> str:
    """
    Map one raw header to its canonical name.

    "Email Addresses"      -> "EmailAddress"
    "ORCIDs"               -> "AuthorID"
    "UT (Unique WOS ID)"   -> "UT"
    "Author Full Names"    -> "Author Full Names"   (no rule, passes through)
    """
    clean = (key or "").strip()
    lowered = clean.lower()
    if lowered in EXACT_ALIASES:
        return EXACT_ALIASES[lowered]
    for needles, target in COLUMN_RULES:
        if all(n in lowered for n in needles):
            return target
    return clean


def normalize_row(row: Dict[str, str]) -> Dict[str, str]:
    """Return a new row keyed by canonical column names; values are untouched.

    When two raw columns map to the same canonical name the later one wins,
    the same way a repeated header does in the parser.
    """
    normalized: Dict[str, str] = {}
    for key, value in row.items():
        normalized[canonical_column(key)] = value
    return normalized


def normalize_rows(rows: Iterable[Dict[str, str]]) -> List[Dict[str, str]]:
    return [normalize_row(r) for r in rows]


def fill_canonical_fields(row: Dict[str, str]) -> Dict[str, str]:
    """Copy of ``row`` with every canonical field present ("" when missing).

    Existing keys keep their order; missing canonical names are appended in
    canonical order.
    """
    filled = dict(row)
    for name in CANONICAL_FIELDS:
        filled.setdefault(name, "")
    return filled


# ─── Identifiers ──────────────────────────────────────────────────────────────

def normalize_identifier(value: str) -> str:
    """Index/lookup key form of an identifier: trimmed and case-folded."""
    if not value:
        return ""
    return value.strip().casefold()


def extract_emails(value: str) -> List[str]:
    """
    Candidate email keys from an EmailAddress cell.

    WoS puts every corresponding-author address in one cell separated by
    semicolons; only tokens that look like addresses are kept there.
    A single value is used as-is (trimmed, case-folded) when non-empty.
    """
    if not value:
        return []
    if ";" in value:
        tokens = [normalize_identifier(t) for t in value.split(";")]
        return [t for t in tokens if "@" in t]
    single = normalize_identifier(value)
    return [single] if single else []


def extract_author_ids(value: str) -> List[str]:
    """
    Candidate author-id keys from an AuthorID/ORCIDs cell.

    "Doe, Jane/0000-0001-2345-6789; Roe, John/0000-0002-3456-7890"
        -> ["0000-0001-2345-6789", "0000-0002-3456-7890"]
    "A-1234-2010" (no ORCID inside) -> ["a-1234-2010"]
    """
    if not value:
        return []
    found: List[str] = []
    for match in ORCID_PATTERN.findall(value):
        key = match.casefold()
        if key not in found:
            found.append(key)
    if found:
        return found
    single = normalize_identifier(value)
    return [single] if single else []


def extract_record_id(row: Dict[str, str]) -> str:
    """
    Record accession code (UT) of a data row.

    The UT column wins; otherwise the first "WOS:<digits>" token anywhere in
    the row is used. Returns "" when the row carries no record id.
    """
    ut = (row.get("UT") or "").strip()
    if ut:
        return ut
    haystack = " ".join(v for v in row.values() if v)
    match = WOS_ID_PATTERN.search(haystack)
    return match.group(0) if match else ""


def extract_document_id(row: Dict[str, str]) -> str:
    """DocumentID of a data row, falling back to its DOI column."""
    doc = (row.get("DocumentID") or "").strip()
    if doc:
        return doc
    return (row.get("DOI") or "").strip()
