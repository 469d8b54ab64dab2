"""
tests_normalize.py — Unit tests for normalize.py
Run with:  python -m pytest tests_normalize.py -v
"""
import pytest

from normalize import (
    canonical_column,
    normalize_row,
    extract_emails,
    extract_author_ids,
    extract_record_id,
    extract_document_id,
    normalize_identifier,
    fill_canonical_fields,
    CANONICAL_FIELDS,
)


# ---------------------------------------------------------------------------
# canonical_column
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw,expected", [
    ("Email Addresses",     "EmailAddress"),
    ("ORCIDs",              "AuthorID"),
    ("UT (Unique WOS ID)",  "UT"),
    ("UT",                  "UT"),
    ("  PersonID ",         "PersonID"),
    ("personid",            "PersonID"),
    ("FirstName",           "FirstName"),
    ("LastName",            "LastName"),
    ("OrganizationID",      "OrganizationID"),
    ("Organization",        "OrganizationID"),
    ("DocumentID",          "DocumentID"),
    ("AuthorID",            "AuthorID"),
    ("EmailAddress",        "EmailAddress"),
    # No rule applies: passes through trimmed
    ("DOI",                 "DOI"),
    ("OtherNames",          "OtherNames"),
    (" Author Full Names ", "Author Full Names"),
    ("Article Title",       "Article Title"),
])
def test_canonical_column(raw, expected):
    assert canonical_column(raw) == expected


def test_author_id_is_not_mistaken_for_ut():
    # "authorid" contains "ut" but the first matching rule wins
    assert canonical_column("AuthorID") == "AuthorID"


def test_ut_rule_needs_wos():
    assert canonical_column("Output Type") == "Output Type"


# ---------------------------------------------------------------------------
# normalize_row
# ---------------------------------------------------------------------------

def test_email_addresses_alias():
    assert normalize_row({"Email Addresses": "x@y.com"}) == {"EmailAddress": "x@y.com"}


def test_canonical_row_is_unchanged():
    row = {
        "PersonID": "1", "FirstName": "Jane", "LastName": "Doe",
        "OrganizationID": "10", "DocumentID": "", "AuthorID": "0000-0001-2345-6789",
        "EmailAddress": "jane@x.org", "OtherNames": "", "UT": "",
    }
    assert normalize_row(row) == row
    assert normalize_row(normalize_row(row)) == row


def test_values_are_not_touched():
    assert normalize_row({"Email Addresses": "  A@B.com "}) == {"EmailAddress": "  A@B.com "}


def test_later_column_wins_on_collision():
    row = {"Email": "first@x.org", "Email Addresses": "second@x.org"}
    assert normalize_row(row) == {"EmailAddress": "second@x.org"}


# ---------------------------------------------------------------------------
# Identifier extraction
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw,expected", [
    ("P@Q.com",                          ["p@q.com"]),
    ("  jane@x.org ",                    ["jane@x.org"]),
    ("a@x.org; B@Y.org",                 ["a@x.org", "b@y.org"]),
    ("a@x.org; not-an-email; ",          ["a@x.org"]),
    ("STRAßE@x.de",                      ["strasse@x.de"]),
    ("a@x.org; STRAßE@x.de",             ["a@x.org", "strasse@x.de"]),
    ("",                                 []),
    ("   ",                              []),
])
def test_extract_emails(raw, expected):
    assert extract_emails(raw) == expected


def test_extract_orcids_from_wos_cell():
    raw = "Jane Doe/0000-0001-2345-6789; John Roe/0000-0002-3456-7890"
    assert extract_author_ids(raw) == ["0000-0001-2345-6789", "0000-0002-3456-7890"]


def test_extract_orcid_checksum_x_is_case_folded():
    assert extract_author_ids("Doe, J/0000-0002-1825-009X") == ["0000-0002-1825-009x"]


def test_extract_plain_author_id():
    assert extract_author_ids("  ABC-1234-2010 ") == ["abc-1234-2010"]


def test_extract_author_ids_deduplicates():
    raw = "0000-0001-2345-6789; Doe/0000-0001-2345-6789"
    assert extract_author_ids(raw) == ["0000-0001-2345-6789"]


def test_extract_author_ids_blank():
    assert extract_author_ids("") == []
    assert extract_author_ids("  ") == []


class TestRecordId:
    def test_ut_column_preferred(self):
        row = {"UT": " WOS:000111 ", "Notes": "see WOS:000222"}
        assert extract_record_id(row) == "WOS:000111"

    def test_scans_all_values_when_ut_missing(self):
        row = {"Title": "Something", "Accession": "ref WOS:000123456789 x"}
        assert extract_record_id(row) == "WOS:000123456789"

    def test_first_match_wins(self):
        row = {"A": "WOS:1", "B": "WOS:2"}
        assert extract_record_id(row) == "WOS:1"

    def test_blank_ut_falls_back_to_scan(self):
        row = {"UT": "  ", "Other": "WOS:42"}
        assert extract_record_id(row) == "WOS:42"

    def test_no_record_id(self):
        assert extract_record_id({"Title": "no id", "UT": ""}) == ""


def test_document_id_falls_back_to_doi():
    assert extract_document_id({"DocumentID": "", "DOI": " 10.1000/xyz "}) == "10.1000/xyz"
    assert extract_document_id({"DocumentID": "D1", "DOI": "10.1/a"}) == "D1"
    assert extract_document_id({}) == ""


def test_normalize_identifier():
    assert normalize_identifier("  A@B.com ") == "a@b.com"
    assert normalize_identifier("") == ""


def test_email_candidates_use_index_key_form():
    for raw in ("STRAßE@x.de", " Straße@X.de "):
        assert extract_emails(raw) == [normalize_identifier("straße@x.de")]


# ---------------------------------------------------------------------------
# fill_canonical_fields
# ---------------------------------------------------------------------------

def test_fill_canonical_fields_appends_missing():
    row = {"EmailAddress": "a@b.com", "Department": "Anatomy"}
    filled = fill_canonical_fields(row)
    assert list(filled)[:2] == ["EmailAddress", "Department"]
    assert all(filled[name] == "" for name in CANONICAL_FIELDS if name != "EmailAddress")
    assert row == {"EmailAddress": "a@b.com", "Department": "Anatomy"}


def test_fill_canonical_fields_keeps_values():
    row = {name: name.lower() for name in CANONICAL_FIELDS}
    assert fill_canonical_fields(row) == row
