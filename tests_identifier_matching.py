"""
tests_identifier_matching.py — Unit tests for identifier_matching.py
Run with:  python -m pytest tests_identifier_matching.py -v
"""
import pytest

from identifier_matching import (
    IdentifierMatcher,
    MatchPolicy,
    SORT_STRATEGIES,
    build_identifier_index,
    collect_columns,
)


def _person(pid, email="", author_id="", first="", last="", org="10"):
    return {
        "PersonID": pid, "FirstName": first, "LastName": last,
        "OrganizationID": org, "DocumentID": "", "AuthorID": author_id,
        "EmailAddress": email, "OtherNames": "", "UT": "",
    }


@pytest.fixture
def template_rows():
    return [
        _person("2570", email="N.Lazarov@mu-varna.bg", first="Nikolay", last="Lazarov"),
        _person("2548", author_id="0000-0001-2345-6789", first="Viktor", last="Velyanov"),
        _person("2161", email="k.bratoeva@mu-varna.bg", author_id="0000-0002-3456-7890",
                first="Kameliya", last="Bratoeva"),
        _person("9001", first="Maria", last="Georgieva"),  # no identifiers at all
    ]


# ---------------------------------------------------------------------------
# build_identifier_index
# ---------------------------------------------------------------------------

class TestIdentifierIndex:
    def test_blank_identifiers_not_indexed(self, template_rows):
        index = build_identifier_index(template_rows)
        assert "" not in index.emails
        assert "" not in index.author_ids
        assert 3 not in {p for ps in index.emails.values() for p in ps}
        assert 3 not in {p for ps in index.author_ids.values() for p in ps}

    def test_keys_are_case_folded(self, template_rows):
        index = build_identifier_index(template_rows)
        assert index.emails["n.lazarov@mu-varna.bg"] == [0]

    def test_whitespace_only_email_not_indexed(self):
        index = build_identifier_index([_person("1", email="   ")])
        assert index.emails == {}

    def test_duplicates_keep_insertion_order(self):
        rows = [_person("1", email="a@b.com"), _person("2"), _person("3", email="A@B.com ")]
        index = build_identifier_index(rows)
        assert index.emails["a@b.com"] == [0, 2]

    def test_lookup_is_set_union(self, template_rows):
        index = build_identifier_index(template_rows)
        hits = index.lookup(["k.bratoeva@mu-varna.bg"], ["0000-0002-3456-7890"])
        assert hits == [2]

    def test_lookup_respects_match_keys(self, template_rows):
        index = build_identifier_index(template_rows)
        emails = ["n.lazarov@mu-varna.bg"]
        orcids = ["0000-0001-2345-6789"]
        assert index.lookup(emails, orcids, "both") == [0, 1]
        assert index.lookup(emails, orcids, "email") == [0]
        assert index.lookup(emails, orcids, "authorId") == [1]


# ---------------------------------------------------------------------------
# MatchPolicy
# ---------------------------------------------------------------------------

class TestMatchPolicy:
    def test_defaults_are_final_policy(self):
        policy = MatchPolicy()
        assert policy.synthesize_unmatched is False
        assert policy.match_keys == "both"
        assert policy.sort_strategy == "original-first"
        assert policy.seed_template is True

    def test_from_config(self):
        policy = MatchPolicy.from_config({"synthesize_unmatched": True, "sort_strategy": "email-first"})
        assert policy.synthesize_unmatched is True
        assert policy.sort_strategy == "email-first"
        assert policy.match_keys == "both"

    @pytest.mark.parametrize("raw,expected", [
        ("false", False), ("False", False), ("0", False), ("no", False),
        ("true", True), ("1", True), (True, True), (False, False), (0, False),
    ])
    def test_from_config_string_booleans(self, raw, expected):
        policy = MatchPolicy.from_config({"synthesize_unmatched": raw, "seed_template": raw})
        assert policy.synthesize_unmatched is expected
        assert policy.seed_template is expected

    def test_from_config_missing_flags_use_defaults(self):
        policy = MatchPolicy.from_config({})
        assert policy.synthesize_unmatched is False
        assert policy.seed_template is True

    @pytest.mark.parametrize("kwargs", [
        {"match_keys": "name"},
        {"sort_strategy": "random"},
    ])
    def test_unknown_options_rejected(self, kwargs):
        with pytest.raises(ValueError):
            MatchPolicy(**kwargs)

    def test_all_strategies_registered(self):
        assert set(SORT_STRATEGIES) == {"original-first", "email-first", "authorId-first"}


# ---------------------------------------------------------------------------
# IdentifierMatcher
# ---------------------------------------------------------------------------

class TestFanOut:
    def test_two_records_for_one_person(self):
        template = [_person("1", email="p@q.com", first="Pat", last="Quinn")]
        data = [
            {"EmailAddress": "P@Q.com", "UT": "WOS:000000000002"},
            {"EmailAddress": "P@Q.com", "UT": "WOS:000000000001"},
        ]
        outcome = IdentifierMatcher().match(template, data)

        assert len(outcome.rows) == 3
        assert outcome.rows[0] == template[0]
        copies = outcome.rows[1:]
        assert {r["UT"] for r in copies} == {"WOS:000000000001", "WOS:000000000002"}
        for r in copies:
            assert {k: v for k, v in r.items() if k != "UT"} == \
                   {k: v for k, v in template[0].items() if k != "UT"}

    def test_template_rows_are_not_mutated(self, template_rows):
        before = [dict(r) for r in template_rows]
        data = [{"EmailAddress": "n.lazarov@mu-varna.bg", "UT": "WOS:1", "DOI": "10.1/x"}]
        IdentifierMatcher().match(template_rows, data)
        assert template_rows == before

    def test_document_id_taken_from_doi(self, template_rows):
        data = [{"EmailAddress": "n.lazarov@mu-varna.bg", "UT": "WOS:1", "DOI": "10.1/x"}]
        outcome = IdentifierMatcher().match(template_rows, data)
        merged = [r for r in outcome.rows if r["UT"]]
        assert merged[0]["DocumentID"] == "10.1/x"
        assert merged[0]["PersonID"] == "2570"

    def test_document_id_kept_when_record_has_none(self):
        template = [dict(_person("1", email="a@b.com"), DocumentID="OLD")]
        outcome = IdentifierMatcher().match(template, [{"EmailAddress": "a@b.com", "UT": "WOS:9"}])
        assert outcome.rows[-1]["DocumentID"] == "OLD"
        assert outcome.rows[-1]["UT"] == "WOS:9"

    def test_email_or_orcid_union(self, template_rows):
        data = [{
            "EmailAddress": "n.lazarov@mu-varna.bg",
            "AuthorID": "Velyanov, V/0000-0001-2345-6789",
            "UT": "WOS:5",
        }]
        outcome = IdentifierMatcher().match(template_rows, data)
        merged = [r["PersonID"] for r in outcome.rows if r["UT"] == "WOS:5"]
        assert sorted(merged) == ["2548", "2570"]
        assert outcome.matched == 1

    def test_same_person_hit_twice_counted_once(self, template_rows):
        data = [{
            "EmailAddress": "k.bratoeva@mu-varna.bg",
            "AuthorID": "0000-0002-3456-7890",
            "UT": "WOS:7",
        }]
        outcome = IdentifierMatcher().match(template_rows, data)
        assert [r["PersonID"] for r in outcome.rows if r["UT"] == "WOS:7"] == ["2161"]

    @pytest.mark.parametrize("template_email,record_email", [
        ("straße@x.de", "STRAßE@x.de"),
        ("STRASSE@x.de", "straße@x.de"),
        ("a@x.org", "other@y.org; A@X.ORG"),
    ])
    def test_email_case_folding_matches_index(self, template_email, record_email):
        template = [_person("1", email=template_email)]
        outcome = IdentifierMatcher().match(template, [{"EmailAddress": record_email, "UT": "WOS:1"}])
        assert outcome.matched == 1
        assert outcome.orphaned == 0

    def test_multi_email_cell(self, template_rows):
        data = [{"EmailAddress": "someone@else.org; K.Bratoeva@mu-varna.bg", "UT": "WOS:8"}]
        outcome = IdentifierMatcher().match(template_rows, data)
        assert [r["PersonID"] for r in outcome.rows if r["UT"] == "WOS:8"] == ["2161"]


class TestUnmatchedAndSkipped:
    def test_orphan_record_dropped(self, template_rows):
        data = [{"EmailAddress": "stranger@nowhere.org", "UT": "WOS:3"}]
        outcome = IdentifierMatcher().match(template_rows, data)
        assert len(outcome.rows) == len(template_rows)
        assert outcome.orphaned == 1

    def test_record_without_ut_skipped(self, template_rows):
        data = [{"EmailAddress": "n.lazarov@mu-varna.bg", "Title": "no accession"}]
        outcome = IdentifierMatcher().match(template_rows, data)
        assert len(outcome.rows) == len(template_rows)
        assert outcome.skipped == 1

    def test_record_id_found_in_any_field(self, template_rows):
        data = [{"EmailAddress": "n.lazarov@mu-varna.bg", "Notes": "WOS:000123"}]
        outcome = IdentifierMatcher().match(template_rows, data)
        assert any(r["UT"] == "WOS:000123" for r in outcome.rows)

    def test_blank_email_does_not_match_blank_template(self, template_rows):
        data = [{"EmailAddress": "", "AuthorID": "", "UT": "WOS:4"}]
        outcome = IdentifierMatcher().match(template_rows, data)
        assert outcome.orphaned == 1
        assert not any(r["UT"] == "WOS:4" for r in outcome.rows)

    def test_synthesize_unmatched(self, template_rows):
        policy = MatchPolicy(synthesize_unmatched=True)
        data = [{
            "PersonID": "", "FirstName": "New", "LastName": "Author",
            "EmailAddress": "new@x.org", "DOI": "10.9/n", "UT": "WOS:10",
        }]
        outcome = IdentifierMatcher(policy).match(template_rows, data)
        synth = [r for r in outcome.rows if r["UT"] == "WOS:10"]
        assert len(synth) == 1
        assert synth[0]["LastName"] == "Author"
        assert synth[0]["DocumentID"] == "10.9/n"
        assert synth[0]["AuthorID"] == ""
        assert outcome.synthesized == 1

    def test_without_seeding(self, template_rows):
        policy = MatchPolicy(seed_template=False)
        data = [{"EmailAddress": "n.lazarov@mu-varna.bg", "UT": "WOS:1"}]
        outcome = IdentifierMatcher(policy).match(template_rows, data)
        assert [r["PersonID"] for r in outcome.rows] == ["2570"]


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

class TestOrdering:
    def test_original_rows_first_then_email(self):
        template = [_person("1", email="b@x.com"), _person("2", email="a@x.com")]
        data = [
            {"EmailAddress": "b@x.com", "UT": "WOS:1"},
            {"EmailAddress": "a@x.com", "UT": "WOS:2"},
        ]
        rows = IdentifierMatcher().match(template, data).rows
        assert [r["UT"] for r in rows[:2]] == ["", ""]
        assert [r["EmailAddress"] for r in rows[2:]] == ["a@x.com", "b@x.com"]

    def test_email_order_is_case_insensitive(self):
        template = [_person("1", email="B@x.com"), _person("2", email="a@x.com")]
        rows = IdentifierMatcher().match(template, []).rows
        assert [r["PersonID"] for r in rows] == ["2", "1"]

    def test_same_email_sorted_by_ut(self):
        template = [_person("1", email="a@x.com")]
        data = [
            {"EmailAddress": "a@x.com", "UT": "WOS:3"},
            {"EmailAddress": "a@x.com", "UT": "WOS:1"},
        ]
        rows = IdentifierMatcher().match(template, data).rows
        assert [r["UT"] for r in rows] == ["", "WOS:1", "WOS:3"]

    def test_email_first_mixes_original_rows(self):
        template = [_person("1", email="b@x.com"), _person("2", email="a@x.com")]
        data = [{"EmailAddress": "a@x.com", "UT": "WOS:1"}]
        rows = IdentifierMatcher(MatchPolicy(sort_strategy="email-first")).match(template, data).rows
        assert [(r["EmailAddress"], r["UT"]) for r in rows] == [
            ("a@x.com", ""), ("a@x.com", "WOS:1"), ("b@x.com", ""),
        ]

    def test_author_id_first(self):
        template = [_person("1", author_id="0000-0002-0000-0000"),
                    _person("2", author_id="0000-0001-0000-0000")]
        rows = IdentifierMatcher(MatchPolicy(sort_strategy="authorId-first")).match(template, []).rows
        assert [r["PersonID"] for r in rows] == ["2", "1"]


def test_collect_columns_first_seen_order():
    rows = [{"b": "1", "a": "2"}, {"a": "3", "c": "4"}]
    assert collect_columns(rows) == ["b", "a", "c"]
