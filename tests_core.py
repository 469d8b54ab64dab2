"""
tests_core.py — Unit tests for core.py (parsing, reconcile pipeline, exports)
Run with:  python -m pytest tests_core.py -v
"""
import codecs
import io
import json

import openpyxl
import pytest

from core import (
    DEFAULT_CONFIG,
    load_config,
    decode_content,
    detect_delimiter,
    split_delimited_line,
    parse_delimited,
    reconcile,
    read_input_file,
    format_status,
    results_dataframe,
    build_results_csv,
    build_results_excel,
    build_preview_html,
    build_audit_json,
    InputFile,
    EmptyTemplateError,
    NoValidDataError,
    NoOutputError,
    FileReadError,
    ReconciliationError,
)
from identifier_matching import MatchPolicy


TEMPLATE_CSV = (
    "PersonID,FirstName,LastName,OrganizationID,DocumentID,AuthorID,EmailAddress,OtherNames\n"
    "2570,Nikolay,Lazarov,10,,,n.lazarov@mu-varna.bg,\n"
    "2548,Viktor,Velyanov,11,,0000-0001-2345-6789,,\n"
    "9001,Maria,Georgieva,12,,,,\n"
)

WOS_TSV = (
    "PT\tAuthor Full Names\tEmail Addresses\tORCIDs\tDOI\tUT (Unique WOS ID)\n"
    "J\tLazarov, Nikolay\tN.Lazarov@mu-varna.bg; other@x.org\t\t10.1/a\tWOS:000000000001\n"
    "J\tVelyanov, Viktor\t\tVelyanov, Viktor/0000-0001-2345-6789\t10.1/b\tWOS:000000000002\n"
    "J\tStranger, S\ts@nowhere.org\t\t10.1/c\tWOS:000000000003\n"
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("line,expected", [
    ("a,b,c",      ","),
    ("a\tb\tc",    "\t"),
    ("a\tb,c",     ","),
    ("single",     "\t"),
])
def test_detect_delimiter(line, expected):
    assert detect_delimiter(line) == expected


class TestSplitLine:
    def test_quoted_delimiter_is_literal(self):
        assert split_delimited_line('x,"a,b",y') == ["x", "a,b", "y"]

    def test_fields_are_trimmed(self):
        assert split_delimited_line(" a , b ,c ") == ["a", "b", "c"]

    def test_backslash_escaped_quote_kept(self):
        assert split_delimited_line(r'a\"b,c') == [r'a\"b', "c"]

    def test_doubled_quote_inside_quotes(self):
        assert split_delimited_line('"say ""hi""",x') == ['say "hi"', "x"]

    def test_unterminated_quote_swallows_rest(self):
        assert split_delimited_line('a,"b,c') == ["a", "b,c"]

    def test_tab_delimiter(self):
        assert split_delimited_line("a\t\"b\tc\"\td", "\t") == ["a", "b\tc", "d"]


class TestParseDelimited:
    def test_short_rows_padded(self):
        rows = parse_delimited("a,b,c\n1\n")
        assert rows == [{"a": "1", "b": "", "c": ""}]

    def test_extra_fields_dropped(self):
        assert parse_delimited("a,b\n1,2,3,4") == [{"a": "1", "b": "2"}]

    def test_blank_lines_skipped(self):
        rows = parse_delimited("a,b\n\n1,2\n   \n3,4\n")
        assert [r["a"] for r in rows] == ["1", "3"]

    def test_crlf_line_endings(self):
        assert parse_delimited("a,b\r\n1,2\r\n") == [{"a": "1", "b": "2"}]

    def test_repeated_header_overwrites(self):
        assert parse_delimited("a,a\n1,2") == [{"a": "2"}]

    def test_headers_trimmed(self):
        assert list(parse_delimited(" a , b \n1,2")[0]) == ["a", "b"]

    def test_tab_file(self):
        rows = parse_delimited(WOS_TSV)
        assert len(rows) == 3
        assert rows[1]["ORCIDs"] == "Velyanov, Viktor/0000-0001-2345-6789"

    def test_delimiter_from_first_line_only(self):
        # header has no comma → tab, so the comma in the data stays inside a field
        rows = parse_delimited("a\tb\n1,2\t3")
        assert rows == [{"a": "1,2", "b": "3"}]

    @pytest.mark.parametrize("text", ["", "   \n\n  ", "a,b,c\n", "a,b\n\n \n"])
    def test_empty_input(self, text):
        assert parse_delimited(text) == []

    def test_utf8_bom_stripped(self):
        rows = parse_delimited(codecs.BOM_UTF8 + b"PersonID,Email\n1,x@y.com")
        assert list(rows[0]) == ["PersonID", "Email"]

    def test_str_bom_stripped(self):
        rows = parse_delimited("\ufeffPersonID\n1")
        assert rows == [{"PersonID": "1"}]

    def test_utf16_input(self):
        rows = parse_delimited("UT\tTI\nWOS:1\tÄbc".encode("utf-16"))
        assert rows == [{"UT": "WOS:1", "TI": "Äbc"}]


def test_decode_content_replaces_bad_bytes():
    assert decode_content(b"ok\xff") == "ok\ufffd"


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------

class TestReconcile:
    def test_end_to_end(self):
        result = reconcile(TEMPLATE_CSV.encode(), [WOS_TSV.encode()])

        assert result.template_rows == 3
        assert result.data_rows == 3
        assert result.data_files == 1
        assert result.matched == 2
        assert result.orphaned == 1
        assert len(result.rows) == 5

        originals = result.rows[:3]
        assert all(r["UT"] == "" for r in originals)
        merged = {r["PersonID"]: r for r in result.rows[3:]}
        assert merged["2570"]["UT"] == "WOS:000000000001"
        assert merged["2570"]["DocumentID"] == "10.1/a"
        assert merged["2548"]["UT"] == "WOS:000000000002"
        assert merged["2548"]["OrganizationID"] == "11"

    def test_columns_are_first_seen_union(self):
        result = reconcile(TEMPLATE_CSV, [WOS_TSV])
        assert result.columns == [
            "PersonID", "FirstName", "LastName", "OrganizationID", "DocumentID",
            "AuthorID", "EmailAddress", "OtherNames", "UT",
        ]
        assert all(list(r) == result.columns for r in result.rows)

    def test_template_without_canonical_columns_is_filled(self):
        template = "PersonID,FirstName,LastName,OrganizationID,AuthorID,EmailAddress\n" \
                   "1,Pat,Quinn,10,,p@q.com\n"
        data = "Email Addresses,UT\nP@Q.com,WOS:1\n"
        result = reconcile(template, [data])

        seeded, merged = result.rows
        assert seeded["UT"] == ""
        assert seeded["DocumentID"] == ""
        assert seeded["OtherNames"] == ""
        assert merged["UT"] == "WOS:1"
        assert result.columns[-3:] == ["DocumentID", "OtherNames", "UT"]

    def test_template_extra_columns_kept_before_canonical_fill(self):
        result = reconcile("Email,Department\na@b.com,Anatomy\n", ["UT,Email Addresses\nWOS:1,a@b.com\n"])
        assert result.columns[:2] == ["EmailAddress", "Department"]
        assert result.rows[0]["Department"] == "Anatomy"
        assert result.rows[0]["PersonID"] == ""

    def test_data_files_appended_in_order(self):
        first = "Email Addresses,UT\nn.lazarov@mu-varna.bg,WOS:2\n"
        second = "Email Addresses,UT\nn.lazarov@mu-varna.bg,WOS:1\n"
        result = reconcile(TEMPLATE_CSV, [first, second], MatchPolicy(sort_strategy="authorId-first"))
        merged = [r["UT"] for r in result.rows if r["UT"]]
        assert merged == ["WOS:2", "WOS:1"]
        assert result.data_files == 2

    def test_empty_data_file_skipped(self):
        result = reconcile(TEMPLATE_CSV, [InputFile("empty.csv", b""), InputFile("wos.txt", WOS_TSV)])
        assert result.skipped_files == ["empty.csv"]
        assert result.data_files == 2

    def test_synthesize_policy(self):
        result = reconcile(TEMPLATE_CSV, [WOS_TSV], MatchPolicy(synthesize_unmatched=True))
        assert len(result.rows) == 6
        assert any(r["EmailAddress"] == "s@nowhere.org" for r in result.rows)

    def test_blank_template_raises_before_matching(self):
        with pytest.raises(EmptyTemplateError):
            reconcile(b"   \n\n", [WOS_TSV])

    def test_header_only_template_is_empty(self):
        with pytest.raises(EmptyTemplateError):
            reconcile("PersonID,EmailAddress\n", [WOS_TSV])

    def test_no_data_files(self):
        with pytest.raises(NoValidDataError):
            reconcile(TEMPLATE_CSV, [])

    def test_all_data_files_empty(self):
        with pytest.raises(NoValidDataError):
            reconcile(TEMPLATE_CSV, ["", "UT\n"])

    def test_no_output(self):
        data = "Email Addresses,UT\nnobody@x.org,WOS:1\n"
        with pytest.raises(NoOutputError):
            reconcile(TEMPLATE_CSV, [data], MatchPolicy(seed_template=False))

    def test_errors_share_base_class(self):
        for exc in (EmptyTemplateError, NoValidDataError, NoOutputError):
            assert issubclass(exc, ReconciliationError)
        assert issubclass(FileReadError, ReconciliationError)


def test_read_input_file_missing(tmp_path):
    with pytest.raises(FileReadError) as info:
        read_input_file(tmp_path / "missing.csv")
    assert "missing.csv" in str(info.value)


def test_read_input_file(tmp_path):
    path = tmp_path / "t.csv"
    path.write_bytes(b"a,b\n1,2\n")
    assert read_input_file(path) == InputFile("t.csv", b"a,b\n1,2\n")


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

@pytest.fixture
def result():
    return reconcile(TEMPLATE_CSV, [WOS_TSV])


class TestCsvExport:
    def test_all_fields_quoted(self):
        out = build_results_csv([{"a": "1", "b": ""}], ["a", "b"])
        assert out == '"a","b"\n"1",""\n'

    def test_quote_doubled_and_reparsed(self):
        rows = [{"Name": 'Say "hi", please', "UT": "WOS:1"}]
        out = build_results_csv(rows, ["Name", "UT"])
        assert '"Say ""hi"", please"' in out
        assert parse_delimited(out) == rows

    def test_missing_cells_empty(self):
        out = build_results_csv([{"a": "1"}, {"b": "2"}])
        assert out.splitlines() == ['"a","b"', '"1",""', '"","2"']

    def test_trailing_backslash_does_not_round_trip(self):
        # the backslash escapes the closing quote, so the field stays open
        rows = [{"Path": "C:\\", "UT": "WOS:1"}]
        out = build_results_csv(rows, ["Path", "UT"])
        assert parse_delimited(out) == [{"Path": 'C:\\",WOS:1', "UT": ""}]

    def test_result_round_trip(self, result):
        expected = [{c: r.get(c, "") for c in result.columns} for r in result.rows]
        assert parse_delimited(build_results_csv(result.rows, result.columns)) == expected


def test_excel_export(result):
    data = build_results_excel(result.rows, result.columns)
    wb = openpyxl.load_workbook(io.BytesIO(data))
    assert wb.sheetnames == ["Results"]
    ws = wb["Results"]
    assert [c.value for c in ws[1]] == result.columns
    assert ws.max_row == len(result.rows) + 1
    assert ws[1][0].font.bold


def test_preview_html_escapes():
    html_out = build_preview_html([{"<b>": "x & <script>"}])
    assert "&lt;b&gt;" in html_out
    assert "x &amp; &lt;script&gt;" in html_out
    assert "<script>" not in html_out


def test_preview_html_empty():
    assert build_preview_html([]) == "<p>No results.</p>"


def test_preview_html_limit(result):
    assert build_preview_html(result.rows, result.columns, limit=2).count("<tr>") == 3


def test_status_line(result):
    assert format_status(result) == "Processed 5 rows from 1 data files."


def test_results_dataframe(result):
    df = results_dataframe(result)
    assert list(df.columns) == result.columns
    assert len(df) == 5


def test_audit_json(result):
    audit = json.loads(build_audit_json(result, MatchPolicy(), ["t.csv", "w.txt"]))
    assert audit["policy"]["sort_strategy"] == "original-first"
    assert audit["summary"]["output_rows"] == 5
    assert audit["summary"]["orphaned_data_rows"] == 1
    assert audit["source_files"] == ["t.csv", "w.txt"]


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def test_load_config_defaults(tmp_path):
    assert load_config(str(tmp_path / "nope.json")) == DEFAULT_CONFIG


def test_load_config_merges(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"synthesize_unmatched": True}), encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg["synthesize_unmatched"] is True
    assert cfg["sort_strategy"] == "original-first"
