"""
tests_cli.py — Tests for the CLI (cli.py) and typer entry point (main.py)
Run with:  python -m pytest tests_cli.py -v
"""
import json

import pandas as pd
import pytest
from typer.testing import CliRunner

import cli
from main import app


TEMPLATE = (
    "PersonID,FirstName,LastName,OrganizationID,DocumentID,AuthorID,EmailAddress,OtherNames\n"
    "1,Pat,Quinn,10,,,p@q.com,\n"
    "2,Ana,Ivanova,11,,0000-0001-2345-6789,,\n"
)

DATA = (
    "Email Addresses\tORCIDs\tDOI\tUT (Unique WOS ID)\n"
    "P@Q.com\t\t10.1/a\tWOS:000000000002\n"
    "P@Q.com\t\t10.1/b\tWOS:000000000001\n"
    "x@y.org\t\t10.1/c\tWOS:000000000009\n"
)


@pytest.fixture
def inputs(tmp_path):
    template = tmp_path / "template.csv"
    template.write_text(TEMPLATE, encoding="utf-8")
    data = tmp_path / "savedrecs.txt"
    data.write_text(DATA, encoding="utf-8")
    return template, data


class TestRunReconcile:
    def test_writes_all_outputs(self, inputs, tmp_path):
        template, data = inputs
        out_dir = tmp_path / "out"
        cfg = dict(cli.load_config(str(tmp_path / "none.json")))
        summary = cli.run_reconcile(str(template), [str(data)], cfg, str(out_dir), "both", preview=0)

        assert summary["output_rows"] == 4
        assert summary["status"] == "Processed 4 rows from 1 data files."

        df = pd.read_csv(summary["csv_path"], dtype=str).fillna("")
        assert list(df["UT"]) == ["", "", "WOS:000000000001", "WOS:000000000002"]
        assert set(df[df["UT"] != ""]["PersonID"]) == {"1"}

        xlsx = pd.read_excel(summary["xlsx_path"], sheet_name="Results", dtype=str)
        assert len(xlsx) == 4

        audit = json.loads((out_dir / "audit.json").read_text(encoding="utf-8"))
        assert audit["summary"]["orphaned_data_rows"] == 1
        assert audit["source_files"] == ["template.csv", "savedrecs.txt"]

    def test_csv_only(self, inputs, tmp_path):
        template, data = inputs
        cfg = cli.load_config(str(tmp_path / "none.json"))
        summary = cli.run_reconcile(str(template), [str(data)], cfg, str(tmp_path / "o"), "csv", preview=0)
        assert "csv_path" in summary
        assert "xlsx_path" not in summary

    def test_excel_falls_back_to_csv(self, inputs, tmp_path, monkeypatch):
        monkeypatch.setattr(cli, "HAS_OPENPYXL", False)
        template, data = inputs
        cfg = cli.load_config(str(tmp_path / "none.json"))
        summary = cli.run_reconcile(str(template), [str(data)], cfg, str(tmp_path / "o"), "xlsx", preview=0)
        assert "csv_path" in summary
        assert "xlsx_path" not in summary


class TestMain:
    def test_main_success(self, inputs, tmp_path):
        template, data = inputs
        out_dir = tmp_path / "out"
        cli.main([str(template), str(data), "--out", str(out_dir),
                  "--format", "csv", "--config", str(tmp_path / "none.json")])
        assert (out_dir / "populated_template.csv").exists()

    def test_main_synthesize_flag(self, inputs, tmp_path):
        template, data = inputs
        out_dir = tmp_path / "out"
        cli.main([str(template), str(data), "--out", str(out_dir), "--format", "csv",
                  "--synthesize-unmatched", "--config", str(tmp_path / "none.json")])
        df = pd.read_csv(out_dir / "populated_template.csv", dtype=str).fillna("")
        assert "WOS:000000000009" in set(df["UT"])

    def test_no_synthesize_flag_overrides_config(self, inputs, tmp_path):
        template, data = inputs
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"synthesize_unmatched": True}), encoding="utf-8")
        out_dir = tmp_path / "out"
        cli.main([str(template), str(data), "--out", str(out_dir), "--format", "csv",
                  "--no-synthesize-unmatched", "--config", str(config)])
        df = pd.read_csv(out_dir / "populated_template.csv", dtype=str).fillna("")
        assert "WOS:000000000009" not in set(df["UT"])

    def test_config_string_false_is_false(self, inputs, tmp_path):
        template, data = inputs
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"synthesize_unmatched": "false"}), encoding="utf-8")
        out_dir = tmp_path / "out"
        cli.main([str(template), str(data), "--out", str(out_dir), "--format", "csv",
                  "--config", str(config)])
        df = pd.read_csv(out_dir / "populated_template.csv", dtype=str).fillna("")
        assert "WOS:000000000009" not in set(df["UT"])

    def test_missing_file_exits(self, inputs, tmp_path):
        template, _ = inputs
        with pytest.raises(SystemExit) as info:
            cli.main([str(template), str(tmp_path / "missing.txt"),
                      "--out", str(tmp_path / "out"), "--config", str(tmp_path / "none.json")])
        assert info.value.code == 1
        assert not (tmp_path / "out").exists()

    def test_empty_template_exits(self, inputs, tmp_path):
        _, data = inputs
        empty = tmp_path / "empty.csv"
        empty.write_text("\n\n", encoding="utf-8")
        with pytest.raises(SystemExit) as info:
            cli.main([str(empty), str(data), "--out", str(tmp_path / "out"),
                      "--config", str(tmp_path / "none.json")])
        assert info.value.code == 1


class TestTyperEntryPoint:
    def test_run(self, inputs, tmp_path):
        template, data = inputs
        out_dir = tmp_path / "out"
        result = CliRunner().invoke(app, [
            str(template), str(data), "--out-dir", str(out_dir),
            "--format", "csv", "--config", str(tmp_path / "none.json"),
        ])
        assert result.exit_code == 0, result.output
        assert (out_dir / "populated_template.csv").exists()

    def test_run_no_synthesize_overrides_config(self, inputs, tmp_path):
        template, data = inputs
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"synthesize_unmatched": True}), encoding="utf-8")
        out_dir = tmp_path / "out"
        result = CliRunner().invoke(app, [
            str(template), str(data), "--out-dir", str(out_dir), "--format", "csv",
            "--config", str(config), "--no-synthesize-unmatched",
        ])
        assert result.exit_code == 0, result.output
        df = pd.read_csv(out_dir / "populated_template.csv", dtype=str).fillna("")
        assert "WOS:000000000009" not in set(df["UT"])

    def test_run_error(self, tmp_path):
        template = tmp_path / "t.csv"
        template.write_text("", encoding="utf-8")
        data = tmp_path / "d.txt"
        data.write_text(DATA, encoding="utf-8")
        result = CliRunner().invoke(app, [
            str(template), str(data), "--out-dir", str(tmp_path / "out"),
            "--config", str(tmp_path / "none.json"),
        ])
        assert result.exit_code == 1
