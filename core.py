"""
core.py — WoS Template Reconciliation Tool
Core processing engine shared by CLI, typer entry point and Streamlit GUI.

Pipeline:
  raw bytes → parse_delimited → normalize_rows → IdentifierMatcher → export
"""

from __future__ import annotations

import codecs
import csv
import html
import io
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from functools import reduce
from pathlib import Path
from typing import Optional, List, Dict, Sequence, Union

from identifier_matching import (
    IdentifierMatcher, MatchPolicy, build_identifier_index, collect_columns,
)
from normalize import fill_canonical_fields, normalize_rows

logger = logging.getLogger("wos_template.core")

Content = Union[bytes, str]

# ─── Default Configuration ────────────────────────────────────────────────────

DEFAULT_CONFIG: dict = {
    # Matching policy (see identifier_matching.MatchPolicy)
    "synthesize_unmatched": False,
    "match_keys": "both",
    "sort_strategy": "original-first",
    "seed_template": True,
    # Output
    "output_dir": "output",
    "csv_filename": "populated_template.csv",
    "excel_filename": "populated_template.xlsx",
    "excel_sheet": "Results",
    "preview_rows": 20,
}


def load_config(path: str = "config.json") -> dict:
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            cfg = json.load(f)
        return {**DEFAULT_CONFIG, **cfg}
    return DEFAULT_CONFIG.copy()


# ─── Errors ───────────────────────────────────────────────────────────────────

class ReconciliationError(Exception):
    """A terminal, user-facing failure of one reconciliation run."""


class EmptyTemplateError(ReconciliationError):
    def __init__(self, message: str = "Template file is empty."):
        super().__init__(message)


class NoValidDataError(ReconciliationError):
    def __init__(self, message: str = "No valid data rows found in the data files."):
        super().__init__(message)


class NoOutputError(ReconciliationError):
    def __init__(self, message: str = "Matching produced no output rows."):
        super().__init__(message)


class FileReadError(ReconciliationError):
    def __init__(self, name: str, reason: str = ""):
        self.name = name
        detail = f": {reason}" if reason else ""
        super().__init__(f"Could not read file {name}{detail}")


# ─── Input Files ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InputFile:
    name: str
    content: Content


def read_input_file(path: Union[str, Path]) -> InputFile:
    """Read a file's bytes; any OS-level failure aborts the run."""
    p = Path(path)
    try:
        return InputFile(p.name, p.read_bytes())
    except OSError as exc:
        raise FileReadError(str(path), exc.strerror or str(exc)) from exc


def decode_content(content: Content) -> str:
    """
    Bytes → text, dropping any byte-order mark.

    UTF-16 input (WoS "Tab-delimited (Win)" export) is recognised by its BOM;
    everything else is read as UTF-8, undecodable bytes replaced.
    """
    if isinstance(content, bytes):
        if content.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
            return content.decode("utf-16", errors="replace")
        return content.decode("utf-8-sig", errors="replace")
    return content[1:] if content.startswith("\ufeff") else content


# ─── Delimited-Text Parsing ───────────────────────────────────────────────────

def detect_delimiter(first_line: str) -> str:
    """Comma if the first line has one, tab otherwise."""
    return "," if "," in first_line else "\t"


def split_delimited_line(line: str, delimiter: str = ",") -> List[str]:
    """
    Split one line into trimmed fields.

    A double quote toggles the quoted state unless it follows a backslash
    (then both characters are kept literally). Inside quotes the delimiter is
    plain text and a doubled quote stands for one literal quote.

    Known limitation: a value ending in a backslash does not survive a CSV
    round-trip, because the backslash escapes the closing quote the writer
    adds ("C:\\" is written as "C:\\" and re-read as an open field).
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"' and (i == 0 or line[i - 1] != "\\"):
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current).strip())
    return fields


def parse_delimited(content: Content) -> List[Dict[str, str]]:
    """
    Parse comma- or tab-delimited text with a header row into row dicts.

    Every row has exactly one key per header: short rows are padded with "",
    surplus fields are dropped, and a repeated header keeps the last value.
    Blank lines are ignored. No data lines → [].
    """
    text = decode_content(content).strip()
    if not text:
        return []

    lines = text.split("\n")
    delimiter = detect_delimiter(lines[0])
    headers = [h.strip() for h in split_delimited_line(lines[0], delimiter)]

    rows: List[Dict[str, str]] = []
    for line in lines[1:]:
        if not line.strip():
            continue
        values = split_delimited_line(line, delimiter)
        row: Dict[str, str] = {}
        for idx, header in enumerate(headers):
            row[header] = values[idx] if idx < len(values) else ""
        rows.append(row)
    return rows


# ─── Reconciliation ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DataAccumulator:
    """Data rows gathered so far, threaded through the fold over data files."""
    rows: tuple = ()
    files_read: int = 0
    files_skipped: tuple = ()


def _accumulate_data_file(acc: DataAccumulator, data_file: InputFile) -> DataAccumulator:
    rows = parse_delimited(data_file.content)
    if not rows:
        logger.warning("Data file %s has no rows, skipping.", data_file.name)
        return DataAccumulator(acc.rows, acc.files_read + 1,
                               acc.files_skipped + (data_file.name,))
    logger.info("Read %d rows from %s", len(rows), data_file.name)
    return DataAccumulator(acc.rows + tuple(rows), acc.files_read + 1, acc.files_skipped)


def _as_input_file(item: Union[InputFile, Content], default_name: str) -> InputFile:
    if isinstance(item, InputFile):
        return item
    return InputFile(default_name, item)


@dataclass
class ReconciliationResult:
    rows: List[Dict[str, str]]
    columns: List[str]
    template_rows: int
    data_rows: int
    data_files: int
    matched: int = 0
    orphaned: int = 0
    skipped: int = 0
    synthesized: int = 0
    skipped_files: List[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "template_rows": self.template_rows,
            "data_files": self.data_files,
            "data_rows": self.data_rows,
            "matched_data_rows": self.matched,
            "orphaned_data_rows": self.orphaned,
            "rows_without_ut": self.skipped,
            "synthesized_rows": self.synthesized,
            "output_rows": len(self.rows),
            "skipped_files": list(self.skipped_files),
        }


def reconcile(template: Union[InputFile, Content],
              data_files: Sequence[Union[InputFile, Content]],
              policy: Optional[MatchPolicy] = None) -> ReconciliationResult:
    """
    Match every data file against the template and assemble the output table.

    Raises
    ------
    EmptyTemplateError  template has no rows (checked before any matching)
    NoValidDataError    no data files, or none of them has a row
    NoOutputError       matching produced no rows at all
    """
    policy = policy or MatchPolicy()
    template_file = _as_input_file(template, "template")

    template_rows = [fill_canonical_fields(r)
                     for r in normalize_rows(parse_delimited(template_file.content))]
    if not template_rows:
        raise EmptyTemplateError()
    logger.info("Template %s: %d rows", template_file.name, len(template_rows))

    files = [_as_input_file(f, f"data file {i}") for i, f in enumerate(data_files, 1)]
    if not files:
        raise NoValidDataError("No data files selected.")

    acc = reduce(_accumulate_data_file, files, DataAccumulator())
    if not acc.rows:
        raise NoValidDataError()
    data_rows = normalize_rows(acc.rows)

    index = build_identifier_index(template_rows)
    outcome = IdentifierMatcher(policy).match(template_rows, data_rows, index)
    if not outcome.rows:
        raise NoOutputError()

    return ReconciliationResult(
        rows=outcome.rows,
        columns=collect_columns(outcome.rows),
        template_rows=len(template_rows),
        data_rows=len(data_rows),
        data_files=acc.files_read,
        matched=outcome.matched,
        orphaned=outcome.orphaned,
        skipped=outcome.skipped,
        synthesized=outcome.synthesized,
        skipped_files=list(acc.files_skipped),
    )


# ─── Export Formatters ────────────────────────────────────────────────────────

def format_status(result: ReconciliationResult) -> str:
    return f"Processed {len(result.rows)} rows from {result.data_files} data files."


def build_results_csv(rows: List[Dict[str, str]], columns: Optional[List[str]] = None) -> str:
    """Every field double-quoted, embedded quotes doubled."""
    columns = columns or collect_columns(rows)
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([row.get(c, "") or "" for c in columns])
    return output.getvalue()


def build_results_excel(rows: List[Dict[str, str]], columns: Optional[List[str]] = None,
                        sheet_name: str = "Results") -> bytes:
    import openpyxl
    from openpyxl.styles import Font

    columns = columns or collect_columns(rows)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name

    ws.append(columns)
    for row in rows:
        ws.append([row.get(c, "") or "" for c in columns])

    for cell in ws[1]:
        cell.font = Font(bold=True)

    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def build_preview_html(rows: List[Dict[str, str]], columns: Optional[List[str]] = None,
                       limit: Optional[int] = None) -> str:
    if not rows:
        return "<p>No results.</p>"
    columns = columns or collect_columns(rows)
    shown = rows if limit is None else rows[:limit]

    parts = ["<table><thead><tr>"]
    parts.extend(f"<th>{html.escape(c)}</th>" for c in columns)
    parts.append("</tr></thead><tbody>")
    for row in shown:
        parts.append("<tr>")
        parts.extend(f"<td>{html.escape(row.get(c, '') or '')}</td>" for c in columns)
        parts.append("</tr>")
    parts.append("</tbody></table>")
    return "".join(parts)


def results_dataframe(result: ReconciliationResult):
    import pandas as pd
    return pd.DataFrame(result.rows, columns=result.columns).fillna("")


def build_audit_json(result: ReconciliationResult, policy: MatchPolicy,
                     source_files: Optional[List[str]] = None) -> str:
    """Generates the audit JSON structure for export."""
    data = {
        "generated_at": datetime.now().isoformat(),
        "policy": policy.as_dict(),
        "source_files": source_files or [],
        "summary": result.summary(),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)
