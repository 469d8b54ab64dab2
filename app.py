"""
app.py — WoS Template Reconciliation Tool · Streamlit GUI

Run with:
  streamlit run app.py
"""

from __future__ import annotations

import logging
import os
import sys

import streamlit as st

# Make sure core.py is importable from same directory
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core import (
    DEFAULT_CONFIG,
    InputFile, reconcile, format_status, results_dataframe,
    build_results_csv, build_results_excel, build_preview_html, build_audit_json,
    ReconciliationError,
)
from identifier_matching import MATCH_KEYS, SORT_STRATEGIES, MatchPolicy

logger = logging.getLogger("wos_template.app")

try:
    import openpyxl  # noqa: F401
    HAS_OPENPYXL = True
except ImportError:
    HAS_OPENPYXL = False

# ─── Page & Theme Setup ───────────────────────────────────────────────────────

st.set_page_config(
    page_title="WoS Template Reconciliation",
    page_icon="🔗",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
.tool-header {
    background: linear-gradient(135deg, #1a3a5c 0%, #1a5276 100%);
    color: #fff;
    padding: 1.2rem 1.6rem;
    border-radius: 12px;
    margin-bottom: 1rem;
}
.tool-header h1 { margin: 0; font-size: 1.6rem; }
.tool-header .sub { color: #a8d4f5; margin: 0.35rem 0 0; font-size: 0.92rem; }
.sec-head {
    background: #eaf2fb;
    border-left: 5px solid #1a5276;
    padding: 0.55rem 1rem;
    border-radius: 0 8px 8px 0;
    margin: 1.2rem 0 0.6rem;
    font-weight: 700;
    color: #1a3a5c;
}
.preview-table table { border-collapse: collapse; font-size: 0.82rem; }
.preview-table th, .preview-table td { border: 1px solid #d0dde8; padding: 3px 8px; }
</style>
""", unsafe_allow_html=True)

# ─── Session State Init ───────────────────────────────────────────────────────

_DEFAULTS = {
    "cfg": DEFAULT_CONFIG.copy,
    "result": None,
    "policy": None,
    "source_files": [],
    "error": "",
}

for k, v in _DEFAULTS.items():
    if k not in st.session_state:
        st.session_state[k] = v() if callable(v) else v


def reset_state():
    for k, v in _DEFAULTS.items():
        st.session_state[k] = v() if callable(v) else v


# ─── Sidebar ─────────────────────────────────────────────────────────────────

with st.sidebar:
    st.markdown("### ⚙️ Matching Policy")

    cfg = st.session_state.cfg
    cfg["match_keys"] = st.selectbox(
        "Match on", list(MATCH_KEYS),
        index=list(MATCH_KEYS).index(cfg.get("match_keys", "both")),
        help="Email, author id (ORCID) or both (a row matches if either does)",
    )
    cfg["sort_strategy"] = st.selectbox(
        "Sort output", list(SORT_STRATEGIES),
        index=list(SORT_STRATEGIES).index(cfg.get("sort_strategy", "original-first")),
    )
    cfg["synthesize_unmatched"] = st.checkbox(
        "Add rows for unmatched records",
        value=bool(cfg.get("synthesize_unmatched", False)),
        help="Off: records matching no template row are dropped",
    )

    st.markdown("---")
    if st.button("🔄 Reset All", width='stretch'):
        reset_state()
        st.rerun()

# ─── Header ──────────────────────────────────────────────────────────────────

st.markdown("""
<div class="tool-header">
  <h1>🔗 WoS Template Reconciliation</h1>
  <div class="sub">Attach Web of Science records to a template roster by email and ORCID</div>
</div>
""", unsafe_allow_html=True)

tab_load, tab_output, tab_help = st.tabs([
    "📂 1 · Load & Match",
    "📤 2 · Results & Export",
    "❓ Help",
])

# ══════════════════════════════════════════════════════════════════════════════
# TAB 1 — LOAD & MATCH
# ══════════════════════════════════════════════════════════════════════════════

with tab_load:
    st.markdown('<div class="sec-head">Upload Input Files</div>', unsafe_allow_html=True)

    col1, col2 = st.columns(2)
    with col1:
        st.markdown("**👥 Template roster**")
        template_file = st.file_uploader("Template CSV", type=["csv", "txt", "tsv"], key="tpl_up")
        if template_file:
            st.success(f"✓ {template_file.name}")
    with col2:
        st.markdown("**📋 WoS data files**")
        data_uploads = st.file_uploader(
            "WoS exports", type=["csv", "txt", "tsv"],
            accept_multiple_files=True, key="data_up",
        )
        if data_uploads:
            st.success(f"✓ {len(data_uploads)} file(s)")

    st.markdown("---")

    proc_btn = st.button(
        "🚀  Match & Merge",
        type="primary",
        disabled=not (template_file and data_uploads),
        width='stretch',
    )

    if proc_btn:
        policy = MatchPolicy.from_config(st.session_state.cfg)
        with st.spinner("Parsing files and matching records…"):
            try:
                template = InputFile(template_file.name, template_file.getvalue())
                data_files = [InputFile(f.name, f.getvalue()) for f in data_uploads]
                result = reconcile(template, data_files, policy)
            except ReconciliationError as exc:
                logger.error("Run aborted: %s", exc)
                st.session_state.result = None
                st.session_state.error = str(exc)
            else:
                st.session_state.result = result
                st.session_state.policy = policy
                st.session_state.source_files = [template.name] + [f.name for f in data_files]
                st.session_state.error = ""

    if st.session_state.error:
        st.error(f"Error processing files: {st.session_state.error}")
    elif st.session_state.result is not None:
        result = st.session_state.result
        st.success(f"📊 {format_status(result)}")
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Template rows", result.template_rows)
        c2.metric("Data rows", result.data_rows)
        c3.metric("Matched records", result.matched)
        c4.metric("Unmatched records", result.orphaned)
        if result.skipped_files:
            st.warning(f"Empty files skipped: {', '.join(result.skipped_files)}")
        st.info("➡️ Go to Tab 2 to preview and export.")

# ══════════════════════════════════════════════════════════════════════════════
# TAB 2 — RESULTS & EXPORT
# ══════════════════════════════════════════════════════════════════════════════

with tab_output:
    result = st.session_state.result
    if result is None:
        st.info("⬅️ Please load and process files in **Tab 1** first.")
    else:
        cfg = st.session_state.cfg
        st.markdown('<div class="sec-head">Preview</div>', unsafe_allow_html=True)
        st.caption(format_status(result))
        st.dataframe(results_dataframe(result), width='stretch', height=400)

        with st.expander("Table view", expanded=False):
            st.markdown(
                '<div class="preview-table">'
                + build_preview_html(result.rows, result.columns, limit=int(cfg.get("preview_rows", 20)))
                + "</div>",
                unsafe_allow_html=True,
            )

        st.markdown('<div class="sec-head">📤 Export Files</div>', unsafe_allow_html=True)
        csv_bytes = build_results_csv(result.rows, result.columns).encode("utf-8")

        st.download_button(
            label="⬇️  Download CSV",
            data=csv_bytes,
            file_name=cfg.get("csv_filename", "populated_template.csv"),
            mime="text/csv",
            width='stretch',
        )

        if HAS_OPENPYXL:
            st.download_button(
                label="⬇️  Download Excel",
                data=build_results_excel(result.rows, result.columns, cfg.get("excel_sheet", "Results")),
                file_name=cfg.get("excel_filename", "populated_template.xlsx"),
                mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                width='stretch',
            )
        else:
            st.warning("openpyxl not installed — Excel export unavailable, use the CSV download instead.")

        audit_json = build_audit_json(result, st.session_state.policy, st.session_state.source_files)
        st.download_button(
            label="⬇️  Download Audit Log (JSON)",
            data=audit_json.encode("utf-8"),
            file_name="audit.json",
            mime="application/json",
            width='stretch',
        )

# ══════════════════════════════════════════════════════════════════════════════
# TAB 3 — HELP
# ══════════════════════════════════════════════════════════════════════════════

with tab_help:
    st.markdown("""
## WoS Template Reconciliation · User Guide

### Input Files

**Template roster** (comma- or tab-delimited)
- Columns: `PersonID`, `FirstName`, `LastName`, `OrganizationID`, `DocumentID`,
  `AuthorID`, `EmailAddress`, `OtherNames`
- Header variants such as `Email Addresses` or `ORCIDs` are recognised

**WoS data files** (one or more)
- Export from WoS as "Tab-delimited" or CSV
- Used columns: `Email Addresses`, `ORCIDs`, `UT (Unique WOS ID)`, `DOI`

---

### Matching

| Step | What happens |
|------|--------------|
| 1 | Every template row is kept as-is at the top of the output |
| 2 | Records without a UT (`WOS:...`) are ignored |
| 3 | A record matches a template row when any of its emails **or** any of its ORCIDs equals the row's |
| 4 | Each match adds a copy of the template row carrying the record's UT and DOI |
| 5 | Records with no match are dropped (unless *Add rows for unmatched records* is on) |

---

### CLI Alternative

```bash
python cli.py template.csv savedrecs.txt --format both
```
""")
