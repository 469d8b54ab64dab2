import typer
from pathlib import Path
from typing import List, Optional

from cli import run_reconcile, cprint
from core import load_config, ReconciliationError

app = typer.Typer(help="WoS template reconciliation tool")

@app.command()
def run(
    template: Path = typer.Argument(..., help="Template roster CSV"),
    data: List[Path] = typer.Argument(..., help="WoS data file(s)"),
    config: Path = typer.Option("config.json"),
    out_dir: Path = typer.Option("output"),
    fmt: str = typer.Option("both", "--format", help="csv, xlsx or both"),
    synthesize_unmatched: Optional[bool] = typer.Option(
        None, "--synthesize-unmatched/--no-synthesize-unmatched",
        help="Keep records with no template match (overrides config)",
    ),
):
    cfg = load_config(str(config))
    if synthesize_unmatched is not None:
        cfg["synthesize_unmatched"] = synthesize_unmatched
    try:
        run_reconcile(str(template), [str(p) for p in data], cfg, str(out_dir), fmt)
    except ReconciliationError as exc:
        cprint(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
