from __future__ import annotations

import typer
from typing import Optional

from pmtgain.io.fit_store import read_fit_summary
from pmtgain.vis.plots import save_channel_pdf_from_h5

app = typer.Typer(help="PMT gain-vs-voltage visualization tools")

@app.command("h5-to-pdf")
def h5_to_pdf(
    h5_path: str = typer.Argument(..., help="Path to <group>_gainvsvoltage.h5"),
    channel: int = typer.Argument(..., help="PMT number (1-based)"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PDF path (defaults to <group>_<channel>_gainvsvoltage.pdf)"),
):
    """Re-render one channel's log-log and linear fit figure from HDF5."""
    try:
        out_pdf = save_channel_pdf_from_h5(h5_path, channel, out_pdf=out)
    except (KeyError, ValueError) as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Wrote {out_pdf}")

@app.command("summary")
def summary(
    h5_path: str = typer.Argument(..., help="Path to <group>_gainvsvoltage.h5"),
):
    """Print the per-channel fit table stored under /fits."""
    cols = read_fit_summary(h5_path)
    typer.echo("PMT  constant     exponent     chi2/ndf        prob")
    for i, ch in enumerate(cols["channel_id"]):
        if not cols["status"][i]:
            typer.echo(f"{int(ch):>3}  skipped")
            continue
        typer.echo(
            f"{int(ch):>3}  {cols['constant'][i]:<11.6g}  {cols['exponent'][i]:<11.6g}  "
            f"{cols['chi_square'][i]:.4g}/{int(cols['ndf'][i]):<8d}  {cols['fit_probability'][i]:.4g}"
        )

if __name__ == "__main__":
    app()
