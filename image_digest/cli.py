from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .hash_compute import SourceReadError, compute_report
from .logs import ensure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False)


@app.command()
def digest(
    image: Path = typer.Option(..., "--image", "-i", help="Path of the squashfs or MCUboot image"),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Image format (squashfs, mcuboot); detected from magic if omitted"),
    block_size: Optional[int] = typer.Option(None, "--block-size", min=1, help="Read chunk size; defaults to the image's block size"),
    expect: Optional[str] = typer.Option(None, "--expect", help="Expected SHA-256 hex digest; exit 2 on mismatch"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log chunk and boundary details"),
) -> None:
    """Calculate SHA-256 over the meaningful bytes of a padded image."""
    ensure_logging("DEBUG" if verbose else None)

    try:
        size_bytes = image.stat().st_size
        with image.open("rb") as f:
            _, report = compute_report(f, size_bytes, kind=kind, block_size=block_size)
    except (OSError, ValueError, SourceReadError) as e:
        # ValueError covers LayoutError and a non-positive DIGEST_BLOCK_SIZE
        logger.error("Failed to digest %s: %s", image, e)
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Data size for SHA-256: {report.bytes_used}")
    typer.echo(f"Padding size: {report.padding_bytes}")
    typer.echo(f"SHA-256 digest is {report.sha256}")

    if expect is not None and expect.strip().lower() != report.sha256:
        typer.echo(f"digest mismatch: expected {expect.strip().lower()}", err=True)
        raise typer.Exit(code=2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
