# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Analyze PQ-encoded HDR PNGs from the command line.

For every input file: decode, validate the color profile, resolve the
headroom with the selected method, tone map and report clipping.

Examples:
  hdr-headroom photo.png                          # PeakMax, ratio 0.2
  hdr-headroom --method percentile -p 0.99 *.png  # 99th percentile
  hdr-headroom --method direct --source-headroom 4 photo.png
  hdr-headroom --save-overlay out/ photo.png      # write overlay previews
"""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Final

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .clipping import ClipCategory
from .config import EngineConfig
from .engine import HeadroomEngine, ImageResult
from .errors import HeadroomEngineError
from .headroom import Direct, HeadroomMethod, ImageSettings, PeakMax, Percentile
from .source import DecodedSource, load_png, write_preview_png

__all__: Final[list[str]] = ["main", "parse_arguments"]

logger = logging.getLogger(__name__)

console = Console()


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="hdr-headroom",
        description="Estimate HDR headroom and SDR clipping of PQ-encoded PNG images.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Inputs must be 16-bit RGB(A) PNGs tagged as Display P3 PQ "
            "(cICP chunk or ICC profile)."
        ),
    )
    parser.add_argument("files", nargs="+", type=Path, help="PNG files to analyze")
    parser.add_argument(
        "--method", "-m",
        choices=("peak-max", "percentile", "direct"),
        default="peak-max",
        help="Headroom estimation method (default: peak-max)",
    )
    parser.add_argument(
        "--ratio", "-r",
        type=float,
        default=0.2,
        help="PeakMax compression ratio, 0 (none) to 1 (full) (default: 0.2)",
    )
    parser.add_argument(
        "--percentile", "-p",
        type=float,
        default=0.999,
        help="Percentile for the percentile method, 0-1 (default: 0.999)",
    )
    parser.add_argument(
        "--source-headroom",
        type=float,
        default=None,
        help="Direct method source headroom (default: measured peak)",
    )
    parser.add_argument(
        "--target-headroom",
        type=float,
        default=None,
        help="Direct method target headroom (default: 1.0)",
    )
    parser.add_argument(
        "--save-overlay",
        type=Path,
        default=None,
        metavar="DIR",
        help="Write clipping overlay previews as 8-bit sRGB PNGs into DIR",
    )
    parser.add_argument(
        "--detail",
        action="store_true",
        help="Print the per-category clipping breakdown",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
        force=True,
    )


def method_from_args(args: argparse.Namespace) -> HeadroomMethod:
    """Build the headroom method selected on the command line.

    Raises:
        ValueError: ratio or percentile outside [0, 1]
    """
    match args.method:
        case "percentile":
            return Percentile(p=args.percentile)
        case "direct":
            return Direct(source_headroom=args.source_headroom, target_headroom=args.target_headroom)
        case _:
            return PeakMax(ratio=args.ratio)


def decode_all(
    engine: HeadroomEngine, paths: list[Path], max_workers: int
) -> tuple[list[str], dict[str, HeadroomEngineError]]:
    """Decode and register every file; failures are collected per file."""
    registered: list[str] = []
    failed: dict[str, HeadroomEngineError] = {}

    with (
        Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress,
        ThreadPoolExecutor(max_workers=max_workers) as executor,
    ):
        task = progress.add_task("Decoding images...", total=len(paths))
        future_to_path: dict[Future[DecodedSource], Path] = {
            executor.submit(load_png, path): path for path in paths
        }
        for future in as_completed(future_to_path):
            path = future_to_path[future]
            image_id = str(path)
            try:
                decoded = future.result()
                engine.register_image(image_id, decoded.buffer, decoded.profile)
                registered.append(image_id)
            except HeadroomEngineError as e:
                logger.debug("Skipping %s: %s", path, e)
                failed[image_id] = e
            progress.advance(task)

    # Keep command-line order
    order = {str(path): i for i, path in enumerate(paths)}
    registered.sort(key=order.__getitem__)
    return registered, failed


def results_table(results: list[ImageResult], failed: dict[str, HeadroomEngineError]) -> Table:
    table = Table(title="Headroom Analysis")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Source headroom", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Clipped", justify="right")
    table.add_column("Status")

    for result in results:
        name = Path(result.image_id).name
        if result.preview is None:
            table.add_row(name, "-", "-", "-", "-", f"[red]{result.error}[/]")
            continue
        preview = result.preview
        height, width = preview.sdr.shape[:2]
        clipped = f"{preview.clipping.fraction:.3%}" if preview.clipping is not None else "-"
        table.add_row(
            name,
            f"{width}x{height}",
            f"{preview.headroom.source:.3f}",
            f"{preview.headroom.target:.3f}",
            clipped,
            f"[green]OK[/] [dim]({result.elapsed:.2f}s)[/]",
        )

    for image_id, error in failed.items():
        table.add_row(Path(image_id).name, "-", "-", "-", "-", f"[red]{error}[/]")
    return table


def breakdown_table(result: ImageResult) -> Table:
    assert result.preview is not None and result.preview.clipping is not None
    stats = result.preview.clipping
    table = Table(title=f"Clipping: {Path(result.image_id).name}")
    table.add_column("Category", style="cyan")
    table.add_column("Pixels", justify="right")
    table.add_column("Share", justify="right")
    for category in ClipCategory:
        count = stats.category_counts.get(category, 0)
        if not count:
            continue
        table.add_row(
            category.name.lower().replace("_", " "),
            str(count),
            f"{stats.category_fraction(category):.3%}",
        )
    table.add_row("[bold]total[/]", str(stats.clipped_count), f"{stats.fraction:.3%}")
    return table


def main(argv: list[str] | None = None) -> int:
    """Script entry point; returns the process exit code."""
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    try:
        config = EngineConfig.from_env()
        settings = ImageSettings(method=method_from_args(args))
    except ValueError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        return 2

    console.print(f"\n[bold]HDR Headroom[/] {settings.fingerprint()}")
    console.print(f"  Workers: {config.max_workers}\n")

    try:
        with HeadroomEngine(config) as engine:
            image_ids, failed = decode_all(engine, args.files, config.max_workers)
            results = engine.analyze_batch((image_id, settings) for image_id in image_ids)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        return 130

    console.print(results_table(results, failed))

    if args.detail:
        for result in results:
            if result.preview is not None and result.preview.clipping is not None:
                console.print(breakdown_table(result))

    if args.save_overlay is not None:
        args.save_overlay.mkdir(parents=True, exist_ok=True)
        for result in results:
            if result.preview is None:
                continue
            out = args.save_overlay / f"{Path(result.image_id).stem}_overlay.png"
            write_preview_png(out, result.preview.raster)
            console.print(f"[green]✓[/] {out}")

    errors = len(failed) + sum(1 for r in results if not r.ok)
    if errors:
        console.print(f"\n[red]{errors} image(s) failed[/]")
        return 1
    console.print(f"\n[bold green]Done![/] {len(results)} image(s) analyzed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
