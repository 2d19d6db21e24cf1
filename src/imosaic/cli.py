"""Command-line interface for imosaic."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path

from imosaic import __version__
from imosaic.config import RESAMPLING_METHODS, MosaicDefinition, load_mosaic_definition
from imosaic.controller import build_source_index, pick_sources
from imosaic.errors import MosaicError
from imosaic.geo.rectangle import Rectangle
from imosaic.logging_utils import LogOptions, configure_logging
from imosaic.output import write_raster
from imosaic.render import coverage_rectangle, render_mosaic
from imosaic.workers.pool import WORKER_BACKENDS

LOGGER = logging.getLogger("imosaic.cli")


def _add_render_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the render subcommand."""
    render = subparsers.add_parser("render", help="Composite the mosaic into a GeoTIFF.")
    render.add_argument("definition", help="Mosaic definition JSON file.")
    render.add_argument("--output", required=True, help="Output GeoTIFF path.")
    render.add_argument(
        "--bounds",
        nargs=4,
        type=float,
        metavar=("WEST", "SOUTH", "EAST", "NORTH"),
        help="Geographic rectangle to render (defaults to full coverage).",
    )
    render.add_argument("--width", type=int, help="Output width in pixels.")
    render.add_argument("--height", type=int, help="Output height in pixels.")
    render.add_argument("--concurrency", type=int, help="Number of reprojection workers.")
    render.add_argument("--resampling", choices=RESAMPLING_METHODS, help="Resampling method.")
    render.add_argument(
        "--backend",
        choices=sorted(WORKER_BACKENDS),
        help="Worker execution backend.",
    )
    render.add_argument("--timeout", type=float, help="Seconds to wait for workers.")


def _add_pick_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the pick subcommand."""
    pick = subparsers.add_parser("pick", help="List sources covering a lon/lat point.")
    pick.add_argument("definition", help="Mosaic definition JSON file.")
    pick.add_argument("lon", type=float, help="Longitude in degrees.")
    pick.add_argument("lat", type=float, help="Latitude in degrees.")


def _add_coverage_parser(subparsers: argparse._SubParsersAction) -> None:
    coverage = subparsers.add_parser("coverage", help="Print the mosaic coverage rectangle.")
    coverage.add_argument("definition", help="Mosaic definition JSON file.")


def _pick(definition: MosaicDefinition, lon: float, lat: float) -> list[str]:
    """Pick sources without starting any workers."""
    index = build_source_index(definition.sources)
    return [source.url for source in pick_sources(definition.sources, index, lon, lat)]


def _render(args: argparse.Namespace, definition: MosaicDefinition) -> int:
    overrides = {}
    if args.concurrency is not None:
        overrides["concurrency"] = args.concurrency
    if args.resampling:
        overrides["resampling"] = args.resampling
    if args.backend:
        overrides["worker_backend"] = args.backend
    if args.timeout is not None:
        overrides["task_timeout"] = args.timeout
    options = dataclasses.replace(definition.options, **overrides)
    default_width, default_height = options.full_coverage_size
    size = (args.width or default_width, args.height or default_height)
    rectangle = Rectangle.from_bounds(args.bounds) if args.bounds else None
    raster = render_mosaic(definition.sources, options, rectangle=rectangle, size=size)
    output = write_raster(Path(args.output), raster)
    LOGGER.info("Wrote %s", output)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="imosaic",
        description="Reprojected imagery mosaics on demand",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_render_parser(subparsers)
    _add_pick_parser(subparsers)
    _add_coverage_parser(subparsers)
    subparsers.add_parser("version", help="Print the current version.")

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=getattr(args, "verbose", 0) or 0,
            quiet=bool(getattr(args, "quiet", False)),
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=bool(getattr(args, "log_json", False)),
        )
    )

    if args.command == "version":
        print(__version__)
        return 0

    try:
        definition = load_mosaic_definition(Path(args.definition))
        if args.command == "coverage":
            print(json.dumps(list(coverage_rectangle(definition.sources).bounds())))
            return 0
        if args.command == "pick":
            print(json.dumps(_pick(definition, args.lon, args.lat), indent=2))
            return 0
        if args.command == "render":
            return _render(args, definition)
    except MosaicError as exc:
        LOGGER.error("%s", exc)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2
