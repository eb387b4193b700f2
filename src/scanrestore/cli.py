#!/usr/bin/env python3
"""
ScanRestore CLI - scanned page restoration from the terminal.

Usage:
    python -m scanrestore.cli <command> [options]

Commands:
    deskew       Straighten a skewed page
    binarize     Convert a page to black and white
    borders      Remove the dark scanner frame
    despeckle    Remove isolated noise specks
    punch-holes  Detect and inpaint punch holes near the edges
    lines        Remove long scanner stripes near the edges
    enhance      Boost local contrast
    split        Split a two-page book spread at the gutter
    batch        Run a command pipeline over a whole folder

Every command accepts the flat parameter map as repeated --param pairs.

Examples:
    scanrestore-cli deskew scan.png -o straight.tif
    scanrestore-cli deskew scan.png -o straight.tif --param deskewAlgorithm=Projection
    scanrestore-cli binarize scan.png -o bw.tif --param method=Sauvola --compression "CCITT G4"
    scanrestore-cli borders scan.png -o clean.tif --param borderRemovalAlgorithm=ByContrast
    scanrestore-cli lines scan.png -o clean.tif --param orientation=Both --param lineWidthPx=3
    scanrestore-cli split spread.jpg -o pages/spread.tif

    # Pipeline over a folder, results in <folder>/Processed
    scanrestore-cli batch scans/ --step Deskew --step "Binarize:method=Majority,threshold=140"
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from scanrestore.services.config import ProcessorCommand, TiffCompression
from scanrestore.utils.exceptions import ScanRestoreError

# ---------------------------------------------------------------------------
# Parameter parsing (shared)
# ---------------------------------------------------------------------------


def _parse_param_pairs(pairs: list[str] | None) -> dict[str, str]:
    """Parse ``key=value`` strings into a parameter map.

    Args:
        pairs: Strings such as "threshold=140"

    Returns:
        Map of raw string values; typing happens in parse_parameters.
    """
    params: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid parameter '{pair}'. Use key=value.")
        params[key] = value.strip()
    return params


def _parse_step(text: str) -> tuple[str, dict[str, str]]:
    """Parse a batch step ``Command[:key=value,key=value]``."""
    command, _, rest = text.partition(":")
    if not command.strip():
        raise ValueError(f"Invalid step '{text}'. Use Command[:key=value,...].")
    pairs = [p for p in rest.split(",") if p.strip()]
    return command.strip(), _parse_param_pairs(pairs)


# ---------------------------------------------------------------------------
# Argument parser construction
# ---------------------------------------------------------------------------

_SINGLE_COMMANDS = {
    "deskew": (ProcessorCommand.DESKEW, "Straighten a skewed page"),
    "binarize": (ProcessorCommand.BINARIZE, "Convert a page to black and white"),
    "borders": (ProcessorCommand.BORDER_REMOVE, "Remove the dark scanner frame"),
    "despeckle": (ProcessorCommand.DESPECKLE, "Remove isolated noise specks"),
    "punch-holes": (ProcessorCommand.PUNCH_HOLE_REMOVE, "Inpaint punch holes near the edges"),
    "lines": (ProcessorCommand.LINES_REMOVE, "Inpaint long scanner stripes near the edges"),
    "enhance": (ProcessorCommand.ENHANCE, "Boost local contrast (CLAHE or Retinex)"),
}

_COMPRESSION_CHOICES = [c.value for c in TiffCompression]


def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Command parameter (repeatable), e.g. --param threshold=140",
    )
    p.add_argument(
        "--compression",
        type=str,
        default=TiffCompression.LZW.value,
        choices=_COMPRESSION_CHOICES,
        help="TIFF compression. Default: LZW.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with subcommands."""
    p = argparse.ArgumentParser(
        prog="scanrestore-cli",
        description="ScanRestore - scanned document restoration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging (DEBUG)")

    sub = p.add_subparsers(dest="command", help="Available commands")

    for name, (_, help_text) in _SINGLE_COMMANDS.items():
        cmd_p = sub.add_parser(name, help=help_text)
        cmd_p.add_argument("input", type=Path, help="Input image")
        cmd_p.add_argument(
            "-o", "--output", type=Path, required=True, help="Output image (.tif or .png)"
        )
        _add_common_options(cmd_p)

    # --- split ---
    split_p = sub.add_parser("split", help="Split a two-page spread at the gutter")
    split_p.add_argument("input", type=Path, help="Input image")
    split_p.add_argument(
        "-o",
        "--output",
        type=Path,
        required=True,
        help="Output base path; pages are written as <base>_1.tif and <base>_2.tif",
    )
    split_p.add_argument(
        "--debug-overlay",
        type=Path,
        default=None,
        help="Save the gutter analysis overlay (PNG) to this path.",
    )
    _add_common_options(split_p)

    # --- batch ---
    batch_p = sub.add_parser("batch", help="Run a command pipeline over a folder")
    batch_p.add_argument("folder", type=Path, help="Folder with the source images")
    batch_p.add_argument(
        "--step",
        action="append",
        required=True,
        metavar="COMMAND[:K=V,...]",
        help="Pipeline step (repeatable, applied in order)",
    )
    batch_p.add_argument(
        "--compression",
        type=str,
        default=TiffCompression.LZW.value,
        choices=_COMPRESSION_CHOICES,
        help="TIFF compression. Default: LZW.",
    )
    batch_p.add_argument("--overwrite", action="store_true", help="Re-process existing outputs")
    batch_p.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Parallel workers (0 = auto). Default: 0.",
    )
    batch_p.add_argument(
        "--renumber",
        action="store_true",
        help="Rename split outputs to 001.tif, 002.tif... after the run",
    )

    return p


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_single(args, logger) -> int:
    from scanrestore.services.image_io import save_image
    from scanrestore.services.processor import ImageProcessor

    command = _SINGLE_COMMANDS[args.command][0]
    params = _parse_param_pairs(args.param)

    processor = ImageProcessor()
    processor.load(str(args.input))
    result = processor.apply_command(command, params)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    save_image(result, str(args.output), args.compression)
    print(f"{command.value}: {args.input} → {args.output}")
    return 0


def _cmd_split(args, logger) -> int:
    from scanrestore.services.image_io import save_image
    from scanrestore.services.processor import ImageProcessor

    params = _parse_param_pairs(args.param)
    if args.debug_overlay:
        params["produceDebugOverlay"] = "true"

    processor = ImageProcessor()
    processor.load(str(args.input))
    processor.apply_command(ProcessorCommand.SPLIT_PAGES, params)
    result = processor.split_results

    if args.debug_overlay and result.debug_overlay is not None:
        save_image(result.debug_overlay, str(args.debug_overlay))

    if not result.success:
        print(f"Not split: {result.reason}", file=sys.stderr)
        return 1

    base = os.path.splitext(str(args.output))[0]
    args.output.parent.mkdir(parents=True, exist_ok=True)
    for part, page in enumerate((result.left, result.right), start=1):
        target = f"{base}_{part}.tif"
        save_image(page, target, args.compression)
        print(f"  → {target}")
    print(f"Split at x={result.split_x} (confidence {result.final_confidence:.2f})")
    return 0


def _cmd_batch(args, logger) -> int:
    from scanrestore.services.batch import BatchRunner

    if not args.folder.is_dir():
        print(f"Error: {args.folder} is not a folder", file=sys.stderr)
        return 1

    steps = [_parse_step(s) for s in args.step]

    def progress_cb(done, total, path):
        print(f"\r[{done}/{total}] {os.path.basename(path)}", end="", flush=True)

    runner = BatchRunner(
        steps,
        compression=args.compression,
        overwrite=args.overwrite,
        workers=args.workers,
        renumber_split=args.renumber,
        on_progress=progress_cb,
    )
    try:
        report = runner.run(str(args.folder))
    except KeyboardInterrupt:
        runner.cancel()
        print("\nCancelled", file=sys.stderr)
        return 130
    print()  # newline after progress

    print(
        f"Processed {report.processed} of {report.total} file(s), "
        f"{report.skipped} skipped, {len(report.failed)} failed ({report.elapsed:.1f}s)"
    )
    for path, message in report.failed:
        print(f"  ✗ {path}: {message}", file=sys.stderr)
    return 0 if report.success else 1


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )
    logger = logging.getLogger("scanrestore.cli")

    if hasattr(args, "input") and not args.input.exists():
        print(f"Error: {args.input} not found", file=sys.stderr)
        return 1

    handlers = {name: _cmd_single for name in _SINGLE_COMMANDS}
    handlers.update({"split": _cmd_split, "batch": _cmd_batch})

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args, logger)
    except (ScanRestoreError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
