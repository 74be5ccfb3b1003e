"""Command-line entry point for loopd."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from loopd.bundle import read_bundle
from loopd.config import LOOPD_OUTPUT_DIR
from loopd.exceptions import LoopdError
from loopd.export import ExportOptions, export_file, export_url
from loopd.expansion import ExpansionOptions
from loopd.markdown import collect_image_references
from loopd.markdown_parser import parse_markdown
from loopd.tree import count_node_types

logger = logging.getLogger("loopd.cli")


def _add_output_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        default=LOOPD_OUTPUT_DIR,
        type=Path,
        help="Directory where the .tar bundle should be written",
    )
    parser.add_argument(
        "--no-images",
        action="store_true",
        help="Keep image references pointing at their original URLs instead of downloading them",
    )
    parser.add_argument(
        "--no-debug-tree",
        action="store_true",
        help="Leave the pre-cleanup document tree out of the bundle",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_export_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Microsoft Loop page URL")
    parser.add_argument(
        "--profile-dir",
        type=Path,
        default=None,
        help="Chromium profile directory; keeps the Microsoft sign-in between runs",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run Chromium without a window (needs an already signed-in profile)",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=5.0,
        help="Seconds to wait after navigation before expanding the page",
    )
    parser.add_argument(
        "--no-expand",
        action="store_true",
        help="Skip expanding collapsed sections and virtualized content",
    )
    parser.add_argument(
        "--max-operations",
        type=int,
        default=None,
        help="Maximum number of expand attempts",
    )
    _add_output_arguments(parser)


def _add_convert_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="Saved HTML snapshot of a Loop page")
    parser.add_argument(
        "--base-url",
        default=None,
        help="URL the snapshot was taken from, used to resolve relative image sources",
    )
    _add_output_arguments(parser)


def _add_inspect_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("bundle", type=Path, help="Bundle (.tar) written by export or convert")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="loopd",
        description="Export Microsoft Loop pages to Markdown bundles.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Open a Loop page in Chromium and export it")
    _add_export_arguments(export_parser)

    convert_parser = subparsers.add_parser("convert", help="Export a saved HTML snapshot")
    _add_convert_arguments(convert_parser)

    inspect_parser = subparsers.add_parser("inspect", help="Summarize the contents of a bundle")
    _add_inspect_arguments(inspect_parser)

    return parser.parse_args(list(sys.argv[1:] if argv is None else argv))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _export_options(args: argparse.Namespace) -> ExportOptions:
    expansion = ExpansionOptions()
    if getattr(args, "max_operations", None) is not None:
        expansion.max_operations = args.max_operations
    return ExportOptions(
        output_dir=Path(args.output).resolve(),
        expand=not getattr(args, "no_expand", False),
        download_images=not args.no_images,
        include_debug_tree=not args.no_debug_tree,
        expansion=expansion,
    )


def _run_export(args: argparse.Namespace) -> None:
    result, path = asyncio.run(
        export_url(
            args.url,
            _export_options(args),
            user_data_dir=args.profile_dir,
            headless=args.headless,
            wait_s=args.wait,
        )
    )
    logger.info("Saved %s (%s)", path, result.diagnostics.summary)


def _run_convert(args: argparse.Namespace) -> None:
    result, path = asyncio.run(export_file(args.path, _export_options(args), base_url=args.base_url))
    logger.info("Saved %s (%s)", path, result.diagnostics.summary)


def _run_inspect(args: argparse.Namespace) -> None:
    bundle = read_bundle(args.bundle)
    document = parse_markdown(bundle.markdown)

    print("Nodes:")
    for node_type, count in sorted(count_node_types(document).items(), key=lambda item: -item[1]):
        print(f"{node_type}: {count}")

    references = collect_image_references(document)
    print("\nImages:")
    for reference in references:
        name = reference.removeprefix("images/")
        status = "bundled" if name in bundle.images else "missing"
        print(f"{reference}: {status}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    runners = {"export": _run_export, "convert": _run_convert, "inspect": _run_inspect}
    try:
        runners[args.command](args)
    except LoopdError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
