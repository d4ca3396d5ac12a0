"""Command-line runner.

Loads a project configuration, runs the requested verbs and prints (or
writes) a JSON manifest of the results::

    python -m asset_pipeline -c config/assetConfig.json -u -o
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from typing import Any, Sequence

from .config import load_config
from .events import LoggingListener
from .exceptions import AssetPipelineError
from .processor import AssetProcessor
from .version_check import check_repo_up_to_date

logger = logging.getLogger(__name__)

_CONFIG_SUFFIX_RE = re.compile(r"(asset)?config$", re.IGNORECASE)

# checkout the tool itself runs from
TOOL_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asset_pipeline",
        description="Bundle, fingerprint and publish static assets.",
    )
    parser.add_argument("-c", "--config", required=True, help="Path to the JSON configuration file.")
    parser.add_argument("-f", "--force", action="store_true", help="Republish even when nothing changed.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Report every processing step.")
    parser.add_argument("-u", "--upload", action="store_true", help="Publish changed assets to storage.")
    parser.add_argument("--local", action="store_true", help="Build JavaScript and CSS bundles locally.")
    parser.add_argument("--import", dest="import_stylesheets", action="store_true", help="Import remote stylesheets first.")
    parser.add_argument("--skip-less", action="store_true", help="Do not compile LESS files.")
    parser.add_argument("--skip-js", action="store_true", help="Do not list JavaScript files.")
    parser.add_argument("--skip-css", action="store_true", help="Do not list CSS files.")
    parser.add_argument("--list-images", action="store_true", help="List image files.")
    parser.add_argument("--list-extras", action="store_true", help="List extra files.")
    parser.add_argument("--exclude-source-map", action="store_true", help="Do not publish the JavaScript source map.")
    parser.add_argument(
        "--require-up-to-date",
        action="store_true",
        help="Refuse to run when this checkout is behind origin/master.",
    )
    parser.add_argument(
        "-o",
        "--output",
        nargs="?",
        const=True,
        default=None,
        metavar="PATH",
        help="Write the manifest to PATH (default: next to the configuration).",
    )
    return parser


def output_filename(config_path: str) -> str:
    """``assetConfig.json`` -> ``assets.json``, ``adminConfig.json`` -> ``adminAssets.json``."""
    stem = os.path.splitext(os.path.basename(config_path))[0]
    prefix = _CONFIG_SUFFIX_RE.sub("", stem)
    return f"{prefix}Assets.json" if prefix else "assets.json"


def resolve_output_path(config_path: str, output: str | bool | None) -> str | None:
    if output is None:
        return None
    if output is True:
        return os.path.join(os.path.dirname(os.path.abspath(config_path)), output_filename(config_path))
    return str(output)


def run(args: argparse.Namespace) -> dict[str, Any]:
    """Execute the verbs selected by ``args`` and return the manifest."""
    config = load_config(args.config, force_update=True if args.force else None)
    processor = AssetProcessor(config, listeners=[LoggingListener(verbose=args.verbose)])

    if args.require_up_to_date:
        if args.verbose:
            logger.info("Checking if repository is up to date")
        if not check_repo_up_to_date(TOOL_DIR):
            raise AssetPipelineError("A new version of the asset pipeline is available, please update (git pull)")

    result: dict[str, Any] = {}
    if not args.skip_js:
        result["javascripts"] = processor.get_javascript_files()
    if args.import_stylesheets:
        processor.import_latest_stylesheets()
    if not args.skip_less:
        processor.compile_less_files()
    if not args.skip_css:
        result["stylesheets"] = processor.get_css_files()
    if args.list_images:
        result["images"] = processor.get_image_files()
    if args.list_extras:
        result["extras"] = processor.get_extra_files()
    if args.upload:
        logger.info("Ensuring assets")
        results = processor.ensure_assets(exclude_source_map=args.exclude_source_map)
        result["cdn"] = results.as_dict(include_changed=False)
    if args.local:
        result["local"] = processor.process_assets()
    return result


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    try:
        manifest = json.dumps(run(args), indent=4)
        output_path = resolve_output_path(args.config, args.output)
        if output_path:
            logger.info("Writing asset file to %s", output_path)
            with open(output_path, "w", encoding="utf-8") as f:
                f.write(manifest)
        else:
            sys.stdout.write(manifest + "\n")
    except AssetPipelineError as exc:
        logger.error("%s", exc)
        return 1
    except OSError as exc:
        logger.error("Unable to write manifest: %s", exc)
        return 1
    return 0
