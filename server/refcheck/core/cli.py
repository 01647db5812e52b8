from __future__ import annotations

import argparse
import os


def add_runtime_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--registries",
        help="Comma-separated registries to query (overrides REFCHECK_REGISTRIES).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-request registry timeout in seconds (overrides REFCHECK_REGISTRY_TIMEOUT_SECONDS).",
    )
    parser.add_argument(
        "--pacing",
        type=float,
        help="Pause between references in seconds (overrides REFCHECK_PACING_SECONDS).",
    )
    parser.add_argument(
        "--cache",
        action="store_true",
        help="Enable the on-disk registry response cache.",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (overrides REFCHECK_LOG_LEVEL).",
    )


def apply_runtime_overrides(args: argparse.Namespace) -> None:
    if getattr(args, "registries", None):
        os.environ["REFCHECK_REGISTRIES"] = args.registries
    if getattr(args, "timeout", None) is not None:
        os.environ["REFCHECK_REGISTRY_TIMEOUT_SECONDS"] = str(args.timeout)
    if getattr(args, "pacing", None) is not None:
        os.environ["REFCHECK_PACING_SECONDS"] = str(args.pacing)
    if getattr(args, "cache", False):
        os.environ["REFCHECK_CACHE_ENABLED"] = "true"
    if getattr(args, "log_level", None):
        os.environ["REFCHECK_LOG_LEVEL"] = args.log_level
