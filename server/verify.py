from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from server.refcheck.analysis.pipeline.batch import verify_batch
from server.refcheck.analysis.pipeline.types import InvalidReferenceError, Reference
from server.refcheck.analysis.pipeline.verify import ReferenceVerifier
from server.refcheck.core.cache import Cache
from server.refcheck.core.cli import add_runtime_args, apply_runtime_overrides
from server.refcheck.core.config import Settings
from server.refcheck.sources.factory import build_registries

logger = logging.getLogger("refcheck.verify")


def _load_references(path: str) -> list[Reference]:
    raw = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if isinstance(data, dict):
        data = data.get("references") or []
    if not isinstance(data, list):
        raise ValueError("Input must be a JSON list of reference objects.")
    return [Reference.from_dict(item) for item in data if isinstance(item, dict)]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify bibliography references against scholarly registries.")
    parser.add_argument("input", help="JSON file with a list of references ('-' for stdin).")
    parser.add_argument("--output", help="Write the JSON report here instead of stdout.")
    parser.add_argument("--no-dedupe", action="store_true", help="Skip duplicate detection.")
    add_runtime_args(parser)
    args = parser.parse_args(argv)

    load_dotenv()
    apply_runtime_overrides(args)
    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    references = _load_references(args.input)
    cache = Cache(settings=settings) if settings.cache_enabled else None
    verifier = ReferenceVerifier(build_registries(settings, cache), settings)

    def _progress(message: str, fraction: float | None) -> None:
        if fraction is None:
            logger.info("%s", message)
        else:
            logger.info("%s (%.0f%%)", message, fraction * 100)

    try:
        report = verify_batch(
            references,
            verifier,
            settings=settings,
            progress=_progress,
            dedupe=not args.no_dedupe,
        )
    except InvalidReferenceError as e:
        logger.error("%s", e)
        return 2

    payload = json.dumps(report.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)
    if cache is not None:
        logger.debug("Cache stats: %s", cache.debug_snapshot())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
