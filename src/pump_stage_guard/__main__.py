"""Command-line entry point.

Usage:
    pump-stage-guard run
    pump-stage-guard show-config
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pump_stage_guard.config import get_settings
from pump_stage_guard.pipeline import Pipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pump-stage-guard",
        description="Stage-aware risk evaluation for newly launched tokens",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Stream launches and evaluate them until interrupted")
    sub.add_parser("show-config", help="Print the effective settings with secrets redacted")
    return parser


async def _run(pipeline: Pipeline) -> None:
    await pipeline.start()
    try:
        while pipeline.is_running:
            await asyncio.sleep(1.0)
            while (token := pipeline.get_ready_token()) is not None:
                logger.info(
                    "READY %s (creator %s, liquidity %s SOL, score %s)",
                    token.mint,
                    token.creator,
                    token.simulated_liquidity,
                    token.pre_bond_score,
                )
    finally:
        await pipeline.stop()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=args.log_level.upper() if args.log_level else settings.get_logging_level(),
        format=LOG_FORMAT,
    )

    if args.command == "show-config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0

    logger.info("Starting with settings: %s", settings.redacted_summary())
    try:
        asyncio.run(_run(Pipeline(settings)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
