"""Command-line entry point for the SDNext benchmark worker."""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from .config import load_config
from .logging_utils import configure_logging
from .preflight import check_server
from .runtime import BenchmarkRuntime


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sdnext-benchmark", description=__doc__)
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--log-level", help="Console log level (overrides configuration)")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only check that the SDNext server is reachable and list its models",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    result = load_config(args.config, include_sources=True)
    config, sources = result.config, result.sources
    logging_config = dict(config.get("logging", {}))
    if args.log_level:
        logging_config["console_level"] = args.log_level
    logger = configure_logging(logging_config)
    logger.info("Loaded configuration from: %s", ", ".join(sources) or "<defaults>")

    if args.check:
        models = check_server(str(config["sdnext"]["url"]), logger)
        for model in models:
            logger.info("- %s", model)
        return 0 if models else 1

    runtime = BenchmarkRuntime(config, logger)
    try:
        asyncio.run(runtime.run())
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("Interrupted by user.")
        return 130
    except Exception as exc:
        logger.exception("Benchmark terminated due to unexpected error: %s", exc)
        return 1
    return 0


__all__ = ["main"]
