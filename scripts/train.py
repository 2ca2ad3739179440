"""Command-line entry point for a rating prediction run with iteration search."""

from __future__ import annotations

import argparse
from pathlib import Path

from loguru import logger

from factormap.pipelines import run_rating_prediction
from factormap.utils import load_config


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/default.yaml"),
        help="Path to the YAML configuration file.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = load_config(args.config)
    logger.info("Starting rating prediction with config at {}", args.config)
    result = run_rating_prediction(config)
    logger.info("Finished in state '{}' after {} iterations", result.state.value, result.iterations)


if __name__ == "__main__":
    main()
