#!/usr/bin/env python3
"""Run a query chain described by a JSON definition file.

Writes:
- <output-dir>/results_<name>.json (accepted repositories)
- <checkpoint-dir>/checkpoint_<name>.json (resume point)

Re-running the same definition resumes where the last run stopped.

Exit code behavior:
- 0 when the source is exhausted.
- 1 for usage or chain definition errors.
- 2 when the run stops on an error; the saved checkpoint stays resumable.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger
from rich.console import Console
from rich.table import Table


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a resumable query chain")
    parser.add_argument("definition", help="Path to a chain definition JSON file")
    parser.add_argument(
        "--restart",
        action="store_true",
        help="Discard the previous checkpoint and results and start over",
    )
    parser.add_argument("--output-dir", default=None, help="Where results_<name>.json is written")
    parser.add_argument("--checkpoint-dir", default=None, help="Where checkpoint_<name>.json is kept")
    parser.add_argument("--verbose", action="store_true", help="Log step details")

    args = parser.parse_args()

    # Allow running this script directly without requiring installation.
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    from querychain.pipeline.checkpoint import CheckpointError
    from querychain.pipeline.errors import ChainConfigError
    from querychain.query_chain import load_chain_definition, query_chain_from_definition

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    try:
        definition = load_chain_definition(args.definition)
        chain = query_chain_from_definition(
            definition,
            output_dir=args.output_dir,
            checkpoint_dir=args.checkpoint_dir,
        )
    except ChainConfigError as e:
        logger.error(str(e))
        return 1

    try:
        summary = asyncio.run(chain.run(restart=args.restart))
    except (ChainConfigError, CheckpointError) as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.exception(f"Chain {chain.name} stopped: {type(e).__name__}: {e}")
        return 2

    table = Table(title=f"Chain {summary.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in summary.to_dict().items():
        table.add_row(key, str(value))
    Console().print(table)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
