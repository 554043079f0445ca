"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the export service.

- serve     JSON API + leadership-gated scheduler (default)
- run-once  one export batch, exit code reflects the outcome
- list      print stored artifacts

============================================================
USAGE
============================================================
python app.py serve
python app.py run-once --project-id 17 --sequential
python app.py list --project-id 17

============================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from core.exceptions import ConfigurationError, StoreError
from core.logging_config import setup_logging
from orchestrator.config import ExportServiceConfig
from orchestrator.core import create_service


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="testops-export",
        description="Scheduled bulk test-case exporter for TestOps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve     Run the JSON API and the cron scheduler (leader only)
  run-once  Run one export batch and exit
  list      List stored artifacts

Examples:
  %(prog)s serve
  %(prog)s run-once --project-id 17
  %(prog)s run-once --sequential
  %(prog)s list
        """
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override LOG_LEVEL",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run API and scheduler")

    run_once = subparsers.add_parser("run-once", help="Run one export batch")
    run_once.add_argument(
        "--project-id",
        type=int,
        default=None,
        help="Export only this project",
    )
    run_once.add_argument(
        "--sequential",
        action="store_true",
        help="Run units one at a time instead of concurrently",
    )

    list_parser = subparsers.add_parser("list", help="List stored artifacts")
    list_parser.add_argument(
        "--project-id",
        type=int,
        default=None,
        help="Show only this project",
    )

    return parser


# ============================================================
# COMMANDS
# ============================================================

async def async_main(args: argparse.Namespace, config: ExportServiceConfig) -> int:
    logger = logging.getLogger("orchestrator")
    service = create_service(config)
    command = args.command or "serve"

    if command == "serve":
        await service.serve()
        return EXIT_OK

    if command == "run-once":
        batch = await service.run_once(args.project_id, args.sequential)
        logger.info(
            f"Run finished: {batch.success_count}/{batch.total_count} succeeded, "
            f"{batch.pruned_count} old artifacts removed"
        )
        return EXIT_OK if batch.all_succeeded else EXIT_FAILED

    if command == "list":
        try:
            records = await service.engine.list_artifacts(args.project_id)
        finally:
            await service.aclose()
        for record in records:
            print(f"{record.display_date}  {record.formatted_size:>10}  {record.name}")
        print(f"{len(records)} artifacts")
        return EXIT_OK

    logger.error(f"Unknown command: {command}")
    return EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    logger = logging.getLogger("orchestrator")

    try:
        config = ExportServiceConfig.from_env()
        setup_logging(args.log_level or config.log_level, config.log_format)
        return asyncio.run(async_main(args, config))
    except ConfigurationError as e:
        setup_logging("INFO")
        logger.critical(f"Configuration error: {e}")
        return EXIT_CONFIG
    except StoreError as e:
        logger.critical(f"Artifact store unavailable: {e}")
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
