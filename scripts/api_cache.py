#!/usr/bin/env python3
"""
API Cache maintenance commands

Usage:
    # Create bookkeeping/item tables and response tables for configured clients
    python scripts/api_cache.py init

    # Flatten cached DataForSEO responses into item tables
    python scripts/api_cache.py process-serp --limit 500
    python scripts/api_cache.py process-labs --limit 500 --reset

    # Delete expired responses (all configured clients, or one)
    python scripts/api_cache.py cleanup
    python scripts/api_cache.py cleanup --client demo

    # Move a client's rows between plain and compressed tables
    python scripts/api_cache.py convert demo --direction compress --validate

    # Row and rate limit counts
    python scripts/api_cache.py stats
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from apicache.cache import ResponsesTableConverter, build_cache_manager
from apicache.database import create_db_engine, init_db
from apicache.processors import (
    DataForSeoLabsGoogleKeywordResearchProcessor,
    DataForSeoSerpGoogleOrganicProcessor,
)
from apicache.utils.config import ApiCacheConfig, Settings

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", verbose: bool = False):
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_init(manager, args):
    init_db(manager.repository.engine, drop_all=args.drop_all)
    for client in manager.config.client_names:
        manager.repository.create_response_table(client, drop_existing=args.drop_all)
    print(f"Initialized tables for clients: {', '.join(manager.config.client_names)}")


def _run_processor(processor, args):
    if args.reset:
        processor.reset_processed()
    if args.clear:
        print_json(processor.clear_processed_tables(with_count=True))
    stats = processor.process_responses(limit=args.limit)
    print_json(stats.to_dict())


def cmd_process_serp(manager, args):
    processor = DataForSeoSerpGoogleOrganicProcessor(
        manager,
        skip_sandbox=not args.include_sandbox,
        update_if_newer=not args.no_update,
        process_paas=not args.skip_paa,
    )
    _run_processor(processor, args)


def cmd_process_labs(manager, args):
    processor = DataForSeoLabsGoogleKeywordResearchProcessor(
        manager,
        skip_sandbox=not args.include_sandbox,
        update_if_newer=not args.no_update,
    )
    _run_processor(processor, args)


def cmd_cleanup(manager, args):
    print_json(manager.cleanup(args.client))


def cmd_convert(manager, args):
    converter = ResponsesTableConverter(
        manager.repository,
        args.client,
        direction=args.direction,
        batch_size=args.batch_size,
        overwrite=args.overwrite,
        copy_processing_state=args.copy_processing_state,
    )
    manager.repository.create_response_table(args.client, compressed=args.direction == "compress")
    print_json(converter.convert_all().to_dict())
    if args.validate:
        print_json(converter.validate_all().to_dict())


def cmd_stats(manager, args):
    repository = manager.repository
    clients = [args.client] if args.client else manager.config.client_names
    stats = {}
    for client in clients:
        if not repository.table_exists(client):
            stats[client] = None
            continue
        stats[client] = {
            "table": repository.get_table_name(client),
            "total": repository.count_total_responses(client),
            "active": repository.count_active_responses(client),
            "expired": repository.count_expired_responses(client),
            "remaining_attempts": manager.get_remaining_attempts(client),
        }
    print_json(stats)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="API response cache maintenance")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create database tables")
    init_parser.add_argument(
        "--drop-all",
        action="store_true",
        help="Drop existing tables first (USE WITH CAUTION!)"
    )
    init_parser.set_defaults(func=cmd_init)

    for name, func, help_text in (
        ("process-serp", cmd_process_serp, "Process cached Google organic SERP responses"),
        ("process-labs", cmd_process_labs, "Process cached DataForSEO Labs keyword responses"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--limit", type=int, default=100, help="Responses to process (default: 100)")
        sub.add_argument("--reset", action="store_true", help="Mark all responses unprocessed first")
        sub.add_argument("--clear", action="store_true", help="Empty the item tables first")
        sub.add_argument("--include-sandbox", action="store_true", help="Also process sandbox responses")
        sub.add_argument("--no-update", action="store_true", help="Never update existing items")
        if name == "process-serp":
            sub.add_argument("--skip-paa", action="store_true", help="Skip People Also Ask items")
        sub.set_defaults(func=func)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired responses")
    cleanup_parser.add_argument("--client", default=None, help="Only this client")
    cleanup_parser.set_defaults(func=cmd_cleanup)

    convert_parser = subparsers.add_parser("convert", help="Convert between plain and compressed tables")
    convert_parser.add_argument("client", help="Client name")
    convert_parser.add_argument(
        "--direction",
        default="compress",
        choices=["compress", "decompress"],
        help="Conversion direction (default: compress)"
    )
    convert_parser.add_argument("--batch-size", type=int, default=100)
    convert_parser.add_argument("--overwrite", action="store_true", help="Replace existing target rows")
    convert_parser.add_argument(
        "--copy-processing-state",
        action="store_true",
        help="Keep processed_at/processed_status on converted rows"
    )
    convert_parser.add_argument("--validate", action="store_true", help="Validate rows after converting")
    convert_parser.set_defaults(func=cmd_convert)

    stats_parser = subparsers.add_parser("stats", help="Show row counts per client")
    stats_parser.add_argument("--client", default=None, help="Only this client")
    stats_parser.set_defaults(func=cmd_stats)

    return parser


def main(argv=None):
    """Main entry point."""
    load_dotenv()

    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings.log_level, args.verbose)

    config = ApiCacheConfig.from_settings(settings)
    engine = create_db_engine(settings=settings)
    manager = build_cache_manager(config, engine)

    try:
        args.func(manager, args)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
