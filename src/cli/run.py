import argparse
import asyncio
import json
import logging
import time
from datetime import date
from typing import Optional, Sequence

from core.entities import CheckFrequency
from services.config import load_config
from services.context import AppContext, build_context
from services.logging import setup_logging

logger = logging.getLogger(__name__)


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def init_db(context: AppContext) -> None:
    await context.db.init_tables()
    print(f"Database initialized at: {context.config.DATABASE_PATH}")


async def collect(context: AppContext, frequency: Optional[str], source_id: Optional[int]) -> None:
    await context.db.init_tables()

    if source_id is not None:
        new_items = await context.dispatcher.trigger_source(source_id)
        _print({"sourceId": source_id, "newItems": new_items})
        return

    if frequency:
        reports = await context.dispatcher.run_bucket(CheckFrequency(frequency))
    else:
        reports = await context.dispatcher.trigger_all()
    _print([r.to_dict() for r in reports])


async def process(context: AppContext, limit: Optional[int]) -> None:
    await context.db.init_tables()
    await context.llm.initialize()
    processed = await context.processing.trigger(limit)
    _print({"processed": processed})


async def digest(context: AppContext, day: Optional[date], publish: bool) -> None:
    await context.db.init_tables()

    generator = context.digest_generator
    result = await generator.generate_for_date(day) if day else await generator.generate_daily()
    if result is None:
        print("No qualifying items, no digest generated")
        return

    if publish:
        result = await generator.publish(result.id)

    print(result.content)
    logger.info(f"Digest {result.id} for {result.date} is {result.status.value}")


async def providers(context: AppContext) -> None:
    await context.llm.initialize()
    _print(context.llm.available_providers())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tech-intel", description="Tech Intelligence digest system")
    parser.add_argument("--config", help="Path to config.yml (default: resources/config.yml)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API and the scheduler")
    serve.add_argument("--host", help="Host to bind to (default: API_HOST)")
    serve.add_argument("--port", type=int, help="Port to bind to (default: API_PORT)")
    serve.add_argument("--no-scheduler", action="store_true", help="Do not start the timer-driven jobs")

    collect_cmd = sub.add_parser("collect", help="Collect sources now")
    group = collect_cmd.add_mutually_exclusive_group()
    group.add_argument("--frequency", choices=[f.value for f in CheckFrequency],
                       help="Only active sources in this check-frequency bucket")
    group.add_argument("--source", type=int, help="Collect a single source by id")

    process_cmd = sub.add_parser("process", help="Run one processing batch")
    process_cmd.add_argument("--limit", type=int, help="Maximum items to process")

    digest_cmd = sub.add_parser("digest", help="Generate the digest for a date")
    digest_cmd.add_argument("--date", type=date.fromisoformat, help="Digest date YYYY-MM-DD (default: today, UTC)")
    digest_cmd.add_argument("--publish", action="store_true", help="Publish the generated digest")

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("providers", help="Show LLM provider availability")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.LOG_LEVEL)
    context = build_context(config)

    start_time = time.perf_counter()

    if args.command == "serve":
        from api.server import run_server

        run_server(
            context,
            host=args.host or config.API_HOST,
            port=args.port or config.API_PORT,
            start_scheduler=not args.no_scheduler,
        )
        return

    if args.command == "init-db":
        asyncio.run(init_db(context))
    elif args.command == "collect":
        asyncio.run(collect(context, args.frequency, args.source))
    elif args.command == "process":
        asyncio.run(process(context, args.limit))
    elif args.command == "digest":
        asyncio.run(digest(context, args.date, args.publish))
    elif args.command == "providers":
        asyncio.run(providers(context))

    logger.info(f"Total time: {time.perf_counter() - start_time:.2f}s")


if __name__ == "__main__":
    main()
