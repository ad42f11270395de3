#!/usr/bin/env python3
"""
OpenOrbit CLI - operator entry point.

Usage:
    python -m campaigns adapters list --root ./plugins
    python -m campaigns runs list --limit 10
    python -m campaigns runs show <run_id>
    python -m campaigns runs recover
    python -m campaigns serve --port 8080
    python -m campaigns validate
"""

import argparse
import asyncio
import sys
from typing import List, Optional


def main(argv: Optional[List[str]] = None) -> int:
    # Load environment variables from .env file
    from dotenv import load_dotenv
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog='python -m campaigns',
        description='OpenOrbit session orchestration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show installed adapter plugins
  python -m campaigns adapters list

  # Show the last 5 batch runs
  python -m campaigns runs list --limit 5

  # Mark runs left behind by a crashed process as failed
  python -m campaigns runs recover

  # Start the observer API
  python -m campaigns serve --host 127.0.0.1 --port 8080
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Adapters
    adapters_parser = subparsers.add_parser('adapters', help='Adapter plugins')
    adapters_sub = adapters_parser.add_subparsers(dest='adapters_command')
    adapters_list = adapters_sub.add_parser('list', help='List discovered adapters')
    adapters_list.add_argument('--root', help='Plugin root (default: PLUGIN_ROOT)')

    # Runs
    runs_parser = subparsers.add_parser('runs', help='Batch run history')
    runs_sub = runs_parser.add_subparsers(dest='runs_command')
    runs_list = runs_sub.add_parser('list', help='List recent runs')
    runs_list.add_argument('--limit', type=int, default=20, help='Number of runs (default: 20)')
    runs_show = runs_sub.add_parser('show', help='Show one run')
    runs_show.add_argument('run_id', help='Run ID')
    runs_sub.add_parser('recover', help='Mark interrupted runs as failed')

    # Serve
    serve_parser = subparsers.add_parser('serve', help='Run the observer API')
    serve_parser.add_argument('--host', help='Bind host (default: HOST)')
    serve_parser.add_argument('--port', type=int, help='Bind port (default: PORT)')

    # Validate
    subparsers.add_parser('validate', help='Validate configuration')

    args = parser.parse_args(argv)

    from api.logging_config import setup_logging
    setup_logging()

    if args.command == 'adapters' and args.adapters_command == 'list':
        return cmd_adapters_list(args)
    elif args.command == 'runs' and args.runs_command == 'list':
        return asyncio.run(cmd_runs_list(args))
    elif args.command == 'runs' and args.runs_command == 'show':
        return asyncio.run(cmd_runs_show(args))
    elif args.command == 'runs' and args.runs_command == 'recover':
        return asyncio.run(cmd_runs_recover())
    elif args.command == 'serve':
        return cmd_serve(args)
    elif args.command == 'validate':
        return cmd_validate()

    parser.print_help()
    return 1


def cmd_adapters_list(args) -> int:
    """List discovered adapter plugins."""
    from adapters.registry import discover_adapters

    adapters = discover_adapters(args.root)
    if not adapters:
        print("No adapters found")
        return 0

    print(f"\n{'NAME':<30} {'VERSION':<12} PLATFORM")
    print("-" * 60)
    for adapter in adapters:
        print(f"{adapter.name:<30} {adapter.version:<12} {adapter.platform or '-'}")
    return 0


def _runner():
    from api.config import get_config
    from api.database import BatchRunsRepo
    from campaigns.core.batch_runner import BatchJobRunner
    return BatchJobRunner(BatchRunsRepo(get_config().DATABASE_PATH))


async def _init_db():
    from api.config import get_config
    from api.database import init_database
    await init_database(get_config().DATABASE_PATH)


async def cmd_runs_list(args) -> int:
    """Show recent batch runs."""
    await _init_db()
    runs = await _runner().list_recent(args.limit)
    if not runs:
        print("No runs recorded")
        return 0

    print(f"\n{'ID':<34} {'KIND':<22} {'STATUS':<10} {'OK':>4} {'SKIP':>5} {'ERR':>4} {'TOTAL':>6}  STARTED")
    print("-" * 110)
    for run in runs:
        print(
            f"{run['id']:<34} {run['kind']:<22} {run['status']:<10} "
            f"{run['processed_ok']:>4} {run['skipped']:>5} {run['errors']:>4} {run['total']:>6}  {run['started_at']}"
        )
    return 0


async def cmd_runs_show(args) -> int:
    """Show one batch run."""
    await _init_db()
    run = await _runner().get_run(args.run_id)
    if run is None:
        print(f"Run not found: {args.run_id}")
        return 1

    print("\n" + "=" * 60)
    print(f"RUN {run['id']}")
    print("=" * 60)
    print(f"Kind:     {run['kind']}")
    print(f"Target:   {run.get('target_name') or run['target_id']}")
    print(f"Status:   {run['status']}")
    print(f"Started:  {run['started_at']}")
    print(f"Finished: {run['finished_at'] or '-'}")
    print(f"\nProcessed: {run['processed_ok']}")
    print(f"Skipped:   {run['skipped']}")
    print(f"Errors:    {run['errors']}")
    print(f"Total:     {run['total']}")
    if run.get('last_error'):
        print(f"\nLast error: {run['last_error']}")
    return 0


async def cmd_runs_recover() -> int:
    """Mark runs left 'running' by a previous process as failed."""
    await _init_db()
    recovered = await _runner().recover_interrupted()
    print(f"Recovered {recovered} interrupted run(s)")
    return 0


def cmd_serve(args) -> int:
    """Run the observer API with uvicorn."""
    import uvicorn
    from api.config import get_config

    config = get_config()
    uvicorn.run(
        "api.main:app",
        host=args.host or config.HOST,
        port=args.port or config.PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
    return 0


def cmd_validate() -> int:
    """Validate configuration."""
    from api.config import get_config

    problems = get_config().validate()
    if problems:
        print(f"\n❌ CONFIGURATION PROBLEMS ({len(problems)}):")
        for problem in problems:
            print(f"  - {problem}")
        return 1

    print("✅ Configuration OK")
    return 0


if __name__ == '__main__':
    sys.exit(main())
