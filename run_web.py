#!/usr/bin/env python3
"""
Run the job board web API.

This script starts the FastAPI server with uvicorn.

Usage:
    python run_web.py
    python run_web.py --port 8000
    python run_web.py --db job_board.db
    python run_web.py --config job_board.yaml
    python run_web.py --host 0.0.0.0 --port 8000
    python run_web.py --reload  # Enable auto-reload for development
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run Job Board API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_web.py
  python run_web.py --port 8000
  python run_web.py --db job_board.db
  python run_web.py --config job_board.yaml
  python run_web.py --reload
        """
    )

    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run on (default: 8000)"
    )

    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--db",
        default=None,
        help="Database path for saved jobs (default: DB_PATH or job_board.db)"
    )

    parser.add_argument(
        "--config",
        default=None,
        help="YAML settings file (default: JOBBOARD_CONFIG if set)"
    )

    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Log level (default: info)"
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (watch for file changes)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1); each worker keeps its own caches"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Settings are read from the environment by the app factory
    if args.db:
        os.environ["DB_PATH"] = str(Path(args.db).absolute())
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: config file not found: {config_path}")
            sys.exit(1)
        os.environ["JOBBOARD_CONFIG"] = str(config_path.absolute())

    print("=" * 60)
    print("Job Board API")
    print("=" * 60)
    print(f"Database: {os.environ.get('DB_PATH', 'job_board.db')}")
    print(f"Server: http://{args.host}:{args.port}")
    print(f"API Docs: http://{args.host}:{args.port}/api/docs")
    print(f"Reload: {'Enabled' if args.reload else 'Disabled'}")
    print("=" * 60)
    print()

    try:
        uvicorn.run(
            "job_board.api.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=args.workers if not args.reload else 1,  # Reload doesn't work with multiple workers
            log_level=args.log_level
        )
    except KeyboardInterrupt:
        print("\nShutting down server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
