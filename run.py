"""Command line entry point for the FizzBuzz API.

Starts the HTTP server with uvicorn.  Every flag defaults to the
matching field of ``Settings`` (and therefore to its environment
variable), so the server can be configured either way.

Usage:
    python run.py --db off --port 8080

``--db`` accepts a path to the SQLite database file or one of two
special values: ``off`` keeps hit counts in memory only and
``:memory:`` uses a volatile SQLite database.
"""
import argparse
import asyncio
import dataclasses
import logging
from typing import List, Optional

from uvicorn import Config, Server

from fizzbuzz_api.app.core.config import DATABASE_MEMORY, DATABASE_OFF, Settings, settings
from fizzbuzz_api.app.main import create_app


def parse_args(argv: Optional[List[str]] = None, defaults: Settings = settings) -> Settings:
    """Return ``defaults`` overridden by the command line flags."""
    parser = argparse.ArgumentParser(description="Serve FizzBuzz sequences over HTTP.")
    parser.add_argument(
        "--db",
        default=defaults.database_url,
        help=(
            "path to the SQLite database file; special values: "
            f"{DATABASE_OFF!r} to keep stats in memory, "
            f"{DATABASE_MEMORY!r} for an in-memory SQLite database"
        ),
    )
    parser.add_argument("--host", default=defaults.host, help="address to bind to")
    parser.add_argument("--port", type=int, default=defaults.port, help="listening port")
    parser.add_argument(
        "--logging",
        action=argparse.BooleanOptionalAction,
        default=defaults.http_logging,
        help="enable HTTP request logging",
    )
    parser.add_argument("--log-level", default=defaults.log_level, help="root logger level")
    args = parser.parse_args(argv)
    return dataclasses.replace(
        defaults,
        database_url=args.db,
        host=args.host,
        port=args.port,
        http_logging=args.logging,
        log_level=args.log_level,
    )


async def serve(app_settings: Settings) -> None:
    """Serve the API until SIGINT or SIGTERM.

    uvicorn installs the signal handlers and runs the application's
    shutdown, which closes the statistics store.
    """
    app = create_app(app_settings)
    config = Config(
        app=app,
        host=app_settings.host,
        port=app_settings.port,
        log_level=app_settings.log_level.lower(),
        # Requests are logged by AccessLogMiddleware.
        access_log=False,
    )
    server = Server(config)
    logging.getLogger(__name__).info("Listening on %s:%s", app_settings.host, app_settings.port)
    await server.serve()


def main(argv: Optional[List[str]] = None) -> None:
    asyncio.run(serve(parse_args(argv)))


if __name__ == "__main__":
    main()
