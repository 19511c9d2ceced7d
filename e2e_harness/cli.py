#!/usr/bin/env python3
"""
Operator CLI for the e2e harness.

Commands:
    e2e-harness build            Build the backend test binary if it is missing
    e2e-harness up [--no-frontend] [--create-user]
                                 Start a backend (and dev server), print the
                                 endpoints and keep them running until Ctrl-C

Configuration comes from the same environment variables the pytest plugin
reads (see ``e2e_harness.config``).
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from e2e_harness.backend import BackendSupervisor, backend_test_name
from e2e_harness.binary import BinaryProvisioner
from e2e_harness.config import get_settings
from e2e_harness.errors import HarnessError
from e2e_harness.frontend import FrontendSupervisor
from e2e_harness.log_sink import LogSink
from e2e_harness.users import UserProvisioner, generate_test_user

logger = logging.getLogger("e2e_harness.cli")


def _build(args) -> int:
    settings = get_settings()
    provisioner = BinaryProvisioner(settings.backend_binary, settings.build_command)
    try:
        path = provisioner.ensure_binary(settings.project_root)
    except HarnessError as e:
        logger.error(str(e))
        return 1
    print(path)
    return 0


async def _up(args) -> int:
    settings = get_settings()
    sink = LogSink(settings.log_dir, args.name)
    backends = BackendSupervisor(settings, sink)
    frontends = FrontendSupervisor(settings, sink)
    backend = frontend = None

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal, stopping services...")
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows event loops: Ctrl-C arrives as KeyboardInterrupt instead
            pass

    try:
        backend = await backends.spawn(backend_test_name(args.name))
        if not args.no_frontend:
            frontend = await frontends.spawn(backend.port)

        user = None
        if args.create_user:
            wanted = generate_test_user()
            result = await UserProvisioner(settings.routes, sink).make_user(
                backend.address, wanted.username, wanted.password
            )
            if not result.success:
                raise result.error
            user = result.user

        logger.info("=" * 60)
        logger.info(f"Backend:  {backend.address} (test name {backend.test_name})")
        if frontend is not None:
            logger.info(f"Frontend: {frontend.url}")
        if user is not None:
            logger.info(f"User:     {user.username} / {user.password}")
        logger.info(f"Log file: {sink.path}")
        logger.info("=" * 60)

        await stop.wait()
    except HarnessError as e:
        logger.error(f"Error starting services: {e}")
        return 1
    finally:
        await frontends.stop(frontend)
        await backends.stop(backend)
        logger.info("Services stopped")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="e2e-harness", description="End-to-end test environment tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("build", help="Build the backend test binary if it is missing")

    up = sub.add_parser("up", help="Start a backend/frontend pair and keep it running")
    up.add_argument("--name", default="manual-session", help="Test name used for logs and the database")
    up.add_argument("--no-frontend", action="store_true", help="Only start the backend")
    up.add_argument("--create-user", action="store_true", help="Create a login user after startup")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == "build":
        return _build(args)
    try:
        return asyncio.run(_up(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
