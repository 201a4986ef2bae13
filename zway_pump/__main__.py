#
# Copyright 2025 The TadoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Command-line interface for the Z-Way pump outlet bridge."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from .__version__ import __version__
from .api import PumpOutletAPI
from .client import ZWayClient
from .config import ConfigError, PumpOutletConfig
from .database import ensure_schema_and_migrate
from .engine import PumpOutletEngine
from .routes import create_app, register_routes
from .state import AccessoryStateManager
from . import zeroconf_register

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)


def build_log_config(args) -> dict:
    """uvicorn log config matching the logging mode chosen in main()."""
    if args.syslog:
        # Syslog mode: disable uvicorn's default logging, use root logger
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": formatter,
            "access": dict(formatter),
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "formatter": "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        },
    }


async def run_server(args, config: PumpOutletConfig):
    """Run the bridge: engine, poll loop and REST server."""
    sink: Optional[PumpOutletAPI] = None
    engine: Optional[PumpOutletEngine] = None
    server: Optional[uvicorn.Server] = None
    advertised = False

    def handle_signal(signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, shutting down...")
        if sink:
            for queue in list(sink.event_listeners):
                try:
                    queue.put_nowait(None)
                except asyncio.QueueFull:
                    logger.debug("SSE queue full during shutdown")
        if server:
            server.should_exit = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        db_path = str(Path(os.path.expanduser(args.state)))
        try:
            ensure_schema_and_migrate(db_path)
        except Exception as e:
            logger.error(f"Database migration check failed: {e}")
            raise

        sink = PumpOutletAPI()
        client = ZWayClient(config.host, config.user, config.password, db_path)
        state = AccessoryStateManager(db_path)
        engine = PumpOutletEngine(config, client, state, sink)

        app = create_app()
        register_routes(app, lambda: sink)

        await engine.start()

        if args.advertise:
            ok, message = await zeroconf_register.register_service_async(
                port=args.port, props={'path': '/', 'version': __version__})
            advertised = ok
            if not ok:
                logger.warning(f"mDNS advertisement failed: {message}")

        logger.info("*** Z-Way Pump Outlet ready! ***")
        logger.info(f"Controller: {config.host}")
        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Status: http://0.0.0.0:{args.port}/status")
        logger.info(f"Live Events: http://0.0.0.0:{args.port}/events")

        uv_config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=build_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(uv_config)
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down gracefully...")
    except Exception as e:
        logger.error(f"ERROR: Failed to start Z-Way Pump Outlet: {e}")
        raise
    finally:
        logger.info("Performing cleanup...")
        if engine:
            await engine.stop()
        if sink:
            await sink.cleanup()
        if advertised:
            await zeroconf_register.unregister_service_async()

        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def configure_logging(args):
    if args.syslog:
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            # Network address (host:port)
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'zway-pump[%(process)d]: %(levelname)s %(message)s'
            ))

            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            root_logger.handlers = [syslog_handler]

            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # No timestamp - syslog adds it
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Z-Way Pump Outlet - bridge Z-Wave pump outlets from a Z-Way controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with a config file (homebridge platform block or full config.json)
  zway-pump --config ~/.homebridge/config.json

  # Everything on the command line
  zway-pump --host http://192.168.1.10:8083/ --user admin --password secret --threshold-wattage 5

  # Drop all tracked accessories and start over
  zway-pump --config pump.json --nuke

  # Run as system daemon and advertise the API over mDNS
  zway-pump --config pump.json --daemon --advertise

API Endpoints:
  GET  /status                     - Bridge status
  GET  /accessories                - All pump outlets
  GET  /accessories/{id}           - One pump outlet
  POST /accessories/{id}/set       - Turn an outlet on/off (?active=true|false)
  POST /identify/{id}              - Identify an outlet
  GET  /events                     - Server-Sent Events for real-time updates
        """
    )
    parser.add_argument("--config",
                       help="JSON config file (platform block with host, user, pass, nuke, ignore, toPoll, thresholdWattage)")
    parser.add_argument("--host",
                       help="Z-Way base URL (e.g. http://192.168.1.10:8083/)")
    parser.add_argument("--user", help="Z-Way user")
    parser.add_argument("--password", help="Z-Way password")
    parser.add_argument("--nuke", action="store_true",
                       help="Remove all tracked accessories on startup")
    parser.add_argument("--ignore", type=int, nargs="*",
                       help="Device ids to ignore")
    parser.add_argument("--to-poll", type=int, nargs="*", dest="to_poll",
                       help="Device ids whose meter should be actively polled")
    parser.add_argument("--threshold-wattage", type=float, dest="threshold_wattage",
                       help="Power draw below which a running pump is considered empty")
    parser.add_argument("--state", default="~/.zway-pump.db",
                       help="Path to state database (default: ~/.zway-pump.db)")
    parser.add_argument("--port", type=int, default=4408,
                       help="Port for REST API server (default: 4408)")
    parser.add_argument("--advertise", action="store_true",
                       help="Advertise the REST API over mDNS")
    parser.add_argument("--verbose", action="store_true",
                       help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                       help="Run in daemon mode (structured logging for syslog, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                       help="Send logs to syslog instead of stdout (e.g., /dev/log, localhost:514)")
    parser.add_argument("--pid-file",
                       help="Write process ID to specified file (useful for daemon mode)")
    return parser


def main():
    """Main entry point for the CLI."""
    args = build_parser().parse_args()

    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/zway-pump.pid" if sys.platform != "win32" else "zway-pump.pid"

    configure_logging(args)

    try:
        config = PumpOutletConfig.from_args(args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args, config))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
