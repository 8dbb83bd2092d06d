"""Main entry point for promptty."""

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from . import __version__
from .agent.executor import ClaudeExecutor
from .bot.orchestrator import MessageOrchestrator
from .callbacks import CallbackHandler, CallbackServer
from .config import Settings, load_app_config, resolve_slack_auth, resolve_teams_auth
from .exceptions import ConfigurationError, MissingConfigError
from .platforms.base import PlatformAdapter
from .platforms.types import Platform
from .routing.router import Router
from .routing.session_manager import SessionManager
from .scheduler.sweeper import SessionSweeper
from .storage.database import DatabaseManager
from .storage.sessions import SessionStore


def setup_logging(debug: bool = False, level: str = "INFO") -> None:
    """Configure structured logging."""
    log_level = logging.DEBUG if debug else getattr(logging, level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if not debug
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Bridge Slack and Teams conversations to Claude Code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--version", action="version", version=f"promptty {__version__}")

    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    parser.add_argument(
        "--config-file", type=Path, help="Path to the channel configuration file"
    )

    parser.add_argument("--env-file", type=Path, help="Path to a .env file")

    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    overrides: Dict[str, Any] = {}
    if args.env_file is not None:
        overrides["_env_file"] = args.env_file
    if args.config_file is not None:
        overrides["config_path"] = args.config_file
    if args.debug:
        overrides["debug"] = True
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


async def create_application(config: Settings) -> Dict[str, Any]:
    """Create and wire the application components."""
    logger = structlog.get_logger()
    logger.info("Creating application components")

    app_config = load_app_config(config.config_path)

    slack_auth = resolve_slack_auth(config, app_config)
    teams_auth = resolve_teams_auth(config, app_config)
    if slack_auth is None and teams_auth is None:
        raise MissingConfigError(
            "No platform credentials configured: set SLACK_BOT_TOKEN and "
            "SLACK_APP_TOKEN, or TEAMS_APP_ID and TEAMS_APP_PASSWORD"
        )

    # Storage
    config.data_dir.mkdir(parents=True, exist_ok=True)
    db_manager = DatabaseManager(config.database_path)
    await db_manager.initialize()
    store = SessionStore(db_manager)
    session_manager = SessionManager(store)

    # Agent
    executor = ClaudeExecutor(
        callback_url=config.callback_url,
        default_timeout_seconds=config.agent_timeout_seconds,
        enable_mcp_bridge=config.enable_mcp_bridge,
    )
    orchestrator = MessageOrchestrator(
        app_config=app_config,
        session_manager=session_manager,
        executor=executor,
        timeout_seconds=config.agent_timeout_seconds,
    )

    # Platforms
    adapters: Dict[Platform, PlatformAdapter] = {}
    if slack_auth is not None:
        from .platforms.slack import SlackAdapter

        adapters[Platform.SLACK] = SlackAdapter(slack_auth, orchestrator)
    else:
        logger.info("Slack credentials not configured, Slack adapter disabled")

    if teams_auth is not None:
        try:
            from .platforms.teams import TeamsAdapter
        except ImportError as e:
            raise ConfigurationError(
                "Teams credentials are set but botbuilder is not installed; "
                "install promptty[teams]"
            ) from e
        adapters[Platform.TEAMS] = TeamsAdapter(
            teams_auth, orchestrator, port=config.teams_port
        )
    else:
        logger.info("Teams credentials not configured, Teams adapter disabled")

    router = Router(store, adapters, app_config)
    callback_server = CallbackServer(
        CallbackHandler(router), host=config.callback_host, port=config.callback_port
    )
    sweeper = SessionSweeper(session_manager, config.session_sweep_interval_seconds)

    logger.info(
        "Application components created successfully",
        platforms=[p.value for p in adapters],
        channel_count=len(app_config.channels),
    )

    return {
        "config": config,
        "app_config": app_config,
        "db_manager": db_manager,
        "session_manager": session_manager,
        "executor": executor,
        "orchestrator": orchestrator,
        "adapters": adapters,
        "router": router,
        "callback_server": callback_server,
        "sweeper": sweeper,
    }


async def run_application(app: Dict[str, Any]) -> None:
    """Run the application with graceful shutdown handling."""
    logger = structlog.get_logger()
    adapters: Dict[Platform, PlatformAdapter] = app["adapters"]
    callback_server: CallbackServer = app["callback_server"]
    sweeper: SessionSweeper = app["sweeper"]
    executor: ClaudeExecutor = app["executor"]
    db_manager: DatabaseManager = app["db_manager"]

    shutdown_event = asyncio.Event()

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info("Shutdown signal received", signal=signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("Starting promptty")

        await sweeper.start()
        await callback_server.start()

        tasks = []
        for platform, adapter in adapters.items():
            tasks.append(asyncio.create_task(adapter.start(), name=f"{platform.value}-adapter"))

        shutdown_task = asyncio.create_task(shutdown_event.wait(), name="shutdown")
        tasks.append(shutdown_task)

        # Wait for any task to complete or shutdown signal
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        for task in done:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Task failed",
                    task=task.get_name(),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error("Application error", error=str(e))
        raise
    finally:
        logger.info("Shutting down application")

        for platform, adapter in adapters.items():
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("Error stopping adapter", platform=platform.value, error=str(e))
        try:
            await sweeper.stop()
            await callback_server.stop()
            await executor.kill_all()
            await db_manager.close()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))

        logger.info("Application shutdown complete")


def _acquire_pidfile(pidfile: Path) -> None:
    """Stop any previous instance and write our PID.

    Two instances on one Slack app token would both receive every Socket
    Mode event and answer twice.
    """
    if pidfile.exists():
        try:
            old_pid = int(pidfile.read_text().strip())
            if old_pid != os.getpid():
                try:
                    os.kill(old_pid, 0)
                    os.kill(old_pid, signal.SIGTERM)
                    time.sleep(2)
                except ProcessLookupError:
                    pass  # already dead
                except PermissionError:
                    pass  # different user's process, skip
        except (ValueError, OSError):
            pass  # corrupt PID file, ignore

    pidfile.parent.mkdir(parents=True, exist_ok=True)
    pidfile.write_text(str(os.getpid()))


def _release_pidfile(pidfile: Path) -> None:
    try:
        pidfile.unlink(missing_ok=True)
    except OSError:
        pass


async def main(argv: Optional[List[str]] = None) -> None:
    """Main application entry point."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)
    logger = structlog.get_logger()

    try:
        config = load_settings(args)
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    if not args.debug and config.log_level != "INFO":
        logging.getLogger().setLevel(config.log_level)

    _acquire_pidfile(config.pidfile_path)
    logger.info("Starting promptty", version=__version__)

    try:
        logger.info(
            "Configuration loaded",
            config_path=str(config.config_path),
            data_dir=str(config.data_dir),
            debug=config.debug,
        )
        app = await create_application(config)
        await run_application(app)

    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)
    finally:
        _release_pidfile(config.pidfile_path)


def run() -> None:
    """Synchronous entry point for the console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
