import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn

from guestwatch.config.app import WatchdogDaemonConfig, load_config
from guestwatch.events.handlers import LoggingEventHandler, TelegramEventHandler
from guestwatch.events.sink import BufferedEventSink
from guestwatch.monitor.scheduler import PollScheduler
from guestwatch.servers.http import StatusServer
from guestwatch.transport.base import TransportAdapter
from guestwatch.transport.proxmox import ProxmoxTransport
from guestwatch.utils.logging import setup_file_logging

logger = logging.getLogger(__name__)


class WatchdogRunner:
    """Runner for the guestwatch daemon."""

    def __init__(
        self,
        config: WatchdogDaemonConfig,
        transport: TransportAdapter | None = None,
        verbose: bool = False,
    ):
        self.config = config
        self.verbose = verbose
        self._shutdown_requested = False

        self.guests, self.config_errors = config.load_guests()
        for error in self.config_errors:
            logger.error(f"Not monitoring guest: {error}")

        self.transport = transport or ProxmoxTransport(config.proxmox)

        self.telegram: TelegramEventHandler | None = None
        handlers: list = [LoggingEventHandler()]
        chat_overrides = {g.id: g.telegram_chat_id for g in self.guests if g.telegram_chat_id}
        if config.notifications.telegram.bot_token:
            self.telegram = TelegramEventHandler(config.notifications.telegram, chat_overrides)
            handlers.append(self.telegram)
        self.sink = BufferedEventSink(handlers, maxsize=config.notifications.queue_size)

        self.scheduler = PollScheduler.from_guests(
            self.guests, self.transport, self.sink, config.monitor
        )

        self.status_server: StatusServer | None = None
        if config.status_server.enabled:
            self.status_server = StatusServer(
                self.scheduler,
                port=config.status_server.port,
                host=config.status_server.host,
            )

    def request_shutdown(self) -> None:
        self._shutdown_requested = True

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

    async def run(self) -> None:
        self._setup_signal_handlers()

        if not self.guests:
            logger.warning("No valid guests configured, nothing to watch")

        await self.sink.start()
        await self.scheduler.start()

        server: uvicorn.Server | None = None
        server_task: asyncio.Task | None = None
        if self.status_server:
            server_config = uvicorn.Config(
                self.status_server.app,
                host=self.status_server.host,
                port=self.status_server.port,
                log_level="warning",
                access_log=False,
            )
            server = uvicorn.Server(server_config)
            server_task = asyncio.create_task(server.serve())

        try:
            while not self._shutdown_requested:
                await asyncio.sleep(0.5)
        finally:
            await self.shutdown(server, server_task)

    async def shutdown(
        self,
        server: uvicorn.Server | None = None,
        server_task: asyncio.Task | None = None,
    ) -> None:
        """Stop polling, let in-flight resets finish, then flush events."""
        logger.info("Shutting down watchdog")

        # No new polls; in-flight reads are abandoned.
        await self.scheduler.stop()
        await self.scheduler.drain_recoveries(self.config.monitor.shutdown_grace)

        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task

        await self.sink.stop()
        if self.telegram:
            await self.telegram.aclose()
        await self.transport.aclose()
        logger.info("Watchdog stopped")


async def run_watchdog(config_path: Path | None = None, verbose: bool = False) -> None:
    config = load_config(str(config_path) if config_path else None)
    setup_file_logging(config.logging, verbose=verbose)
    runner = WatchdogRunner(config, verbose=verbose)
    await runner.run()


def main(config_path: Path | None = None, verbose: bool = False) -> None:
    try:
        asyncio.run(run_watchdog(config_path=config_path, verbose=verbose))
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the guestwatch daemon")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--config", type=Path, help="Path to config file")

    args = parser.parse_args()
    main(config_path=args.config, verbose=args.verbose)
