"""
Read-only HTTP status endpoint for the watchdog daemon.

Serves the latest published snapshot of every guest. Snapshots are
immutable, so handlers never touch a guest's lock.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException

from guestwatch import __version__
from guestwatch.monitor.models import HealthState

if TYPE_CHECKING:
    from guestwatch.monitor.scheduler import PollScheduler

__all__ = ["StatusServer"]

logger = logging.getLogger(__name__)


class StatusServer:
    """FastAPI app exposing per-guest watchdog status."""

    def __init__(self, scheduler: PollScheduler, port: int = 60890, host: str = "127.0.0.1"):
        self.scheduler = scheduler
        self.port = port
        self.host = host
        self._start_time = time.time()
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="guestwatch", version=__version__)

        @app.get("/health")
        async def health() -> dict[str, Any]:
            return {
                "status": "ok",
                "running": self.scheduler.running,
                "uptime_seconds": round(time.time() - self._start_time, 1),
                "version": __version__,
            }

        @app.get("/status")
        async def status() -> dict[str, Any]:
            snapshots = self.scheduler.status()
            counts = {state.value: 0 for state in HealthState}
            for snapshot in snapshots.values():
                counts[snapshot.state.value] += 1
            return {
                "guests": [s.to_dict() for s in snapshots.values()],
                "counts": counts,
            }

        @app.get("/status/{guest_id}")
        async def guest_status(guest_id: str) -> dict[str, Any]:
            snapshot = self.scheduler.guest_status(guest_id)
            if snapshot is None:
                raise HTTPException(status_code=404, detail=f"Unknown guest: {guest_id}")
            return snapshot.to_dict()

        return app
