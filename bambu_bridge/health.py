"""Health reporting for the bridge process."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)

CONTROL_PLANE = "control-plane"
PRINTER_PREFIX = "printer:"


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks control-plane reachability and printer connectivity.

    Printers are informational only: an offline printer does not make the
    bridge itself unhealthy, an unreachable control plane does. Entries keep
    their timestamp while their state is unchanged, so ``updatedAt`` tells
    how long a printer has been offline.
    """

    def __init__(self) -> None:
        self._components: Dict[str, ComponentStatus] = {}
        self._printers: Dict[str, ComponentStatus] = {}
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            _store(self._components, name, healthy, detail)

    async def sync_printers(self, connectivity: Mapping[str, bool]) -> None:
        """Replace the printer entries with the given id -> connected map."""

        async with self._lock:
            for printer_id in [p for p in self._printers if p not in connectivity]:
                del self._printers[printer_id]
            for printer_id, connected in connectivity.items():
                _store(
                    self._printers,
                    printer_id,
                    connected,
                    None if connected else "mqtt disconnected",
                )

    async def printer(self, printer_id: str) -> Optional[Dict[str, object]]:
        async with self._lock:
            status = self._printers.get(printer_id)
        return None if status is None else _printer_dict(printer_id, status)

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._components.values()]
            printers = [
                _printer_dict(printer_id, status)
                for printer_id, status in self._printers.items()
            ]

        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        return {
            "status": overall,
            "components": components,
            "printers": printers,
            "fleet": {
                "total": len(printers),
                "connected": sum(1 for item in printers if item["healthy"]),
            },
        }


def _store(
    table: Dict[str, ComponentStatus], name: str, healthy: bool, detail: Optional[str]
) -> None:
    previous = table.get(name)
    if previous is not None and previous.healthy == healthy and previous.detail == detail:
        return
    table[name] = ComponentStatus(name=name, healthy=healthy, detail=detail)


def _printer_dict(printer_id: str, status: ComponentStatus) -> Dict[str, object]:
    payload = status.as_dict()
    payload["name"] = f"{PRINTER_PREFIX}{printer_id}"
    return payload


class HealthServer:
    """Small HTTP server exposing ``/healthz`` and per-printer status."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/healthz/printers/{printer_id}", self._handle_printer)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._host, self._port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)

    async def _handle_printer(self, request: web.Request) -> web.Response:
        printer_id = request.match_info["printer_id"]
        payload = await self._reporter.printer(printer_id)
        if payload is None:
            return web.json_response({"error": "unknown printer"}, status=404)
        return web.json_response(payload, status=200 if payload["healthy"] else 503)
