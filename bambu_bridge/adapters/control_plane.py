"""HTTP client for the fleet control-plane API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from ..config import ControlPlaneConfig
from ..core import Command, CommandFormatError, PrinterDescriptor

LOGGER = logging.getLogger(__name__)


class ControlPlaneError(RuntimeError):
    """Raised when a control-plane round trip fails."""


@dataclass(slots=True)
class UpdateResponse:
    commands: List[Command] = field(default_factory=list)
    printers: List[PrinterDescriptor] = field(default_factory=list)


class ControlPlaneClient:
    """Thin aiohttp wrapper around the ``/init``, ``/update`` and ``/camera`` calls."""

    def __init__(
        self,
        config: ControlPlaneConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            headers = {}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def init(self) -> List[PrinterDescriptor]:
        """Fetch the initial desired printer set."""

        payload = await self._post("/init", {})
        return _parse_printers(payload)

    async def update(self, report: Mapping[str, Any]) -> UpdateResponse:
        """Report fleet status and receive commands plus the desired printer set."""

        payload = await self._post("/update", dict(report))

        raw_commands = payload.get("commands") or []
        if not isinstance(raw_commands, list):
            raise ControlPlaneError("/update returned a non-list commands field")

        commands: List[Command] = []
        for raw in raw_commands:
            try:
                commands.append(Command.from_wire(raw))
            except CommandFormatError as exc:
                LOGGER.warning("Skipping malformed command: %s", exc)

        return UpdateResponse(commands=commands, printers=_parse_printers(payload))

    async def upload_camera_image(self, printer_id: str, image: str) -> None:
        await self._post("/camera", {"printer_id": printer_id, "image": image})

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._ensure_session()
        url = self.config.base_url.rstrip("/") + path

        try:
            async with session.post(url, json=body) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise ControlPlaneError(
                        f"{path} failed with status {response.status}: {detail.strip()[:200]}"
                    )
                if response.content_length == 0:
                    return {}
                payload = await response.json(content_type=None)
        except ControlPlaneError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ControlPlaneError(f"{path} request failed: {exc!r}") from exc

        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ControlPlaneError(f"{path} returned unexpected payload type")
        return payload


def _parse_printers(payload: Mapping[str, Any]) -> List[PrinterDescriptor]:
    printers = payload.get("printers")
    if printers is None:
        raise ControlPlaneError("Response is missing the printers list")
    if not isinstance(printers, list):
        raise ControlPlaneError("Response printers field is not a list")

    descriptors: List[PrinterDescriptor] = []
    for raw in printers:
        try:
            descriptors.append(PrinterDescriptor.from_wire(raw))
        except CommandFormatError as exc:
            raise ControlPlaneError(str(exc)) from exc
    return descriptors
