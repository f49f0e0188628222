"""
HTTP client for the simulation backend.

Wraps the three collaborator endpoints the playback engine depends on:
- the visual simulation run (raw history rows + run metadata)
- the diagram detail of a catalog entry (used only for display names)
- the catalog list (used only for the product name in the header)

Every transport or status failure surfaces as ``SimulationFetchError``.
"""

from typing import Any, Dict, List, Optional

import httpx

from .app_config import AppSettings, get_settings
from .shared.logger import get_logger

logger = get_logger(__name__)


class SimulationFetchError(Exception):
    """The simulation backend could not be reached or returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BackendClient:
    """Async client for the simulation backend REST API."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            settings: Backend URL and timeouts; defaults to the process settings
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.backend_url,
            timeout=timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, path, json=json)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("Backend %s %s returned %d", method, path, status)
            raise SimulationFetchError(f"Simulation backend returned {status} for {path}", status) from e
        except httpx.HTTPError as e:
            logger.warning("Backend %s %s failed: %s", method, path, e)
            raise SimulationFetchError(f"Simulation backend unreachable: {e}") from e
        except ValueError as e:
            # response.json() on a non-JSON body
            raise SimulationFetchError(f"Simulation backend sent an invalid body for {path}") from e

    async def fetch_simulation_run(self, catalog_id: int, target_quantity: int) -> Dict[str, Any]:
        """Run the visual simulation for a product and target quantity.

        Returns:
            The run payload: ``simulation_metadata``, ``results`` and optional
            top-level fields such as ``modelo``.
        """
        data = await self._request(
            "POST",
            "/simulacion/visual-run",
            timeout=self.settings.run_timeout,
            json={"id_catalogo": catalog_id, "cantidad": target_quantity},
        )
        if not isinstance(data, dict):
            raise SimulationFetchError("Simulation backend sent an unexpected run payload")
        return data

    async def fetch_diagram_detail(self, catalog_id: int) -> Dict[str, Any]:
        """Get the main diagram and sub-diagrams of a catalog entry."""
        data = await self._request(
            "GET",
            f"/diagramas-detalle/{catalog_id}",
            timeout=self.settings.request_timeout,
        )
        return data if isinstance(data, dict) else {}

    async def fetch_catalog_list(self) -> List[Dict[str, Any]]:
        """List catalog entries, normalized to ``{"id", "name"}`` dicts."""
        data = await self._request("GET", "/catalogo/", timeout=self.settings.request_timeout)
        if isinstance(data, dict):
            data = data.get("catalogos", [])
        if not isinstance(data, list):
            return []

        catalogs = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            cid = entry.get("id_catalogo", entry.get("id"))
            if cid is None:
                continue
            catalogs.append({"id": cid, "name": entry.get("nombre", entry.get("name", ""))})
        return catalogs
