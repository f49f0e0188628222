"""
Root conftest.py for simulation playback tests.

This file contains shared fixtures and pytest configuration
that applies to all test modules.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from api.app_config import AppSettings


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running",
    )


def pytest_collection_modifyitems(config, items):
    """Mark tests with 'websocket' in their name."""
    for item in items:
        if "websocket" in item.name.lower():
            item.add_marker(pytest.mark.websocket)


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def scenario_rows():
    """Two entities, two timestamps; entity 1 reaches its quota at t=5."""
    return [
        {"t": 0, "id": "1", "state": "TRABAJANDO", "meta": "0/10"},
        {"t": 0, "id": "2", "state": "ESPERANDO", "meta": "0"},
        {"t": 5, "id": "1", "state": "TRABAJANDO", "meta": "10/10"},
    ]


@pytest.fixture
def wire_rows():
    """History rows as the simulation backend sends them, out of order."""
    return [
        {"T_HIST": 30.0, "ID_PROCESO": 2, "ESTADO": "PRODUCIENDO", "CANTIDAD": 1, "META": "1/4", "ID_MAQUINA": "Horno"},
        {"T_HIST": 0.0, "ID_PROCESO": 1, "ESTADO": "TRABAJANDO", "CANTIDAD": 0, "META": "0/4", "ID_MAQUINA": "Prensa"},
        {"T_HIST": 12.5, "ID_PROCESO": 1, "ESTADO": "BLOQUEADO (LLENO)", "CANTIDAD": 3, "META": "3/4", "ID_MAQUINA": "Prensa"},
        {"T_HIST": 12.5, "ID_PROCESO": 2, "ESTADO": "ESPERANDO", "CANTIDAD": 0, "META": "0/4", "ID_MAQUINA": "Horno"},
        {"T_HIST": 60.0, "ID_PROCESO": 1, "ESTADO": "FINALIZADO", "CANTIDAD": 4, "META": "4/4", "ID_MAQUINA": "Prensa"},
    ]


@pytest.fixture
def diagram_detail():
    return {
        "diagrama_principal": {
            "procesos": [
                {"id_proceso": 1, "nombre_proceso": "Corte"},
            ],
        },
        "subdiagramas": [
            {"procesos": [{"id_proceso": 2, "nombre_proceso": "Horneado"}]},
        ],
    }


@pytest.fixture
def run_payload(wire_rows):
    return {
        "simulation_metadata": {
            "bottleneck_process_id": 1,
            "bottleneck_buffer": 6,
        },
        "results": {
            "raw_history_rows": wire_rows,
            "detalles_procesos": {
                "1": {"buffer_recomendado": 5, "t_activo": "40s", "t_pausado": "20s", "maq": 2, "pers": 1},
                "2": {"buffer_recomendado": 2},
            },
            "chart_base64": "iVBORw0KGgo=",
        },
    }


@pytest.fixture
def fake_client(run_payload, diagram_detail):
    """Backend client whose fetches resolve immediately."""
    client = MagicMock()
    client.fetch_simulation_run = AsyncMock(return_value=run_payload)
    client.fetch_diagram_detail = AsyncMock(return_value=diagram_detail)
    client.fetch_catalog_list = AsyncMock(return_value=[{"id": 7, "name": "Silla"}])
    return client


@pytest.fixture
def slow_settings():
    """Ticks far apart so playback position only moves when a test says so."""
    return AppSettings(base_tick_ms=60_000.0)


@pytest.fixture
def fast_settings():
    return AppSettings(base_tick_ms=5.0)
