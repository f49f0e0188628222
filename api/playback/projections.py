"""
Presentation projections.

Pure functions from the current frame (possibly None) to the shapes consumed
by the diagram, the dashboard and the process table. Nothing here is cached;
callers recompute on every read.
"""

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..shared.logger import get_logger
from .models import EntityDetail, EntityState, Frame, VisualStatus, to_number
from .normalizer import placeholder_name

logger = get_logger(__name__)

AWAITING_STATUS = "awaiting"

FINISHED_MARKERS = (
    "FINALIZADO",
    "COMPLETADO",
    "TERMINADO",
    "META ALCANZADA",
    "META CUMPLIDA",
    "FINISHED",
    "COMPLETED",
)
PAUSED_MARKERS = ("BLOQUEADO", "PAUSADO", "LLENO", "BLOCKED", "PAUSED")
WORKING_MARKERS = ("TRABAJANDO", "PRODUCIENDO", "ACTIVO", "WORKING")


def parse_progress(value: Any) -> Tuple[float, Optional[float]]:
    """Parse a queue/progress value.

    Accepts a bare number, a numeric string or a ``"current/total"`` string.

    Returns:
        (current, total); total is None when not given. Unparseable parts are 0.
    """
    if isinstance(value, str) and "/" in value:
        current_str, total_str = value.split("/", 1)
        current = to_number(current_str)
        return (current if current is not None else 0.0, to_number(total_str))
    number = to_number(value)
    return (number if number is not None else 0.0, None)


@lru_cache(maxsize=256)
def _flag_ambiguous(label: str) -> None:
    # Cached so each distinct backend string is reported once per process
    logger.warning(
        "Status %r matches both paused and finished markers; classified as finished, needs manual review",
        label,
    )


@dataclass(frozen=True)
class StatusClassifier:
    """Maps free-text backend statuses to visual statuses.

    Precedence: explicit status code, then finished > paused > working
    substring markers, else idle. A reached ``current/total`` progress always
    yields finished.
    """

    finished_markers: Tuple[str, ...] = FINISHED_MARKERS
    paused_markers: Tuple[str, ...] = PAUSED_MARKERS
    working_markers: Tuple[str, ...] = WORKING_MARKERS

    def classify_label(self, label: str, status_code: Optional[str] = None) -> VisualStatus:
        if status_code:
            try:
                return VisualStatus(status_code.strip().lower())
            except ValueError:
                logger.debug("Unknown status code %r, falling back to label rules", status_code)

        text = (label or "").upper()
        finished = any(marker in text for marker in self.finished_markers)
        paused = any(marker in text for marker in self.paused_markers)
        if finished:
            if paused:
                _flag_ambiguous(label)
            return VisualStatus.FINISHED
        if paused:
            return VisualStatus.PAUSED
        if any(marker in text for marker in self.working_markers):
            return VisualStatus.WORKING
        return VisualStatus.IDLE

    def classify(self, state: EntityState) -> VisualStatus:
        status = self.classify_label(state.status, state.status_code)
        current, total = parse_progress(state.production_label)
        if total is not None and total > 0 and current >= total:
            return VisualStatus.FINISHED
        return status


default_classifier = StatusClassifier()


def classify_status(state: EntityState, classifier: Optional[StatusClassifier] = None) -> VisualStatus:
    """Classify an entity state with the given (or default) classifier."""
    return (classifier or default_classifier).classify(state)


# ============= Diagram =============


@dataclass(frozen=True)
class NodeState:
    """Visual state of one diagram node."""

    status: VisualStatus
    queue: float
    busy: bool
    label: str
    display_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "queue": self.queue,
            "busy": self.busy,
            "label": self.label,
            "display_name": self.display_name,
        }


def node_states(
    frame: Optional[Frame],
    classifier: Optional[StatusClassifier] = None,
) -> Dict[str, NodeState]:
    """Status-colored node states for every entity of the frame."""
    if frame is None:
        return {}

    states: Dict[str, NodeState] = {}
    for entity_id, state in frame.entities.items():
        status = classify_status(state, classifier)
        states[entity_id] = NodeState(
            status=status,
            queue=state.queue_value,
            busy=status == VisualStatus.WORKING,
            label=state.status,
            display_name=state.display_name,
        )
    return states


# ============= Dashboard =============


def format_elapsed(seconds: float) -> str:
    """Format simulated seconds as ``"<m>m <s>s"``."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        seconds = 0
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}m {secs}s"


def _frame_bottleneck(frame: Optional[Frame]) -> Optional[Dict[str, Any]]:
    if frame is None or frame.bottleneck is None:
        return None
    raw = frame.bottleneck
    entity_id = raw.get("id_proceso", raw.get("entity_id"))
    queue = to_number(raw.get("cantidad_cola", raw.get("queue")))
    return {
        "entity_id": str(entity_id) if entity_id is not None else None,
        "name": str(raw.get("nombre", raw.get("name")) or ""),
        "queue": queue if queue is not None else 0.0,
    }


def dashboard_metrics(
    frame: Optional[Frame],
    metadata: Optional[Mapping[str, Any]] = None,
    details: Optional[Mapping[str, EntityDetail]] = None,
    model_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Dashboard values for the current frame.

    A frame that carries its own bottleneck and buffer stock wins. Otherwise
    the bottleneck comes from run metadata (not derived per frame) and only
    its queue value follows the current frame; the buffer is the metadata's
    bottleneck buffer, else the bottleneck's recommended buffer, else 0.
    """
    metadata = metadata or {}
    details = details or {}
    elapsed = frame.timestamp if frame is not None else 0.0

    bottleneck = _frame_bottleneck(frame)
    bottleneck_id = metadata.get("bottleneck_process_id", metadata.get("bottleneckProcessId"))
    if bottleneck is None and bottleneck_id is not None:
        entity_id = str(bottleneck_id)
        detail = details.get(entity_id)
        state = frame.entities.get(entity_id) if frame is not None else None
        if state is not None:
            name = state.display_name
        elif detail is not None:
            name = detail.display_name
        else:
            name = placeholder_name(entity_id)
        bottleneck = {
            "entity_id": entity_id,
            "name": name,
            "queue": state.queue_value if state is not None else 0.0,
        }

    buffer = frame.buffer if frame is not None else None
    if buffer is None:
        buffer = to_number(metadata.get("bottleneck_buffer", metadata.get("bottleneckBuffer")))
    if buffer is None and bottleneck is not None and bottleneck["entity_id"] in details:
        buffer = details[bottleneck["entity_id"]].default_buffer
    if buffer is None:
        buffer = 0.0

    return {
        "model_name": model_name,
        "elapsed_seconds": elapsed,
        "elapsed_label": format_elapsed(elapsed),
        "bottleneck": bottleneck,
        "buffer": buffer,
    }


# ============= Tables =============


def table_rows(
    frame: Optional[Frame],
    details: Optional[Mapping[str, EntityDetail]],
) -> List[Dict[str, Any]]:
    """One row per known entity, joined with its state in the current frame.

    Entities that have not produced an event yet at the current time fall
    back to their recommended buffer and the ``awaiting`` status, row by row.
    Frames delivered with their own process table and no derived details use
    that table as is.
    """
    if not details and frame is not None and frame.tables.get("processes"):
        return [_process_table_row(row) for row in frame.tables["processes"]]

    rows: List[Dict[str, Any]] = []
    for entity_id, detail in (details or {}).items():
        state = frame.entities.get(entity_id) if frame is not None else None
        if state is not None:
            status = state.status
            buffer = state.queue_value
            production = state.production_label
            resource = state.resource_label or detail.resource_label
        else:
            status = AWAITING_STATUS
            buffer = detail.default_buffer
            production = ""
            resource = detail.resource_label

        rows.append({
            "entity_id": entity_id,
            "name": detail.display_name,
            "resource": resource,
            "machines": detail.machines,
            "personnel": detail.personnel,
            "status": status,
            "buffer": buffer,
            "production": production,
            "active_time": detail.active_time,
            "paused_time": detail.paused_time,
        })
    return rows


def _seconds_label(value: Any) -> Optional[str]:
    number = to_number(value)
    if number is None:
        return None if value is None else str(value)
    return f"{number:.1f}s"


def _process_table_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    entity_id = row.get("id_proceso")
    return {
        "entity_id": str(entity_id) if entity_id is not None else None,
        "name": row.get("nombre"),
        "resource": "",
        "machines": row.get("maquinas_count"),
        "personnel": row.get("personal_count"),
        "status": row.get("estado") or AWAITING_STATUS,
        "buffer": None,
        "production": str(row["meta"]) if row.get("meta") is not None else "",
        "active_time": _seconds_label(row.get("tiempo_activo")),
        "paused_time": _seconds_label(row.get("tiempo_pausado")),
    }


def resource_tables(frame: Optional[Frame]) -> Dict[str, List[Dict[str, Any]]]:
    """Machinery, personnel and warehouse rows carried by the current frame.

    Machinery and warehouse rows are ``{area, resource, quantity}``; personnel
    rows are ``{area, busy, total}``. Tables the frame does not carry are empty.
    """
    tables = frame.tables if frame is not None else {}
    return {
        "machinery": [_stock_row(row) for row in tables.get("machinery", ())],
        "warehouse": [_stock_row(row) for row in tables.get("warehouse", ())],
        "personnel": [
            {
                "area": row.get("area"),
                "busy": to_number(row.get("personal_ocupado")) or 0.0,
                "total": to_number(row.get("personal_total")) or 0.0,
            }
            for row in tables.get("personnel", ())
        ],
    }


def _stock_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    quantity = to_number(row.get("cantidad"))
    return {
        "area": row.get("area"),
        "resource": row.get("recurso"),
        "quantity": quantity if quantity is not None else 0.0,
    }
