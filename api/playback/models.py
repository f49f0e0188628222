"""
Data types shared by the playback engine.

A simulation run is reduced to an immutable ``Timeline``: an ordered tuple of
dense ``Frame`` snapshots plus a static ``EntityDetail`` summary per entity.
Raw backend rows are parsed into ``RawEvent`` first.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class VisualStatus(str, Enum):
    """Visual status of a diagram node."""

    IDLE = "idle"
    WORKING = "working"
    PAUSED = "paused"
    FINISHED = "finished"


# Wire column names used by the simulation backend, followed by neutral aliases
TIME_KEYS = ("T_HIST", "timestamp", "t", "tiempo")
ENTITY_KEYS = ("ID_PROCESO", "entity_id", "id", "id_proceso")
STATE_KEYS = ("ESTADO", "state", "estado", "status")
QUANTITY_KEYS = ("CANTIDAD", "quantity", "cantidad")
PROGRESS_KEYS = ("META", "meta", "progress", "progress_label")
RESOURCE_KEYS = ("ID_MAQUINA", "resource", "resource_label", "nombre_maquina")
STATUS_CODE_KEYS = ("STATUS_CODE", "status_code")


def _first_present(row: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Parse a finite number from an int/float or a numeric string, else None."""
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    # NaN and infinities cannot be ordered or compared as times
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class RawEvent:
    """One state change of one entity at one point in simulated time."""

    timestamp: float
    entity_id: str
    state: str = ""
    quantity: Union[float, str, None] = None
    progress_label: str = ""
    resource_label: str = ""
    status_code: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> Optional["RawEvent"]:
        """Parse a backend history row.

        Returns:
            The event, or None when the row is not a mapping or lacks a usable
            time or entity id.
        """
        if not isinstance(row, Mapping):
            return None

        timestamp = to_number(_first_present(row, TIME_KEYS))
        if timestamp is None:
            return None

        entity = _first_present(row, ENTITY_KEYS)
        if entity is None or _as_text(entity) == "":
            return None

        status_code = _first_present(row, STATUS_CODE_KEYS)
        return cls(
            timestamp=timestamp,
            entity_id=_as_text(entity),
            state=_as_text(_first_present(row, STATE_KEYS)),
            quantity=_first_present(row, QUANTITY_KEYS),
            progress_label=_as_text(_first_present(row, PROGRESS_KEYS)),
            resource_label=_as_text(_first_present(row, RESOURCE_KEYS)),
            status_code=_as_text(status_code) if status_code is not None else None,
        )


@dataclass(frozen=True)
class EntityState:
    """State of one entity inside a frame."""

    status: str
    queue_value: float = 0.0
    production_label: str = ""
    resource_label: str = ""
    display_name: str = ""
    status_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "queue_value": self.queue_value,
            "production_label": self.production_label,
            "resource_label": self.resource_label,
            "display_name": self.display_name,
            "status_code": self.status_code,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EntityState":
        """Build a state from an already frame-shaped payload entry.

        Accepts this module's field names, the legacy wire names (``estado``,
        ``buffer_actual``, ``producido``, ``nombre_maquina``, ``nombre_proceso``)
        and the visual node shape (``cola``, ``ocupado``, ``nombre``,
        ``statusColor``).
        """
        queue = to_number(_first_present(data, ("queue_value", "buffer_actual", "cola")))
        status_code = _first_present(data, ("status_code", "statusColor"))
        if status_code is None and data.get("ocupado") is True:
            status_code = VisualStatus.WORKING.value
        return cls(
            status=_as_text(_first_present(data, ("status", "estado"))),
            queue_value=queue if queue is not None else 0.0,
            production_label=_as_text(_first_present(data, ("production_label", "producido"))),
            resource_label=_as_text(_first_present(data, ("resource_label", "nombre_maquina"))),
            display_name=_as_text(_first_present(data, ("display_name", "nombre_proceso", "nombre"))),
            status_code=_as_text(status_code) if status_code is not None else None,
        )


# Per-frame resource tables: our name -> wire name
FRAME_TABLE_KEYS = {
    "processes": "tabla_procesos",
    "warehouse": "tabla_bodega",
    "machinery": "tabla_maquinaria",
    "personnel": "tabla_personal",
}
FRAME_TIME_KEYS = ("timestamp", "tiempo")
FRAME_ENTITY_KEYS = ("entities", "procesos", "nodos")


def _table_rows(value: Any) -> Tuple[Mapping[str, Any], ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(MappingProxyType(dict(row)) for row in value if isinstance(row, Mapping))


@dataclass(frozen=True)
class Frame:
    """Dense snapshot of every known entity at one simulated timestamp.

    Frames that arrive already built by the backend may also carry their own
    bottleneck (``{nombre, cantidad_cola}``), buffer stock and resource tables.
    """

    timestamp: float
    entities: Mapping[str, EntityState] = field(default_factory=dict)
    bottleneck: Optional[Mapping[str, Any]] = None
    buffer: Optional[float] = None
    tables: Mapping[str, Tuple[Mapping[str, Any], ...]] = field(default_factory=dict)

    def __post_init__(self):
        # Frames are shared by every reader of a timeline; never hand out a mutable dict
        if not isinstance(self.entities, MappingProxyType):
            object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))
        if not isinstance(self.tables, MappingProxyType):
            object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))
        if self.bottleneck is not None and not isinstance(self.bottleneck, MappingProxyType):
            object.__setattr__(self, "bottleneck", MappingProxyType(dict(self.bottleneck)))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "entities": {eid: state.to_dict() for eid, state in self.entities.items()},
        }
        if self.bottleneck is not None:
            data["bottleneck"] = dict(self.bottleneck)
        if self.buffer is not None:
            data["buffer"] = self.buffer
        if self.tables:
            data["tables"] = {name: [dict(row) for row in rows] for name, rows in self.tables.items()}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Frame":
        """Build a frame from an already frame-shaped payload.

        Entity values that are not mappings are skipped.

        Raises:
            ValueError: If the timestamp is missing or not finite, or the
                entity collection is not a mapping.
        """
        timestamp = to_number(_first_present(data, FRAME_TIME_KEYS))
        if timestamp is None:
            raise ValueError("frame has no usable timestamp")

        entities = _first_present(data, FRAME_ENTITY_KEYS)
        if entities is None:
            entities = {}
        if not isinstance(entities, Mapping):
            raise ValueError(f"frame entities must be a mapping, got {type(entities).__name__}")

        states = {}
        for eid, state in entities.items():
            if isinstance(state, EntityState):
                states[str(eid)] = state
            elif isinstance(state, Mapping):
                states[str(eid)] = EntityState.from_dict(state)

        bottleneck = _first_present(data, ("bottleneck", "cuello_botella"))
        own_tables = data.get("tables")
        if not isinstance(own_tables, Mapping):
            own_tables = {}
        tables = {}
        for name, wire_name in FRAME_TABLE_KEYS.items():
            rows = _table_rows(own_tables.get(name, data.get(wire_name)))
            if rows:
                tables[name] = rows

        return cls(
            timestamp=timestamp,
            entities=states,
            bottleneck=bottleneck if isinstance(bottleneck, Mapping) else None,
            buffer=to_number(_first_present(data, ("buffer", "buffer_stock"))),
            tables=tables,
        )


@dataclass
class EntityDetail:
    """Static per-run summary of one entity."""

    display_name: str
    resource_label: str = ""
    last_observed_status: str = ""
    default_buffer: float = 0.0
    active_time: Optional[str] = None
    paused_time: Optional[str] = None
    machines: Optional[int] = None
    personnel: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "resource_label": self.resource_label,
            "last_observed_status": self.last_observed_status,
            "default_buffer": self.default_buffer,
            "active_time": self.active_time,
            "paused_time": self.paused_time,
            "machines": self.machines,
            "personnel": self.personnel,
        }


@dataclass(frozen=True)
class Timeline:
    """The frame sequence of one simulation run, tagged with its generation."""

    frames: Tuple[Frame, ...] = ()
    details: Mapping[str, EntityDetail] = field(default_factory=dict)
    generation: int = 0

    def __len__(self) -> int:
        return len(self.frames)

    def frame_at(self, index: int) -> Optional[Frame]:
        if 0 <= index < len(self.frames):
            return self.frames[index]
        return None
