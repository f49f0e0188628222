"""
History normalizer.

Turns the sparse, per-entity event log of a simulation run into a dense,
ordered frame sequence. Every frame carries the last known state of every
entity seen so far (forward fill), frames are strictly increasing in time,
and rows sharing a timestamp are merged into one frame.

Status strings are preserved verbatim here; visual classification happens
in ``projections`` so it can change without re-deriving frames.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..shared.logger import get_logger
from .models import FRAME_ENTITY_KEYS, FRAME_TIME_KEYS, EntityDetail, EntityState, Frame, RawEvent, to_number

logger = get_logger(__name__)

# Keys under which the backend may place the history rows of a run
HISTORY_KEYS = ("raw_history_rows", "history_main", "historial_animacion", "timeline")


@dataclass
class NormalizedHistory:
    """Result of normalizing one simulation run."""

    frames: List[Frame] = field(default_factory=list)
    details: Dict[str, EntityDetail] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.frames


def placeholder_name(entity_id: str) -> str:
    """Name used for entities missing from the name lookup."""
    return f"Process {entity_id}"


def queue_from_event(event: RawEvent) -> float:
    """Numeric queue/progress value of an event.

    ``"3/10"`` yields 3, ``"4"`` yields 4; falls back to the numeric quantity.
    """
    label = event.progress_label.strip()
    if label:
        current = label.split("/", 1)[0] if "/" in label else label
        value = to_number(current)
        if value is not None:
            return value
    value = to_number(event.quantity)
    return value if value is not None else 0.0


def _is_frame_shaped(rows: List[Any]) -> bool:
    first = rows[0]
    if isinstance(first, Frame):
        return True
    if not isinstance(first, Mapping):
        return False
    return any(key in first for key in FRAME_TIME_KEYS) and any(key in first for key in FRAME_ENTITY_KEYS)


def _pass_through(rows: List[Any]) -> NormalizedHistory:
    frames: List[Frame] = []
    for row in rows:
        if isinstance(row, Frame):
            frames.append(row)
        elif isinstance(row, Mapping):
            try:
                frames.append(Frame.from_dict(row))
            except ValueError as e:
                logger.debug("Skipping malformed frame %r: %s", row, e)
        else:
            logger.debug("Skipping non-frame element in frame-shaped payload: %r", row)
    return NormalizedHistory(frames=frames)


def _group_by_timestamp(events: Iterable[RawEvent]) -> Dict[float, Dict[str, RawEvent]]:
    """Group events into partial updates keyed by timestamp.

    Within one timestamp the later row for an entity overwrites the earlier one.
    """
    partials: Dict[float, Dict[str, RawEvent]] = {}
    for event in events:
        partials.setdefault(event.timestamp, {})[event.entity_id] = event
    return partials


def _detail_overrides(process_details: Optional[Mapping[str, Any]], entity_id: str) -> Mapping[str, Any]:
    if not process_details:
        return {}
    entry = process_details.get(entity_id)
    return entry if isinstance(entry, Mapping) else {}


def _resolve_name(
    entity_id: str,
    name_lookup: Mapping[str, str],
    overrides: Mapping[str, Any],
) -> str:
    name = name_lookup.get(entity_id)
    if name:
        return str(name)
    for key in ("nombre_proceso", "nombre"):
        if overrides.get(key):
            return str(overrides[key])
    return placeholder_name(entity_id)


def _keyed_by_text(source: Any, what: str) -> Dict[str, Any]:
    if source is None:
        return {}
    if not isinstance(source, Mapping):
        logger.debug("Ignoring %s that is not a mapping: %s", what, type(source).__name__)
        return {}
    return {str(k): v for k, v in source.items()}


def _optional_int(value: Any) -> Optional[int]:
    number = to_number(value)
    return int(number) if number is not None else None


def _optional_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _new_detail(display_name: str, event: RawEvent, overrides: Mapping[str, Any]) -> EntityDetail:
    default_buffer = to_number(overrides.get("buffer_recomendado"))
    return EntityDetail(
        display_name=display_name,
        resource_label=event.resource_label or str(overrides.get("nombre_maquina") or ""),
        last_observed_status=event.state,
        default_buffer=default_buffer if default_buffer is not None else 0.0,
        active_time=_optional_text(overrides.get("t_activo")),
        paused_time=_optional_text(overrides.get("t_pausado")),
        machines=_optional_int(overrides.get("maq", overrides.get("maquinas_asignadas"))),
        personnel=_optional_int(overrides.get("pers", overrides.get("personal_asignado"))),
    )


def normalize(
    raw_payload: Any,
    name_lookup: Optional[Mapping[Any, str]] = None,
    process_details: Optional[Mapping[Any, Any]] = None,
) -> NormalizedHistory:
    """Normalize a run's history into frames and per-entity details.

    Args:
        raw_payload: Either a list of frame-shaped elements (passed through) or
            a flat list of history rows in any order.
        name_lookup: Entity id -> display name.
        process_details: Optional per-entity static data from the run
            (recommended buffer, active/paused time, assigned resources).

    Returns:
        NormalizedHistory. Empty when the payload has no usable rows; this
        function never raises on malformed input.
    """
    if not isinstance(raw_payload, (list, tuple)) or not raw_payload:
        return NormalizedHistory()

    rows = list(raw_payload)
    if _is_frame_shaped(rows):
        return _pass_through(rows)

    events: List[RawEvent] = []
    skipped = 0
    for row in rows:
        event = RawEvent.from_row(row)
        if event is None:
            skipped += 1
            continue
        events.append(event)

    if skipped:
        logger.debug("Skipped %d malformed history rows out of %d", skipped, len(rows))
    if not events:
        return NormalizedHistory()

    lookup = _keyed_by_text(name_lookup, "name lookup")
    details_source = _keyed_by_text(process_details, "process details")

    partials = _group_by_timestamp(events)
    names: Dict[str, str] = {}
    details: Dict[str, EntityDetail] = {}
    frames: List[Frame] = []
    previous: Dict[str, EntityState] = {}

    for timestamp in sorted(partials):
        current = dict(previous)
        for entity_id, event in partials[timestamp].items():
            if entity_id not in names:
                overrides = _detail_overrides(details_source, entity_id)
                names[entity_id] = _resolve_name(entity_id, lookup, overrides)
                details[entity_id] = _new_detail(names[entity_id], event, overrides)
            else:
                details[entity_id].last_observed_status = event.state
                if event.resource_label:
                    details[entity_id].resource_label = event.resource_label

            current[entity_id] = EntityState(
                status=event.state,
                queue_value=queue_from_event(event),
                production_label=event.progress_label,
                resource_label=event.resource_label,
                display_name=names[entity_id],
                status_code=event.status_code,
            )
        frame = Frame(timestamp=timestamp, entities=current)
        frames.append(frame)
        previous = current

    logger.debug("Normalized %d events into %d frames for %d entities", len(events), len(frames), len(details))
    return NormalizedHistory(frames=frames, details=details)


def extract_history_rows(results: Optional[Mapping[str, Any]]) -> List[Any]:
    """Pick the history row list out of a run's ``results`` block."""
    if not isinstance(results, Mapping):
        return []
    for key in HISTORY_KEYS:
        rows = results.get(key)
        if isinstance(rows, (list, tuple)) and rows:
            return list(rows)
    return []


def _processes_of(diagram: Any) -> List[Mapping[str, Any]]:
    if not isinstance(diagram, Mapping):
        return []
    processes = diagram.get("procesos") or diagram.get("processes") or []
    return [p for p in processes if isinstance(p, Mapping)]


def build_name_lookup(diagram_detail: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Build the entity id -> display name map from a diagram detail payload.

    Reads the main diagram and every sub-diagram; entries without an id or a
    name are ignored.
    """
    if not isinstance(diagram_detail, Mapping):
        return {}

    diagrams: List[Any] = [
        diagram_detail.get("diagrama_principal") or diagram_detail.get("mainDiagram") or {}
    ]
    diagrams.extend(diagram_detail.get("subdiagramas") or diagram_detail.get("subDiagrams") or [])

    lookup: Dict[str, str] = {}
    for diagram in diagrams:
        for process in _processes_of(diagram):
            pid = process.get("id_proceso", process.get("id"))
            name = process.get("nombre_proceso", process.get("name"))
            if pid is None or not name:
                continue
            lookup.setdefault(str(pid), str(name))
    return lookup
