"""
Tests for status classification and the diagram/dashboard/table projections.

Run tests:
    pytest tests/test_projections.py -v
"""

import logging

import pytest

from api.playback.models import EntityDetail, EntityState, Frame, VisualStatus
from api.playback.normalizer import normalize
from api.playback.projections import (
    AWAITING_STATUS,
    StatusClassifier,
    _flag_ambiguous,
    classify_status,
    dashboard_metrics,
    format_elapsed,
    node_states,
    parse_progress,
    resource_tables,
    table_rows,
)


# ============================================================================
# Classification
# ============================================================================


class TestClassifyStatus:
    def test_quota_reached_overrides_working_label(self):
        state = EntityState(status="TRABAJANDO", production_label="10/10")
        assert classify_status(state) == VisualStatus.FINISHED

    def test_quota_not_reached(self):
        state = EntityState(status="TRABAJANDO", production_label="9/10")
        assert classify_status(state) == VisualStatus.WORKING

    def test_zero_total_is_not_finished(self):
        state = EntityState(status="ESPERANDO", production_label="0/0")
        assert classify_status(state) == VisualStatus.IDLE

    def test_idempotent(self):
        state = EntityState(status="Bloqueado por buffer", production_label="2/5")
        assert classify_status(state) == classify_status(state) == VisualStatus.PAUSED

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("TRABAJANDO", VisualStatus.WORKING),
            ("produciendo lote", VisualStatus.WORKING),
            ("Activo", VisualStatus.WORKING),
            ("BLOQUEADO", VisualStatus.PAUSED),
            ("Buffer LLENO", VisualStatus.PAUSED),
            ("pausado", VisualStatus.PAUSED),
            ("FINALIZADO", VisualStatus.FINISHED),
            ("Meta alcanzada", VisualStatus.FINISHED),
            ("ESPERANDO", VisualStatus.IDLE),
            ("", VisualStatus.IDLE),
        ],
    )
    def test_label_markers(self, label, expected):
        assert classify_status(EntityState(status=label)) == expected

    def test_finished_beats_working(self):
        assert classify_status(EntityState(status="TRABAJANDO - COMPLETADO")) == VisualStatus.FINISHED

    def test_paused_beats_working(self):
        assert classify_status(EntityState(status="ACTIVO PERO BLOQUEADO")) == VisualStatus.PAUSED

    def test_paused_and_finished_is_flagged(self, caplog):
        _flag_ambiguous.cache_clear()
        state = EntityState(status="PAUSADO / FINALIZADO")
        with caplog.at_level(logging.WARNING, logger="api.playback.projections"):
            assert classify_status(state) == VisualStatus.FINISHED
            classify_status(state)
        flagged = [r for r in caplog.records if "manual review" in r.getMessage()]
        assert len(flagged) == 1

    def test_status_code_wins(self):
        state = EntityState(status="TRABAJANDO", status_code="paused")
        assert classify_status(state) == VisualStatus.PAUSED

    def test_unknown_status_code_falls_back(self):
        state = EntityState(status="TRABAJANDO", status_code="weird")
        assert classify_status(state) == VisualStatus.WORKING

    def test_custom_vocabulary(self):
        classifier = StatusClassifier(working_markers=("RUNNING",))
        assert classifier.classify(EntityState(status="running")) == VisualStatus.WORKING
        assert classifier.classify(EntityState(status="TRABAJANDO")) == VisualStatus.IDLE


class TestParseProgress:
    def test_ratio(self):
        assert parse_progress("3/10") == (3.0, 10.0)

    def test_bare(self):
        assert parse_progress("4") == (4.0, None)
        assert parse_progress(2) == (2.0, None)

    def test_garbage(self):
        assert parse_progress("x/y") == (0.0, None)
        assert parse_progress(None) == (0.0, None)


# ============================================================================
# Diagram
# ============================================================================


class TestNodeStates:
    def test_scenario(self, scenario_rows):
        first, second = normalize(scenario_rows, {}).frames

        states = node_states(first)
        assert states["1"].status == VisualStatus.WORKING
        assert states["1"].busy is True
        assert states["1"].queue == 0
        assert states["2"].status == VisualStatus.IDLE
        assert states["2"].busy is False

        states = node_states(second)
        assert states["1"].status == VisualStatus.FINISHED
        assert states["1"].queue == 10
        assert states["2"].status == VisualStatus.IDLE
        assert states["2"].queue == 0

    def test_no_frame(self):
        assert node_states(None) == {}

    def test_to_dict(self, scenario_rows):
        data = node_states(normalize(scenario_rows).frames[0])["1"].to_dict()
        assert data == {
            "status": "working",
            "queue": 0.0,
            "busy": True,
            "label": "TRABAJANDO",
            "display_name": "Process 1",
        }


# ============================================================================
# Dashboard
# ============================================================================


class TestDashboard:
    @pytest.mark.parametrize("seconds,label", [(0, "0m 0s"), (59.9, "0m 59s"), (125, "2m 5s"), (-3, "0m 0s")])
    def test_format_elapsed(self, seconds, label):
        assert format_elapsed(seconds) == label

    def test_metrics(self, wire_rows, run_payload):
        history = normalize(wire_rows, {"1": "Corte"}, run_payload["results"]["detalles_procesos"])
        frame = history.frames[1]
        metrics = dashboard_metrics(frame, run_payload["simulation_metadata"], history.details, "Silla")
        assert metrics["model_name"] == "Silla"
        assert metrics["elapsed_seconds"] == 12.5
        assert metrics["elapsed_label"] == "0m 12s"
        assert metrics["bottleneck"] == {"entity_id": "1", "name": "Corte", "queue": 3.0}
        assert metrics["buffer"] == 6

    def test_buffer_falls_back_to_recommended(self, wire_rows, run_payload):
        history = normalize(wire_rows, {}, run_payload["results"]["detalles_procesos"])
        metrics = dashboard_metrics(history.frames[0], {"bottleneck_process_id": 1}, history.details)
        assert metrics["buffer"] == 5

    def test_unknown_bottleneck(self):
        metrics = dashboard_metrics(None, {"bottleneckProcessId": "77"}, {})
        assert metrics["bottleneck"]["name"] == "Process 77"
        assert metrics["bottleneck"]["queue"] == 0.0
        assert metrics["buffer"] == 0.0

    def test_frame_bottleneck_wins_over_metadata(self, run_payload):
        frame = Frame.from_dict({
            "tiempo": 30,
            "nodos": {"1": {"cola": 4}},
            "cuello_botella": {"nombre": "Horneado", "cantidad_cola": 5},
            "buffer_stock": 9,
        })
        metrics = dashboard_metrics(frame, run_payload["simulation_metadata"], {})
        assert metrics["bottleneck"] == {"entity_id": None, "name": "Horneado", "queue": 5.0}
        assert metrics["buffer"] == 9
        assert metrics["elapsed_label"] == "0m 30s"

    def test_frame_without_own_buffer_uses_metadata(self, run_payload):
        frame = Frame.from_dict({"tiempo": 1, "nodos": {}, "cuello_botella": {"nombre": "Corte"}})
        metrics = dashboard_metrics(frame, run_payload["simulation_metadata"], {})
        assert metrics["bottleneck"]["queue"] == 0.0
        assert metrics["buffer"] == 6

    def test_no_frame_no_metadata(self):
        metrics = dashboard_metrics(None)
        assert metrics["elapsed_seconds"] == 0.0
        assert metrics["bottleneck"] is None
        assert metrics["buffer"] == 0.0


# ============================================================================
# Tables
# ============================================================================


class TestTableRows:
    def test_awaiting_rows_fall_back_per_entity(self, wire_rows, run_payload):
        history = normalize(wire_rows, {}, run_payload["results"]["detalles_procesos"])
        rows = {row["entity_id"]: row for row in table_rows(history.frames[0], history.details)}

        assert rows["1"]["status"] == "TRABAJANDO"
        assert rows["1"]["resource"] == "Prensa"
        assert rows["1"]["machines"] == 2

        # Entity 2 has not produced an event at t=0 yet
        assert rows["2"]["status"] == AWAITING_STATUS
        assert rows["2"]["buffer"] == 2
        assert rows["2"]["production"] == ""

    def test_rows_follow_the_frame(self, wire_rows):
        history = normalize(wire_rows)
        rows = {row["entity_id"]: row for row in table_rows(history.frames[-1], history.details)}
        assert rows["1"]["status"] == "FINALIZADO"
        assert rows["1"]["production"] == "4/4"
        assert rows["2"]["buffer"] == 1

    def test_no_frame(self):
        details = {"1": EntityDetail(display_name="Corte", default_buffer=3)}
        rows = table_rows(None, details)
        assert rows[0]["status"] == AWAITING_STATUS
        assert rows[0]["buffer"] == 3

    def test_no_details(self):
        frame = Frame(timestamp=0, entities={"1": EntityState(status="ACTIVO")})
        assert table_rows(frame, None) == []

    def test_frame_process_table_used_without_details(self):
        frame = Frame.from_dict({
            "tiempo": 3,
            "nodos": {},
            "tabla_procesos": [{
                "id_proceso": 4,
                "nombre": "Pintado",
                "maquinas_count": 2,
                "personal_count": 1,
                "meta": "3/10",
                "estado": "PAUSADO",
                "tiempo_activo": 12.34,
                "tiempo_pausado": 0,
            }],
        })
        (row,) = table_rows(frame, {})
        assert row["entity_id"] == "4"
        assert row["name"] == "Pintado"
        assert row["machines"] == 2
        assert row["personnel"] == 1
        assert row["status"] == "PAUSADO"
        assert row["production"] == "3/10"
        assert row["active_time"] == "12.3s"
        assert row["paused_time"] == "0.0s"

    def test_derived_details_win_over_frame_table(self, wire_rows):
        history = normalize(wire_rows)
        frame = Frame(
            timestamp=0,
            entities=history.frames[0].entities,
            tables={"processes": ({"id_proceso": 9, "nombre": "Otro"},)},
        )
        rows = table_rows(frame, history.details)
        assert {row["entity_id"] for row in rows} == {"1", "2"}


class TestResourceTables:
    def test_rows_from_frame(self):
        frame = Frame.from_dict({
            "tiempo": 0,
            "nodos": {},
            "tabla_maquinaria": [{"area": "Corte", "recurso": "Sierra", "cantidad": "2"}],
            "tabla_bodega": [{"area": "Bodega", "recurso": "Madera", "cantidad": 40}, "bad row"],
            "tabla_personal": [{"area": "Corte", "personal_ocupado": 1, "personal_total": 3}],
        })
        tables = resource_tables(frame)
        assert tables["machinery"] == [{"area": "Corte", "resource": "Sierra", "quantity": 2.0}]
        assert tables["warehouse"] == [{"area": "Bodega", "resource": "Madera", "quantity": 40.0}]
        assert tables["personnel"] == [{"area": "Corte", "busy": 1.0, "total": 3.0}]

    def test_no_frame_or_no_tables(self, scenario_rows):
        empty = {"machinery": [], "warehouse": [], "personnel": []}
        assert resource_tables(None) == empty
        assert resource_tables(normalize(scenario_rows).frames[0]) == empty
