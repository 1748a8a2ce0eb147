import asyncio
from datetime import datetime

import httpx
import pytest

from opsboard.core.cache import StaleTTLCache
from opsboard.core.errors import DatabaseUnavailable
from opsboard.services.broker.api_config import APIEndpoint
from opsboard.services.broker.argus_client import ArgusClient
from opsboard.services.data.column_resolver import ColumnResolver, ColumnSet
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.status import classification, status_queries
from opsboard.services.status.status_service import SNAPSHOT_KEY, StatusService
from tests.fakes import COLLABORATOR_COLUMNS, STATUS_COLUMNS, local_executor

ENDPOINT = APIEndpoint(
    api_id="argus_status",
    name="Argus",
    base_url="https://argus.test",
    path="/apiargus/cmd/statusoperador",
    query_param="ramal",
    auth_header="Token-Signature",
)

SNAPSHOT_ROWS = [
    {"extension": "101", "user_id": 7, "name": "Ana", "team": "Equipe A",
     "description": "Em Atendimento", "duration": 65, "updated_at": datetime(2024, 5, 2, 9, 30)},
    {"extension": "102", "user_id": 8, "name": "Bruno", "team": "Equipe A",
     "description": "Em Ligação", "duration": 12, "updated_at": None},
    {"extension": "103", "user_id": None, "name": "Carla", "team": "Equipe B",
     "description": "Livre", "duration": 3, "updated_at": None},
]


def argus_client(token="", handler=None):
    handler = handler or (lambda r: httpx.Response(500))

    async def no_sleep(_):
        return None

    return ArgusClient(
        ENDPOINT, token=token, retries=0,
        transport=httpx.MockTransport(handler), sleep=no_sleep,
    )


def build_service(clock, db, argus=None, teams=()):
    cache = StaleTTLCache(clock=clock)
    service = StatusService(
        db, ColumnResolver(), argus or argus_client(), cache, BackoffPolicy(),
        collaborator_table="dbo.colaboradores",
        status_table="dbo.status_operador",
        organization="VIEIRACRED",
        logged_in_organization="VIEIRACRED",
        logged_in_teams=teams,
    )
    return cache, service


class TestClassification:

    @pytest.mark.parametrize(
        "description, bucket",
        [
            ("Em Atendimento", classification.IN_CALL),
            ("EM LIGAÇÃO", classification.IN_CALL),
            ("Pausa Lanche", classification.PAUSED),
            ("Disponível", classification.FREE),
            ("Livre", classification.FREE),
            ("Deslogado", classification.OTHER),
            ("", classification.OTHER),
            (None, classification.OTHER),
        ],
    )
    def test_classify(self, description, bucket):
        assert classification.classify(description) == bucket

    def test_percent_rounds_half_up_and_caps(self):
        assert classification.logged_in_percent(3, 10) == 30
        assert classification.logged_in_percent(1, 8) == 13
        assert classification.logged_in_percent(12, 10) == 100
        assert classification.logged_in_percent(5, 0) == 0


class TestStatusQueries:

    def layout(self, collaborator_columns=COLLABORATOR_COLUMNS, status_columns=STATUS_COLUMNS):
        return status_queries.build_layout(
            "dbo.colaboradores", ColumnSet.of("dbo.colaboradores", collaborator_columns),
            "dbo.status_operador", ColumnSet.of("dbo.status_operador", status_columns),
        )

    def test_snapshot_query_joins_on_extension(self):
        sql, params = status_queries.snapshot_query(self.layout(), "VIEIRACRED")
        assert "LEFT JOIN [dbo].[colaboradores] c ON s.[id_argus] = c.[id_argus]" in sql
        assert "COALESCE(c.[ativo], 0) = 1" in sql
        assert params == {"org": "VIEIRACRED"}

    def test_missing_active_flag_disables_headcount(self):
        layout = self.layout(collaborator_columns=["id_argus", "empresa"])
        assert status_queries.active_count_query(layout, "VIEIRACRED") is None
        assert status_queries.logged_in_count_query(layout, "VIEIRACRED", []) is None

    def test_logged_in_query_filters_teams_on_both_tables(self):
        sql, params = status_queries.logged_in_count_query(
            self.layout(), "VIEIRACRED", ["Equipe A"],
        )
        assert "c.[equipe] IN (:team_0)" in sql
        assert "s.[equipe] IN (:team_0)" in sql
        assert params["team_0"] == "Equipe A"

    def test_status_table_without_extension_degrades_to_literals(self):
        layout = self.layout(status_columns=["nome", "descricaoStatus"])
        sql, _ = status_queries.snapshot_query(layout, "VIEIRACRED")
        assert "NULL AS extension" in sql
        assert "JOIN" not in sql
        assert status_queries.upsert_queries(layout, "1", "Livre", 0, None, "X") is None


class TestSnapshot:

    def test_counts_and_logged_in_percentage(self, clock):
        db = (
            local_executor()
            .on("AS total_active", [{"total_active": 10}])
            .on("AS total_logged_in", [{"total_logged_in": 3}])
            .on("AS description", SNAPSHOT_ROWS)
        )
        _, service = build_service(clock, db)

        payload = asyncio.run(service.get_snapshot())

        assert payload["total"] == 3
        assert payload["total_active"] == 10
        assert payload["logged_in"] == 3
        assert payload["counts"] == {"in_call": 2, "paused": 0, "free": 1, "other": 0}
        assert payload["logged_in_calc"] == 3
        assert payload["logged_in_percent"] == 30

        first = payload["operators"][0]
        assert first["id"] == "101"
        assert first["user_id"] == "7"
        assert first["status_duration_seconds"] == 65
        assert first["updated_at"] == "2024-05-02T09:30:00"
        assert payload["operators"][2]["user_id"] is None

    def test_logged_in_falls_back_to_fetched_rows(self, clock):
        db = (
            local_executor()
            .on("AS total_active", [{"total_active": 4}])
            .on("AS total_logged_in", DatabaseUnavailable("local: timeout"))
            .on("AS description", SNAPSHOT_ROWS)
        )
        _, service = build_service(clock, db, teams=["Equipe A"])

        payload = asyncio.run(service.load_snapshot())
        assert payload["logged_in"] == 2
        assert payload["logged_in_percent"] == 75

    def test_no_classified_rows_uses_logged_in_count(self, clock):
        rows = [dict(r, description="Deslogado") for r in SNAPSHOT_ROWS]
        db = (
            local_executor()
            .on("AS total_active", [{"total_active": 10}])
            .on("AS total_logged_in", [{"total_logged_in": 4}])
            .on("AS description", rows)
        )
        _, service = build_service(clock, db)

        payload = asyncio.run(service.load_snapshot())
        assert payload["counts"]["other"] == 3
        assert payload["logged_in_calc"] == 4
        assert payload["logged_in_percent"] == 40

    def test_database_down_serves_empty_snapshot(self, clock):
        db = local_executor(fail_all=DatabaseUnavailable("local: refused"))
        _, service = build_service(clock, db)

        payload = asyncio.run(service.get_snapshot())
        assert payload["operators"] == []
        assert payload["logged_in_percent"] == 0
        assert "snapshot" in service.snapshot.last_errors


class TestSync:

    def test_updates_existing_rows_and_inserts_missing_ones(self, clock):
        def handler(request):
            ext = request.url.params["ramal"]
            return httpx.Response(200, json={
                "codStatus": 1,
                "statusOperador": {"descricaoStatus": f"Pausa {ext}", "tempoStatus": 30_000},
            })

        db = (
            local_executor()
            .on("IS NOT NULL", [{"extension": "101", "user_id": 7}, {"extension": "102", "user_id": 8}])
            .on("UPDATE [dbo].[status_operador]", lambda sql, p: 1 if p["ext"] == "101" else 0)
            .on("INSERT INTO [dbo].[status_operador]", 1)
        )
        _, service = build_service(clock, db, argus=argus_client("tok", handler))

        summary = asyncio.run(service.sync_statuses())

        assert summary == {"updated": 2, "extensions": 2}
        [(sql, params)] = db.sql_containing("INSERT INTO")
        assert params["ext"] == "102"
        assert params["description"] == "Pausa 102"
        assert params["duration"] == 30
        assert "GETDATE()" in sql

    def test_missing_token_skips_without_queries(self, clock):
        db = local_executor()
        _, service = build_service(clock, db)

        summary = asyncio.run(service.sync_statuses())
        assert summary["skipped"] == "no-token"
        assert db.calls == []

    def test_auth_latch_skips_sync(self, clock):
        db = local_executor().on("IS NOT NULL", [{"extension": "101", "user_id": 7}])
        argus = argus_client("tok", lambda r: httpx.Response(403))
        _, service = build_service(clock, db, argus=argus)

        async def scenario():
            first = await service.sync_statuses()
            second = await service.sync_statuses()
            return first, second

        first, second = asyncio.run(scenario())
        assert first == {"updated": 0, "extensions": 1}
        assert second["skipped"] == "auth-failed"
        assert argus.calls == 1

    def test_successful_sync_marks_snapshot_stale(self, clock):
        def handler(request):
            return httpx.Response(200, json={"statusOperador": {"descricaoStatus": "Livre"}})

        db = (
            local_executor()
            .on("AS total_active", [{"total_active": 10}])
            .on("AS total_logged_in", [{"total_logged_in": 3}])
            .on("AS description", SNAPSHOT_ROWS)
            .on("IS NOT NULL", [{"extension": "101", "user_id": 7}])
            .on("UPDATE", 1)
        )
        cache, service = build_service(clock, db, argus=argus_client("tok", handler))
        key = service.snapshot.cache_key(SNAPSHOT_KEY)

        async def scenario():
            await service.snapshot.refresh_now(SNAPSHOT_KEY)
            fresh_before = cache.peek(key).is_fresh(cache.now())
            await service.sync.refresh_now("argus")
            return fresh_before, cache.peek(key).is_fresh(cache.now())

        assert asyncio.run(scenario()) == (True, False)

    def test_upstream_outage_feeds_sync_backoff(self, clock):
        db = local_executor().on("IS NOT NULL", [{"extension": "101", "user_id": 7}])
        _, service = build_service(clock, db, argus=argus_client("tok"))

        result = asyncio.run(service.sync.refresh_now("argus"))

        assert result.ok is False
        assert "UpstreamError" in result.error
        assert service.sync.backoff_state("argus").failure_count == 1
        assert db.sql_containing("UPDATE") == []

    @pytest.mark.parametrize(
        "status_code, body",
        [
            (200, {"codStatus": 2}),
            (400, {"erro": "ramal invalido"}),
        ],
    )
    def test_no_data_answers_are_not_a_failed_sync(self, clock, status_code, body):
        db = local_executor().on(
            "IS NOT NULL", [{"extension": "101", "user_id": 7}, {"extension": "102", "user_id": 8}],
        )
        _, service = build_service(clock, db, argus=argus_client("tok", lambda r: httpx.Response(status_code, json=body)))

        result = asyncio.run(service.sync.refresh_now("argus"))

        assert result.ok is True
        assert result.value == {"updated": 0, "extensions": 2}
        assert service.sync.backoff_state("argus").failure_count == 0
        assert "argus" not in service.sync.last_errors
