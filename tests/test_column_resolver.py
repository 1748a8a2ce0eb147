import asyncio

import pytest

from opsboard.core.errors import DatabaseUnavailable
from opsboard.services.data import column_resolver as cands
from opsboard.services.data.column_resolver import ColumnResolver, ColumnSet, pick_column
from opsboard.services.data.sql_clauses import (
    build_in_clause,
    chunked,
    parse_table_name,
    quote_ident,
    quote_table,
)
from tests.fakes import FakeExecutor


class TestPickColumn:

    def test_first_candidate_in_priority_order_wins(self):
        columns = ColumnSet.of("dbo.colaboradores", ["status_id", "ativo"])
        assert pick_column(columns, ["Status", "ativo", "situacao"]) == "ativo"

    def test_match_is_case_insensitive_and_keeps_candidate_spelling(self):
        columns = ColumnSet.of("dbo.colaboradores", ["NOME_FRONT"])
        assert pick_column(columns, ["Nome_Front", "nome_front"]) == "Nome_Front"

    def test_no_match_is_none(self):
        columns = ColumnSet.of("t", ["a", "b"])
        assert pick_column(columns, ["c", "d"]) is None
        assert pick_column(ColumnSet("t"), ["a"]) is None

    @pytest.mark.parametrize(
        "name",
        [n for n in dir(cands) if n.isupper() and isinstance(getattr(cands, n), list)],
    )
    def test_candidate_lists_have_no_case_duplicates(self, name):
        candidates = getattr(cands, name)
        assert len({c.lower() for c in candidates}) == len(candidates)


class TestColumnResolver:

    def test_probe_is_memoized_per_table(self):
        db = FakeExecutor(columns={"colaboradores": ["id_argus", "Empresa"]})
        resolver = ColumnResolver()

        async def scenario():
            first = await resolver.resolve(db, "dbo.colaboradores")
            second = await resolver.resolve(db, "dbo.colaboradores")
            return first, second

        first, second = asyncio.run(scenario())
        assert first is second
        assert first.columns == frozenset({"id_argus", "empresa"})
        assert len(db.calls) == 1
        assert db.calls[0][1] == {"schema": "dbo", "table": "colaboradores"}

    def test_failed_probe_degrades_to_empty_and_is_retried(self):
        db = FakeExecutor(fail_all=DatabaseUnavailable("down"))
        resolver = ColumnResolver()

        async def scenario():
            columns = await resolver.resolve(db, "dbo.status_operador")
            db.fail_all = None
            db.columns = {"status_operador": ["id_argus"]}
            return columns, await resolver.resolve(db, "dbo.status_operador")

        degraded, recovered = asyncio.run(scenario())
        assert not degraded
        assert "id_argus" in recovered

    def test_clear_forgets_every_table(self):
        db = FakeExecutor(columns={"t": ["a"]})
        resolver = ColumnResolver()
        asyncio.run(resolver.resolve(db, "t"))

        assert resolver.cached_tables() == ["local:t"]
        assert resolver.clear() == 1
        assert resolver.cached_tables() == []


class TestSqlClauses:

    def test_identifiers_are_bracket_quoted(self):
        assert quote_ident("nome") == "[nome]"
        assert quote_ident("we]ird") == "[we]]ird]"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("dbo.status_operador", ("dbo", "status_operador")),
            ("[dbo].[status_operador]", ("dbo", "status_operador")),
            ("cadastrados", ("dbo", "cadastrados")),
        ],
    )
    def test_parse_table_name(self, raw, expected):
        assert parse_table_name(raw) == expected

    def test_quote_table(self):
        assert quote_table("cadastrados") == "[dbo].[cadastrados]"

    def test_in_clause_binds_numbered_params(self):
        params = {}
        clause = build_in_clause(["7", "9"], "vendedor_id", "id", params)
        assert clause == "vendedor_id IN (:id_0, :id_1)"
        assert params == {"id_0": "7", "id_1": "9"}
        assert build_in_clause([], "x", "p", params) is None

    def test_chunked(self):
        assert list(chunked(list(range(5)), 2)) == [[0, 1], [2, 3], [4]]
