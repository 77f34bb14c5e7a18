"""Tests for the request/response boundary and the CLI."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from pricepilot.market_value import main as cli
from pricepilot.market_value.models import NO_DATA_MESSAGE, AggregateResult, VehicleQuery
from pricepilot.market_value.price_history import PriceHistory
from pricepilot.market_value.service import INTERNAL_ERROR_MESSAGE, handle_request

TIMESTAMP = "2026-10-19T12:00:00+00:00"


def _result(query: VehicleQuery, success: bool = True) -> AggregateResult:
    if not success:
        return AggregateResult(
            query=query,
            success=False,
            timestamp=TIMESTAMP,
            per_source={"autotrader": 0, "cars_com": None},
            error=NO_DATA_MESSAGE,
        )
    return AggregateResult(
        query=query,
        success=True,
        timestamp=TIMESTAMP,
        per_source={"autotrader": 4, "cars_com": 2},
        low=14800.0,
        avg=16475.0,
        high=18100.0,
        price_count=6,
    )


@pytest.fixture
def engine() -> MagicMock:
    engine = MagicMock()
    engine.get_market_value.side_effect = lambda q: _result(q)
    return engine


class TestHandleRequest:
    """Test status mapping."""

    def test_success(self, engine):
        status, body = handle_request({"make": "Honda", "model": "Civic", "year": 2018}, engine)
        assert status == 200
        assert body["success"] is True
        assert body["avg"] == 16475
        assert body["perSource"] == {"autotrader": 4, "cars_com": 2}

    def test_passes_normalized_query(self, engine):
        handle_request(
            {"make": " Toyota ", "model": "Camry", "year": "2020", "zipCode": "10001"}, engine
        )
        query = engine.get_market_value.call_args.args[0]
        assert query.make == "Toyota"
        assert query.year == 2020
        assert query.zip_code == "10001"

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"make": "Honda", "model": "Civic"},
            {"make": "", "model": "Civic", "year": 2018},
            None,
        ],
    )
    def test_missing_fields_is_400(self, payload, engine):
        status, body = handle_request(payload, engine)
        assert status == 400
        assert body == {"error": "make, model & year are required", "success": False}
        engine.get_market_value.assert_not_called()

    def test_malformed_field_is_400(self, engine):
        status, body = handle_request(
            {"make": "Honda", "model": "Civic", "year": 2018, "mileage": "lots"}, engine
        )
        assert status == 400
        assert "mileage" in body["error"]

    def test_no_data_is_404(self, engine):
        engine.get_market_value.side_effect = lambda q: _result(q, success=False)
        status, body = handle_request({"make": "Honda", "model": "Civic", "year": 2018}, engine)
        assert status == 404
        assert body["success"] is False
        assert body["error"] == NO_DATA_MESSAGE

    def test_unexpected_error_is_500(self, engine, caplog):
        engine.get_market_value.side_effect = RuntimeError("pool exploded")
        status, body = handle_request({"make": "Honda", "model": "Civic", "year": 2018}, engine)
        assert status == 500
        assert body == {"error": INTERNAL_ERROR_MESSAGE, "success": False}
        assert "pool exploded" in caplog.text


class TestCli:
    """Test the command line entry point."""

    @pytest.fixture
    def patched(self, temp_db, engine):
        engine_cls = MagicMock()
        engine_cls.return_value.__enter__.return_value = engine
        with patch.object(cli.Config, "load", return_value=temp_db), patch.object(
            cli, "AggregationEngine", engine_cls
        ), patch.object(cli, "setup_logging"):
            yield engine_cls

    def test_prints_json_and_writes_output(self, patched, engine, tmp_path, capsys):
        out_file = tmp_path / "out" / "civic.json"
        code = cli.main(
            ["--make", "Honda", "--model", "Civic", "--year", "2018", "--output", str(out_file)]
        )
        assert code == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["low"] == 14800
        assert json.loads(out_file.read_text(encoding="utf-8")) == printed

    def test_optional_arguments_reach_query(self, patched, engine):
        cli.main(
            [
                "--make", "Toyota", "--model", "Camry", "--year", "2020",
                "--mileage", "42000", "--trim", "LE", "--zip", "10001",
            ]
        )
        query = engine.get_market_value.call_args.args[0]
        assert query.cache_key == "toyota:camry:2020:42000:le:10001"

    def test_invalid_query_exit_code(self, patched, engine):
        assert cli.main(["--make", " ", "--model", "Civic", "--year", "2018"]) == cli.EXIT_INVALID
        engine.get_market_value.assert_not_called()

    def test_no_data_exit_code(self, patched, engine):
        engine.get_market_value.side_effect = lambda q: _result(q, success=False)
        assert cli.main(["--make", "Honda", "--model", "Civic", "--year", "2018"]) == cli.EXIT_NO_DATA

    def test_history_days_prints_daily_values(self, patched, temp_db, capsys):
        PriceHistory(temp_db).record(_result(VehicleQuery(make="Honda", model="Civic", year=2018)))
        cli.main(["--make", "Honda", "--model", "Civic", "--year", "2018", "--history-days", "3650"])
        out = capsys.readouterr().out
        assert "Daily market value" in out
        assert "2026-10-19" in out
