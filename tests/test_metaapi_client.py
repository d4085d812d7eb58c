from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

import httpx
import pytest
from conftest import NOW, make_plan

from trade_guardian.broker.base import BrokerAPIError
from trade_guardian.broker.metaapi import MetaApiBroker
from trade_guardian.config import Settings
from trade_guardian.enforcement import run_cycle
from trade_guardian.ledger.store import JsonTradeLedger

_CLIENT = "https://client.test"
_PROVISIONING = "https://prov.test"


def _broker(
    tmp_path: Path,
    handler: Callable[[httpx.Request], httpx.Response],
    **overrides: object,
) -> tuple[MetaApiBroker, list[float]]:
    values: dict[str, object] = {
        "metaapi_token": "tok",
        "metaapi_client_url": _CLIENT,
        "metaapi_provisioning_url": _PROVISIONING,
        "deploy_wait_sec": 0,
        "ledger_dir": tmp_path,
        "journal_dir": tmp_path,
    }
    values.update(overrides)
    sleeps: list[float] = []
    broker = MetaApiBroker(
        Settings(**values),  # type: ignore[arg-type]
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
    )
    return broker, sleeps


def test_list_positions_sends_token_and_parses(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {
                    "id": "1",
                    "type": "POSITION_TYPE_BUY",
                    "symbol": "EURUSD",
                    "time": "2025-03-12T10:00:00.000Z",
                    "openPrice": 1.08,
                    "volume": 0.1,
                    "profit": 2.0,
                }
            ],
        )

    broker, _ = _broker(tmp_path, handler)
    positions = broker.list_open_positions("acc")

    assert [p.symbol for p in positions] == ["EURUSD"]
    assert seen[0].url == httpx.URL(f"{_CLIENT}/users/current/accounts/acc/positions")
    assert seen[0].headers["auth-token"] == "tok"


def test_history_url_uses_millisecond_utc_stamps(tmp_path: Path) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json=[])

    broker, _ = _broker(tmp_path, handler)
    broker.list_historical_deals(
        "acc",
        datetime(2024, 1, 1, tzinfo=UTC),
        datetime(2025, 3, 12, 12, 30, 5, 123456, tzinfo=UTC),
    )
    assert seen == [
        "/users/current/accounts/acc/history-deals/time/"
        "2024-01-01T00:00:00.000Z/2025-03-12T12:30:05.123Z"
    ]


def test_server_errors_are_retried_then_raised(tmp_path: Path) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503, text="busy")

    broker, sleeps = _broker(tmp_path, handler, broker_max_retries=3)
    with pytest.raises(BrokerAPIError) as excinfo:
        broker.list_open_positions("acc")

    assert excinfo.value.status_code == 503
    assert len(calls) == 3
    assert len(sleeps) == 2


def test_client_errors_fail_fast(tmp_path: Path) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(404, text="not found")

    broker, _ = _broker(tmp_path, handler)
    with pytest.raises(BrokerAPIError):
        broker.list_open_positions("acc")
    assert len(calls) == 1


def test_timeout_is_a_transient_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    broker, _ = _broker(tmp_path, handler, broker_max_retries=2)
    with pytest.raises(BrokerAPIError) as excinfo:
        broker.list_open_positions("acc")
    assert excinfo.value.is_transient


def test_close_position(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        if request.url.path.endswith("/positions/ok/close"):
            return httpx.Response(200, json={"numericCode": 10009})
        return httpx.Response(400, text="invalid position")

    broker, _ = _broker(tmp_path, handler)
    assert broker.close_position("acc", "ok")
    assert not broker.close_position("acc", "gone")


def test_create_and_deploy_tolerates_deploy_failure(tmp_path: Path) -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/users/current/accounts":
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": "new-acc"})
        return httpx.Response(500, text="deploy broken")

    broker, _ = _broker(tmp_path, handler)
    assert broker.create_and_deploy_account("555", "pw", "Demo") == "new-acc"
    assert bodies[0]["name"] == "MT5-555"
    assert bodies[0]["platform"] == "mt5"
    assert bodies[0]["server"] == "Demo"


def test_missing_token_is_not_retried(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    broker, sleeps = _broker(tmp_path, handler, metaapi_token="")
    with pytest.raises(BrokerAPIError):
        broker.list_open_positions("acc")
    assert sleeps == []


def test_plain_text_close_reply_is_a_success(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="OK")

    broker, _ = _broker(tmp_path, handler)
    assert broker.close_position("acc", "p1")


def test_non_json_positions_reply_is_a_broker_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    broker, sleeps = _broker(tmp_path, handler)
    with pytest.raises(BrokerAPIError) as excinfo:
        broker.list_open_positions("acc")
    assert str(excinfo.value) == "invalid_json_response"
    assert excinfo.value.status_code == 200
    assert sleeps == []


def test_cycle_over_metaapi_records_plain_text_close(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/close"):
            return httpx.Response(200, text="OK")
        return httpx.Response(
            200,
            json=[
                {
                    "id": "p1",
                    "type": "POSITION_TYPE_SELL",
                    "symbol": "GBPUSD",
                    "time": "2025-03-12T10:00:00.000Z",
                    "openPrice": 1.27,
                    "volume": 0.2,
                    "profit": -1.5,
                }
            ],
        )

    broker, _ = _broker(tmp_path, handler)
    ledger = JsonTradeLedger(tmp_path / "ledger")
    ledger.save_plan(make_plan())

    result = run_cycle(ledger, broker, "u1", "acc", NOW)

    assert result.status == "ok"
    assert result.violated == 1
    assert result.details[0].action == "closed"
    record = ledger.get_trade("u1", "p1")
    assert record is not None
    assert record.auto_closed
    assert not record.is_open
