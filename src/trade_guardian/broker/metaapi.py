"""MetaApi REST gateway for MetaTrader accounts."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from trade_guardian.broker.base import BrokerAPIError, parse_broker_trades
from trade_guardian.config import Settings
from trade_guardian.schemas import BrokerTrade
from trade_guardian.utils.logging import get_logger, log_broker_call

_MAGIC = 123456


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, BrokerAPIError) and exc.is_transient


def _format_time(value: datetime) -> str:
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class MetaApiBroker:
    """Thin client over the MetaApi provisioning and trading endpoints."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Any = time.sleep,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self._logger = get_logger("trade_guardian.broker.metaapi")

    def list_open_positions(self, account_id: str) -> list[BrokerTrade]:
        """Fetch open positions."""
        payload = self._call(
            "list_positions",
            "GET",
            f"{self._client_base(account_id)}/positions",
        )
        return parse_broker_trades(_as_rows(payload), source="positions")

    def list_historical_deals(
        self,
        account_id: str,
        from_time: datetime,
        to_time: datetime,
    ) -> list[BrokerTrade]:
        """Fetch history deals in a time range."""
        url = (
            f"{self._client_base(account_id)}/history-deals/time/"
            f"{_format_time(from_time)}/{_format_time(to_time)}"
        )
        payload = self._call("list_deals", "GET", url)
        return parse_broker_trades(_as_rows(payload), source="history_deals")

    def close_position(self, account_id: str, position_id: str) -> bool:
        """Request a position close. Returns False when the broker rejects it."""
        try:
            self._call(
                "close_position",
                "POST",
                f"{self._client_base(account_id)}/positions/{position_id}/close",
                retry=False,
                parse_json=False,
            )
        except BrokerAPIError as exc:
            if exc.is_transient:
                raise
            return False
        return True

    def create_and_deploy_account(self, login: str, password: str, server_name: str) -> str:
        """Create an MT5 account, request deployment and return its id."""
        base = f"{self._settings.metaapi_provisioning_url}/users/current/accounts"
        account = self._call(
            "create_account",
            "POST",
            base,
            json={
                "login": login,
                "password": password,
                "server": server_name,
                "name": f"MT5-{login}",
                "platform": "mt5",
                "magic": _MAGIC,
            },
            retry=False,
        )
        account_id = str(account.get("id", "")) if isinstance(account, dict) else ""
        if not account_id:
            raise BrokerAPIError("account_id_missing_in_response")

        try:
            self._call("deploy_account", "POST", f"{base}/{account_id}/deploy")
        except BrokerAPIError as exc:
            # The account exists; monitoring will surface a broken deployment.
            self._logger.warning("deploy_failed", account_id=account_id, error=str(exc))

        if self._settings.deploy_wait_sec > 0:
            self._sleep(self._settings.deploy_wait_sec)
        return account_id

    def _client_base(self, account_id: str) -> str:
        return f"{self._settings.metaapi_client_url}/users/current/accounts/{account_id}"

    def _call(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        retry: bool = True,
        parse_json: bool = True,
    ) -> Any:
        attempts = self._settings.broker_max_retries if retry else 1
        retrying = Retrying(
            retry=retry_if_exception(_is_transient),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            stop=stop_after_attempt(attempts),
            sleep=self._sleep,
            reraise=True,
        )
        started = time.perf_counter()
        try:
            result = retrying(self._request, method, url, json, parse_json)
        except BrokerAPIError as exc:
            log_broker_call(
                self._logger,
                operation=operation,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                status_code=exc.status_code,
                error=str(exc),
            )
            raise
        log_broker_call(
            self._logger,
            operation=operation,
            success=True,
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        return result

    def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None,
        parse_json: bool = True,
    ) -> Any:
        if not self._settings.metaapi_token:
            raise BrokerAPIError("missing_metaapi_token", status_code=401)

        headers = {"auth-token": self._settings.metaapi_token}
        try:
            with httpx.Client(
                timeout=self._settings.broker_timeout_sec,
                transport=self._transport,
            ) as client:
                response = client.request(method, url, headers=headers, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BrokerAPIError(
                f"{exc.response.status_code}: {exc.response.text[:200]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise BrokerAPIError(str(exc) or type(exc).__name__) from exc

        if not parse_json or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BrokerAPIError(
                "invalid_json_response", status_code=response.status_code
            ) from exc


def _as_rows(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, dict)]
