import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from capabilities import BackendVariant
from errors import HubApiError


logger = logging.getLogger(__name__)


class HubModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class Channel(HubModel):
    id: str
    remote_pubkey: str
    local_balance: int
    remote_balance: int
    active: bool
    public: bool = False

    @property
    def capacity(self) -> int:
        return self.local_balance + self.remote_balance


class OnchainBalances(HubModel):
    spendable: int
    total: int


class LightningBalances(HubModel):
    total_spendable: int
    total_receivable: int


class Balances(HubModel):
    onchain: OnchainBalances
    lightning: LightningBalances


class AlbyBalance(HubModel):
    sats: int


class NodeInfo(HubModel):
    running: bool
    backend_type: BackendVariant
    pubkey: str | None = None


class NodeConnectionInfo(HubModel):
    pubkey: str
    address: str | None = None
    port: int | None = None


def _error_message(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text or r.reason_phrase
    if isinstance(data, dict):
        for key in ("message", "error"):
            if isinstance(data.get(key), str) and data[key]:
                return data[key]
    return r.text or r.reason_phrase


class HubClient:
    """Thin async wrapper around the node's control API."""

    def __init__(self, base_url: str, client: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.client = client

    async def _request(
        self,
        method: str,
        path: str,
        csrf_token: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers: dict[str, str] = {}
        if csrf_token is not None:
            headers["X-CSRF-Token"] = csrf_token
            headers["Content-Type"] = "application/json"
        r = await self.client.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            json=json,
            params=params,
        )
        if r.status_code >= 400:
            message = _error_message(r)
            logger.debug("%s %s failed: %s %s", method, path, r.status_code, message)
            raise HubApiError(message, status_code=r.status_code)
        if not r.content:
            return None
        return r.json()

    async def fetch_csrf_token(self) -> str:
        token = await self._request("GET", "/api/csrf")
        if not isinstance(token, str) or not token:
            raise HubApiError("Invalid CSRF token response")
        return token

    async def get_info(self) -> NodeInfo:
        return NodeInfo.model_validate(await self._request("GET", "/api/info"))

    async def get_connection_info(self) -> NodeConnectionInfo:
        data = await self._request("GET", "/api/node/connection-info")
        return NodeConnectionInfo.model_validate(data)

    async def list_channels(self) -> list[Channel]:
        data = await self._request("GET", "/api/channels")
        return [Channel.model_validate(c) for c in data or []]

    async def get_balances(self) -> Balances:
        return Balances.model_validate(await self._request("GET", "/api/balances"))

    async def get_alby_balance(self) -> AlbyBalance:
        return AlbyBalance.model_validate(
            await self._request("GET", "/api/alby/balance")
        )

    async def close_channel(
        self, csrf_token: str, peer_pubkey: str, channel_id: str, force: bool = False
    ) -> Any:
        response = await self._request(
            "DELETE",
            f"/api/peers/{peer_pubkey}/channels/{channel_id}",
            csrf_token=csrf_token,
            params={"force": "true" if force else "false"},
        )
        if response is None:
            raise HubApiError("Error closing channel")
        return response

    async def reset_router(self, csrf_token: str, key: str = "ALL") -> None:
        await self._request(
            "POST", "/api/reset-router", csrf_token=csrf_token, json={"key": key}
        )

    async def stop_node(self, csrf_token: str) -> None:
        await self._request("POST", "/api/stop", csrf_token=csrf_token)

    async def get_new_address(self, csrf_token: str) -> str:
        address = await self._request(
            "POST", "/api/wallet/new-address", csrf_token=csrf_token
        )
        if not isinstance(address, str) or not address:
            raise HubApiError("Invalid address response")
        return address

    async def redeem_onchain_funds(self, csrf_token: str, to_address: str) -> Any:
        return await self._request(
            "POST",
            "/api/wallet/redeem-onchain-funds",
            csrf_token=csrf_token,
            json={"toAddress": to_address},
        )
