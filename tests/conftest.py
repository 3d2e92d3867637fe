"""
Pytest fixtures for the hub dashboard tests.

Provides a fake node control API and network-graph service behind
httpx.MockTransport, plus sample channel and balance payloads.
"""

import asyncio
import copy
import json

import httpx
import pytest

from hub import Channel, HubClient


HUB_URL = "http://hub.test"
MEMPOOL_API = "http://mempool.test/api"

PEER_A = "02" + "a" * 64
PEER_B = "02" + "b" * 64
PEER_C = "03" + "c" * 64


def wire_channel(
    channel_id: str,
    pubkey: str,
    local: int,
    remote: int,
    active: bool = True,
    public: bool = True,
) -> dict:
    return {
        "id": channel_id,
        "remotePubkey": pubkey,
        "localBalance": local,
        "remoteBalance": remote,
        "active": active,
        "public": public,
    }


class FakeNode:
    """Records every request and answers like a hub plus mempool.space."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.csrf = "csrf-token"
        self.info = {"running": True, "backendType": "LDK"}
        self.connection_info = {"pubkey": "02" + "f" * 64, "address": "127.0.0.1", "port": 9735}
        self.channels = [
            wire_channel("chan-1", PEER_A, 1_500_000_000, 500_000_000),
            wire_channel("chan-2", PEER_B, 250_000, 999_750_000, public=False),
            wire_channel("chan-3", PEER_C, 0, 1_000_000, active=False),
        ]
        self.balances = {
            "onchain": {"spendable": 150_000, "total": 175_000},
            "lightning": {"totalSpendable": 1_500_250_000, "totalReceivable": 1_000_000_000},
        }
        self.alby_balance = {"sats": 21_000}
        self.metadata: dict[str, dict | str] = {
            PEER_A: {"public_key": PEER_A, "alias": "ACINQ", "capacity": 5_000_000, "active_channel_count": 42},
            PEER_B: {"public_key": PEER_B, "alias": "", "capacity": 1_000},
        }
        # (method, path) -> httpx.Response | "network"
        self.failures: dict[tuple[str, str], httpx.Response | str] = {}
        self.close_response: object = {}
        self.close_gate: asyncio.Event | None = None
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    def calls(self, method: str, path_prefix: str = "") -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.startswith(path_prefix)
        ]

    def mutating_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method in ("POST", "DELETE")]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "mempool.test":
            return await self._mempool(request)

        failure = self.failures.get((request.method, request.url.path))
        if failure == "network":
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(failure, httpx.Response):
            return failure

        path = request.url.path
        match request.method, path:
            case "GET", "/api/csrf":
                return httpx.Response(200, json=self.csrf)
            case "GET", "/api/info":
                return httpx.Response(200, json=self.info)
            case "GET", "/api/node/connection-info":
                return httpx.Response(200, json=self.connection_info)
            case "GET", "/api/channels":
                return httpx.Response(200, json=copy.deepcopy(self.channels))
            case "GET", "/api/balances":
                return httpx.Response(200, json=self.balances)
            case "GET", "/api/alby/balance":
                return httpx.Response(200, json=self.alby_balance)
            case "POST", "/api/reset-router" | "/api/stop":
                return httpx.Response(200)
            case "POST", "/api/wallet/new-address":
                return httpx.Response(200, json="bc1qnewaddress")
            case "POST", "/api/wallet/redeem-onchain-funds":
                body = json.loads(request.content)
                return httpx.Response(200, json={"txId": "ab" * 32, "to": body["toAddress"]})
            case "DELETE", _ if path.startswith("/api/peers/"):
                if self.close_gate is not None:
                    await self.close_gate.wait()
                channel_id = path.rsplit("/", 1)[-1]
                self.channels = [c for c in self.channels if c["id"] != channel_id]
                return httpx.Response(200, content=json.dumps(self.close_response).encode())
        return httpx.Response(404, json={"message": f"no route {request.method} {path}"})

    async def _mempool(self, request: httpx.Request) -> httpx.Response:
        pubkey = request.url.path.rsplit("/", 1)[-1]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            entry = self.metadata.get(pubkey)
            if entry is None:
                return httpx.Response(404, text="Node not found")
            if entry == "network":
                raise httpx.ConnectError("mempool unreachable", request=request)
            return httpx.Response(200, json=entry)
        finally:
            self.in_flight -= 1


@pytest.fixture
def node():
    return FakeNode()


@pytest.fixture
async def http_client(node):
    client = httpx.AsyncClient(transport=httpx.MockTransport(node.handle))
    yield client
    await client.aclose()


@pytest.fixture
def hub(http_client):
    return HubClient(HUB_URL, http_client)


@pytest.fixture
def channels(node):
    return [Channel.model_validate(c) for c in node.channels]
