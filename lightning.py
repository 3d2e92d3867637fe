import asyncio
import logging
from collections.abc import Iterable

import httpx
from pydantic import BaseModel

from hub import Channel


logger = logging.getLogger(__name__)

DEFAULT_MEMPOOL_API = "https://mempool.space/api"
UNKNOWN_ALIAS = "Unknown"
UNKNOWN_NODE = "Unknown Node"


class PeerMetadata(BaseModel):
    public_key: str
    alias: str = ""
    capacity: int | None = None
    active_channel_count: int | None = None
    color: str | None = None


async def fetch_node_metadata(
    pubkey: str, client: httpx.AsyncClient, mempool_api: str = DEFAULT_MEMPOOL_API
) -> PeerMetadata | None:
    r = await client.get(f"{mempool_api.rstrip('/')}/v1/lightning/nodes/{pubkey}")
    if r.status_code == 404:
        return None
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict) or not data:
        return None
    return PeerMetadata.model_validate({"public_key": pubkey, **data})


async def enrich_channels(
    channels: Iterable[Channel] | None,
    client: httpx.AsyncClient,
    mempool_api: str = DEFAULT_MEMPOOL_API,
    concurrency: int = 8,
) -> dict[str, PeerMetadata]:
    if not channels:
        return {}
    pubkeys = list(dict.fromkeys(c.remote_pubkey for c in channels))
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _lookup(pubkey: str) -> PeerMetadata | None:
        async with semaphore:
            try:
                return await fetch_node_metadata(pubkey, client, mempool_api)
            except Exception as e:
                logger.warning("Metadata lookup for %s failed: %s", pubkey, e)
                return None

    results = await asyncio.gather(*[_lookup(pk) for pk in pubkeys])
    return {pk: meta for pk, meta in zip(pubkeys, results) if meta is not None}


def peer_alias(channel: Channel, peers: dict[str, PeerMetadata]) -> str:
    meta = peers.get(channel.remote_pubkey)
    if meta is None:
        return UNKNOWN_ALIAS
    return meta.alias or f"{channel.remote_pubkey[:5]}..."


def confirm_alias(channel: Channel, peers: dict[str, PeerMetadata]) -> str:
    meta = peers.get(channel.remote_pubkey)
    return meta.alias if meta is not None and meta.alias else UNKNOWN_NODE


if __name__ == "__main__":
    import sys

    async def _main(pubkeys: list[str]) -> None:
        async with httpx.AsyncClient(timeout=15.0) as client:
            for pk in pubkeys:
                try:
                    res = await fetch_node_metadata(pk, client)
                except httpx.HTTPError as e:
                    print(pk, "error:", e)
                    continue
                print(pk, res.alias if res else UNKNOWN_ALIAS)

    argv = [a for a in sys.argv[1:] if a.strip()]
    if not argv:
        print("Usage: python lightning.py <pubkey> [<pubkey>...]")
    else:
        asyncio.run(_main(argv))
