import asyncio
import logging
from collections import deque

import httpx

from capabilities import BackendVariant, CapabilityFlags, capabilities_of
from errors import OperationInProgress
from hub import (
    AlbyBalance,
    Balances,
    Channel,
    HubClient,
    NodeConnectionInfo,
    NodeInfo,
)
from lightning import PeerMetadata, confirm_alias, enrich_channels
from workflows import (
    ActionResult,
    CloseChannelWorkflow,
    CloseState,
    InFlightGuard,
    Notification,
    SessionContext,
)


logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 20


class HubSession:
    """Snapshots of the node's state for one dashboard session.

    Every reload replaces its snapshot wholesale. Enrichment runs against the
    channel tuple it was started with and is dropped if a newer channel list
    arrived in the meantime.
    """

    def __init__(
        self,
        hub: HubClient,
        client: httpx.AsyncClient,
        mempool_api: str,
        metadata_concurrency: int = 8,
    ):
        self.hub = hub
        self.client = client
        self.mempool_api = mempool_api
        self.metadata_concurrency = metadata_concurrency
        self.csrf_token: str | None = None
        self.node_info: NodeInfo | None = None
        self.connection_info: NodeConnectionInfo | None = None
        self.channels: tuple[Channel, ...] | None = None
        self.balances: Balances | None = None
        self.alby_balance: AlbyBalance | None = None
        self.peers: dict[str, PeerMetadata] = {}
        self.guard = InFlightGuard()
        self.close_workflows: dict[str, CloseChannelWorkflow] = {}
        self.notifications: deque[Notification] = deque(maxlen=MAX_NOTIFICATIONS)

    @property
    def backend(self) -> BackendVariant | None:
        return self.node_info.backend_type if self.node_info else None

    @property
    def running(self) -> bool:
        return bool(self.node_info and self.node_info.running)

    def context(self) -> SessionContext | None:
        if self.backend is None:
            return None
        return SessionContext(csrf_token=self.csrf_token, backend=self.backend)

    def capabilities(self) -> CapabilityFlags | None:
        return capabilities_of(self.backend) if self.backend else None

    async def load(self) -> None:
        await asyncio.gather(
            self.load_csrf_token(),
            self.reload_info(),
            self.reload_connection_info(),
            self.reload_balances(),
            self.reload_alby_balance(),
            self.reload_channels(),
        )

    async def load_csrf_token(self) -> None:
        if self.csrf_token is not None:
            return
        try:
            self.csrf_token = await self.hub.fetch_csrf_token()
        except Exception as e:
            logger.warning("Failed to load CSRF token: %s", e)

    async def reload_info(self) -> None:
        try:
            self.node_info = await self.hub.get_info()
        except Exception as e:
            logger.warning("Failed to load node info: %s", e)

    async def reload_connection_info(self) -> None:
        try:
            self.connection_info = await self.hub.get_connection_info()
        except Exception as e:
            logger.warning("Failed to load node connection info: %s", e)

    async def reload_balances(self) -> None:
        try:
            self.balances = await self.hub.get_balances()
        except Exception as e:
            logger.warning("Failed to load balances: %s", e)

    async def reload_alby_balance(self) -> None:
        try:
            self.alby_balance = await self.hub.get_alby_balance()
        except Exception as e:
            logger.warning("Failed to load Alby balance: %s", e)

    async def reload_channels(self) -> None:
        try:
            channels = tuple(await self.hub.list_channels())
        except Exception as e:
            logger.warning("Failed to load channels: %s", e)
            return
        self.channels = channels
        self.prune_close_workflows(channels)
        await self.enrich(channels)

    async def enrich(self, channels: tuple[Channel, ...]) -> None:
        peers = await enrich_channels(
            channels, self.client, self.mempool_api, self.metadata_concurrency
        )
        if self.channels is not channels:
            logger.debug("Discarding metadata for a stale channel list")
            return
        self.peers = peers

    def prune_close_workflows(self, channels: tuple[Channel, ...]) -> None:
        # a request still on the wire keeps its entry until it settles
        ids = {c.id for c in channels}
        for channel_id, workflow in list(self.close_workflows.items()):
            if channel_id not in ids and workflow.state is not CloseState.REQUESTING:
                del self.close_workflows[channel_id]

    def find_channel(self, channel_id: str) -> Channel | None:
        return next((c for c in self.channels or () if c.id == channel_id), None)

    def start_close(self, channel: Channel) -> CloseChannelWorkflow:
        current = self.close_workflows.get(channel.id)
        if current is not None and current.state is CloseState.REQUESTING:
            raise OperationInProgress(channel.id)
        workflow = CloseChannelWorkflow(channel, confirm_alias(channel, self.peers))
        workflow.begin()
        self.close_workflows[channel.id] = workflow
        return workflow

    def notify(self, notification: Notification | None) -> None:
        if notification is not None:
            self.notifications.appendleft(notification)

    def record(self, result: ActionResult) -> ActionResult:
        self.notify(result.notification)
        return result
