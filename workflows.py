"""User-initiated actions against the node.

Every entry point takes an explicit `SessionContext` carrying the CSRF token
and backend variant, checks its local preconditions before touching the
network, and reports the outcome as a `Notification`. Failures never modify
cached snapshots; only a successful action triggers a reload, and the reload
replaces the snapshot from source.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from capabilities import (
    BackendVariant,
    can_redeem_onchain_funds,
    supports_node_control,
)
from errors import (
    CapabilityUnavailable,
    CsrfTokenMissing,
    HubError,
    InvalidTransition,
    OperationInProgress,
)
from hub import Balances, Channel, HubClient


logger = logging.getLogger(__name__)

Reload = Callable[[], Awaitable[Any]]
Confirm = Callable[[str], bool | Awaitable[bool]]

INACTIVE_WARNING = (
    "This channel is inactive. Some channels require up to 6 onchain "
    "confirmations before they are usable. If you really want to continue, "
    "click OK."
)


@dataclass(frozen=True)
class SessionContext:
    csrf_token: str | None
    backend: BackendVariant

    def require_csrf(self) -> str:
        if not self.csrf_token:
            raise CsrfTokenMissing()
        return self.csrf_token


@dataclass(frozen=True)
class Notification:
    ok: bool
    title: str
    description: str | None = None


@dataclass
class ActionResult:
    ok: bool
    notification: Notification
    value: Any = None
    error: BaseException | None = field(default=None, repr=False)


class InFlightGuard:
    def __init__(self) -> None:
        self._keys: set[str] = set()

    def acquire(self, key: str) -> None:
        # no await between the check and the insert
        if key in self._keys:
            raise OperationInProgress(key)
        self._keys.add(key)

    def release(self, key: str) -> None:
        self._keys.discard(key)

    def __contains__(self, key: object) -> bool:
        return key in self._keys


def describe_error(error: BaseException) -> str:
    if isinstance(error, HubError):
        return error.user_message
    return str(error) or type(error).__name__


def _failure(title: str, error: BaseException) -> Notification:
    return Notification(False, title, f"Something went wrong: {describe_error(error)}")


class CloseState(str, Enum):
    IDLE = "idle"
    INACTIVE_WARNING = "inactive_warning"
    CONFIRM_CLOSE = "confirm_close"
    REQUESTING = "requesting"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class CloseChannelWorkflow:
    channel: Channel
    alias: str
    state: CloseState = CloseState.IDLE
    notification: Notification | None = None
    error: BaseException | None = field(default=None, repr=False)

    @property
    def prompt(self) -> str | None:
        match self.state:
            case CloseState.INACTIVE_WARNING:
                return INACTIVE_WARNING
            case CloseState.CONFIRM_CLOSE:
                return (
                    f"Are you sure you want to close the channel with {self.alias}?"
                    f"\n\nNode ID: {self.channel.remote_pubkey}"
                    f"\n\nChannel ID: {self.channel.id}"
                )
            case _:
                return None

    @property
    def finished(self) -> bool:
        return self.state in (CloseState.IDLE, CloseState.CLOSED, CloseState.FAILED)

    def _expect(self, state: CloseState, step: str) -> None:
        if self.state is not state:
            raise InvalidTransition(self.state.value, step)

    def begin(self) -> str:
        if self.state not in (CloseState.IDLE, CloseState.CLOSED, CloseState.FAILED):
            raise InvalidTransition(self.state.value, "begin")
        self.notification = None
        self.error = None
        self.state = (
            CloseState.CONFIRM_CLOSE
            if self.channel.active
            else CloseState.INACTIVE_WARNING
        )
        return self.prompt  # type: ignore[return-value]

    def acknowledge_inactive(self, accept: bool) -> CloseState:
        self._expect(CloseState.INACTIVE_WARNING, "acknowledge the inactive warning")
        self.state = CloseState.CONFIRM_CLOSE if accept else CloseState.IDLE
        return self.state

    async def confirm(
        self,
        accept: bool,
        ctx: SessionContext,
        hub: HubClient,
        reload_channels: Reload,
        guard: InFlightGuard,
        force: bool = False,
    ) -> CloseState:
        self._expect(CloseState.CONFIRM_CLOSE, "confirm the close")
        if not accept:
            self.state = CloseState.IDLE
            return self.state

        self.state = CloseState.REQUESTING
        try:
            csrf = ctx.require_csrf()
            guard.acquire(self.channel.id)
        except HubError as e:
            return self._fail(e)

        try:
            logger.info(
                "Closing channel %s with %s (force=%s)",
                self.channel.id,
                self.channel.remote_pubkey,
                force,
            )
            await hub.close_channel(
                csrf, self.channel.remote_pubkey, self.channel.id, force=force
            )
        except asyncio.CancelledError as e:
            self._fail(e)
            raise
        except Exception as e:
            return self._fail(e)
        finally:
            guard.release(self.channel.id)

        self.state = CloseState.CLOSED
        self.notification = Notification(True, "🎉 Channel closed")
        try:
            await reload_channels()
        except Exception as e:
            logger.warning("Channel list reload after close failed: %s", e)
        return self.state

    def _fail(self, error: BaseException) -> CloseState:
        logger.error(
            "Closing channel %s failed: %s",
            self.channel.id,
            getattr(error, "technical_message", error),
            exc_info=not isinstance(error, HubError),
        )
        self.state = CloseState.FAILED
        self.error = error
        self.notification = _failure("Closing channel failed", error)
        return self.state


async def _ask(confirm: Confirm, prompt: str) -> bool:
    answer = confirm(prompt)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)


async def close_channel(
    ctx: SessionContext,
    hub: HubClient,
    channel: Channel,
    alias: str,
    confirm: Confirm,
    reload_channels: Reload,
    guard: InFlightGuard,
    force: bool = False,
) -> CloseChannelWorkflow:
    workflow = CloseChannelWorkflow(channel, alias)
    prompt = workflow.begin()
    if workflow.state is CloseState.INACTIVE_WARNING:
        workflow.acknowledge_inactive(await _ask(confirm, prompt))
        if workflow.state is CloseState.IDLE:
            return workflow
        prompt = workflow.prompt  # type: ignore[assignment]
    await workflow.confirm(
        await _ask(confirm, prompt),
        ctx,
        hub,
        reload_channels,
        guard,
        force=force,
    )
    return workflow


async def _run_action(
    title: str,
    done: str,
    call: Callable[[], Awaitable[Any]],
    reload: Reload | None = None,
) -> ActionResult:
    try:
        value = await call()
    except Exception as e:
        logger.error(
            "%s failed: %s",
            title,
            getattr(e, "technical_message", e),
            exc_info=not isinstance(e, HubError),
        )
        return ActionResult(False, _failure(f"{title} failed", e), error=e)
    if reload is not None:
        try:
            await reload()
        except Exception as e:
            logger.warning("Reload after %s failed: %s", title.lower(), e)
    return ActionResult(True, Notification(True, done), value)


def _precondition_failed(title: str, error: HubError) -> ActionResult:
    logger.error("%s rejected: %s", title, error.technical_message)
    return ActionResult(False, _failure(f"{title} failed", error), error=error)


async def reset_router(
    ctx: SessionContext, hub: HubClient, reload_info: Reload, key: str = "ALL"
) -> ActionResult:
    try:
        if not supports_node_control(ctx.backend):
            raise CapabilityUnavailable("Reset router", ctx.backend.value)
        csrf = ctx.require_csrf()
    except HubError as e:
        return _precondition_failed("Reset router", e)
    return await _run_action(
        "Reset router",
        "🎉 Router reset",
        lambda: hub.reset_router(csrf, key),
        reload_info,
    )


async def stop_node(
    ctx: SessionContext, hub: HubClient, reload_info: Reload
) -> ActionResult:
    try:
        if not supports_node_control(ctx.backend):
            raise CapabilityUnavailable("Restart", ctx.backend.value)
        csrf = ctx.require_csrf()
    except HubError as e:
        return _precondition_failed("Stop node", e)
    return await _run_action(
        "Stop node", "🎉 Node stopped", lambda: hub.stop_node(csrf), reload_info
    )


async def redeem_onchain_funds(
    ctx: SessionContext,
    hub: HubClient,
    balances: Balances | None,
    to_address: str,
    reload_balances: Reload,
) -> ActionResult:
    try:
        spendable = balances.onchain.spendable if balances else 0
        if not can_redeem_onchain_funds(ctx.backend, spendable):
            raise CapabilityUnavailable("Redeem onchain funds", ctx.backend.value)
        csrf = ctx.require_csrf()
    except HubError as e:
        return _precondition_failed("Redeem onchain funds", e)
    return await _run_action(
        "Redeem onchain funds",
        "🎉 Onchain funds redeemed",
        lambda: hub.redeem_onchain_funds(csrf, to_address),
        reload_balances,
    )


async def new_onchain_address(ctx: SessionContext, hub: HubClient) -> ActionResult:
    try:
        csrf = ctx.require_csrf()
    except HubError as e:
        return _precondition_failed("New address", e)
    return await _run_action(
        "New address", "New onchain address", lambda: hub.get_new_address(csrf)
    )
