import asyncio
import contextlib
import html
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from balances import ChannelRow, channel_rows, summarize
from capabilities import (
    can_redeem_onchain_funds,
    should_prompt_mnemonic_backup,
    supports_node_backup,
    supports_node_control,
)
from config import HubSettings
from errors import CapabilityUnavailable, HubError, PreconditionError
from hub import HubClient
from session import HubSession
from workflows import (
    ActionResult,
    CloseChannelWorkflow,
    CloseState,
    Notification,
    SessionContext,
    new_onchain_address,
    redeem_onchain_funds,
    reset_router,
    stop_node,
)


logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"


class Decision(BaseModel):
    accept: bool
    force: bool = False


class RedeemRequest(BaseModel):
    to_address: str


async def refresh_loop(session: HubSession, stop: asyncio.Event, interval: float) -> None:
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
        if stop.is_set():
            break
        await asyncio.gather(
            session.load_csrf_token(),
            session.reload_info(),
            session.reload_balances(),
            session.reload_alby_balance(),
            session.reload_channels(),
        )


def get_session(request: Request) -> HubSession:
    session: HubSession | None = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Session not initialised")
    return session


def require_context(session: HubSession) -> SessionContext:
    ctx = session.context()
    if ctx is None:
        raise HTTPException(status_code=503, detail="Node info not loaded")
    return ctx


def status_for(error: BaseException | None) -> int:
    if isinstance(error, CapabilityUnavailable):
        return 403
    if isinstance(error, PreconditionError):
        return 409
    return 502


def notification_json(n: Notification | None) -> dict[str, Any] | None:
    return asdict(n) if n is not None else None


def workflow_json(w: CloseChannelWorkflow) -> dict[str, Any]:
    return {
        "channel_id": w.channel.id,
        "remote_pubkey": w.channel.remote_pubkey,
        "state": w.state.value,
        "prompt": w.prompt,
        "notification": notification_json(w.notification),
    }


def action_response(session: HubSession, result: ActionResult) -> JSONResponse:
    session.record(result)
    body = {
        "ok": result.ok,
        "notification": notification_json(result.notification),
        "value": result.value if isinstance(result.value, (str, int, dict, list)) else None,
    }
    return JSONResponse(body, status_code=200 if result.ok else status_for(result.error))


def snapshot(session: HubSession) -> dict[str, Any]:
    backend = session.backend
    caps = session.capabilities()
    summary = summarize(session.channels, session.balances, session.alby_balance)
    spendable = summary.raw_onchain_spendable or 0
    return {
        "running": session.running,
        "backend": backend.value if backend else None,
        "pubkey": session.connection_info.pubkey if session.connection_info else None,
        "capabilities": asdict(caps) if caps else None,
        "affordances": {
            "node_control": bool(backend and supports_node_control(backend)),
            "redeem_onchain": bool(
                backend and can_redeem_onchain_funds(backend, spendable)
            ),
            "mnemonic_backup": bool(backend and should_prompt_mnemonic_backup(backend)),
            "node_backup": bool(backend and supports_node_backup(backend)),
        },
        "balances": asdict(summary),
        "channels": (
            [asdict(r) for r in channel_rows(session.channels, session.peers)]
            if session.channels is not None
            else None
        ),
        "notifications": [asdict(n) for n in session.notifications],
    }


def render_notifications(session: HubSession) -> str:
    items = "".join(
        f"<li class=\"note {'ok' if n.ok else 'err'}\"><strong>{html.escape(n.title)}</strong>"
        f"{(' ' + html.escape(n.description)) if n.description else ''}</li>"
        for n in list(session.notifications)[:5]
    )
    return f"<ul id=notes>{items}</ul>" if items else ""


def render_cards(session: HubSession) -> str:
    s = summarize(session.channels, session.balances, session.alby_balance)
    loading = "<span class=muted>Loading...</span>"
    incoming = (
        f"<p class='muted pulse'>{html.escape(s.onchain_incoming)}</p>"
        if s.onchain_incoming
        else ""
    )
    cards = [
        ("Savings Balance", (s.onchain_spendable or loading) + incoming),
        ("Spending Balance", s.lightning_spendable or loading),
        ("Receiving Capacity", s.lightning_receivable or loading),
        ("Alby Hosted Balance", s.alby_hosted or loading),
    ]
    return "<div class=cards>" + "".join(
        f"<div class=card><div class=label>{title}</div><div class=amount>{body}</div></div>"
        for title, body in cards
    ) + "</div>"


def render_row(r: ChannelRow) -> str:
    return (
        f"<tr class=\"{'up' if r.active else 'down'}\" data-id=\"{html.escape(r.id)}\">"
        f"<td><span class=\"badge {'up' if r.active else 'down'}\">{r.status}</span></td>"
        f"<td><a class=link title=\"{html.escape(r.remote_pubkey)}\" href=\"{r.link}\" target=\"_blank\" rel=\"noopener\">{html.escape(r.alias)}</a>"
        f" <span class=\"badge vis\">{r.visibility}</span></td>"
        f"<td>{r.capacity}</td>"
        f"<td>{r.local_balance}</td>"
        f"<td>{r.remote_balance}</td>"
        f"<td><button class=danger data-close=\"{html.escape(r.id)}\">Close Channel</button></td>"
        "</tr>"
    )


def render_table(session: HubSession) -> str:
    if session.channels is None:
        body = "<tr><td colspan=6 class=muted>Loading...</td></tr>"
    else:
        body = "".join(render_row(r) for r in channel_rows(session.channels, session.peers))
    return (
        "<table class=card id=channels>"
        "<thead><tr><th>Status</th><th>Node</th><th>Capacity</th>"
        "<th>Local</th><th>Remote</th><th></th></tr></thead>"
        f"<tbody>{body}</tbody></table>"
    )


def render_actions(session: HubSession) -> str:
    backend = session.backend
    if backend is None:
        return ""
    spendable = session.balances.onchain.spendable if session.balances else 0
    buttons = ["<button data-action=new-address>Onchain Address</button>"]
    if can_redeem_onchain_funds(backend, spendable):
        buttons.append("<button data-action=redeem>Redeem Onchain Funds</button>")
    if supports_node_control(backend):
        buttons.append("<button data-action=reset-router>Reset Router</button>")
        buttons.append("<button data-action=stop>Restart</button>")
    return f"<div class=actions>{''.join(buttons)}</div>"


def render_dashboard(session: HubSession) -> str:
    if session.node_info is not None and not session.running:
        return "<div id=dashboard><p class=muted>Node is not running.</p></div>"
    pubkey = session.connection_info.pubkey if session.connection_info else "Loading..."
    return (
        "<div id=dashboard>"
        f"<div id=meta><span class=mono>{html.escape(pubkey)}</span>"
        f"<span class=muted>{session.backend.value if session.backend else ''}</span></div>"
        f"{render_notifications(session)}"
        f"{render_actions(session)}"
        f"{render_cards(session)}"
        f"{render_table(session)}"
        "</div>"
    )


def render_index(session: HubSession) -> str:
    styles = """
    :root{color-scheme:dark;--bg:#0a0b0f;--surface:#101216;--border:#1f2937;--text:#e5e7eb;--muted:#9ca3af;--accent:#60a5fa;--green:#16a34a;--red:#ef4444}
    body{margin:0;font-family:ui-sans-serif,system-ui,sans-serif;background:var(--bg);color:var(--text)}
    header,main{max-width:1100px;margin:0 auto;padding:16px}
    .cards{display:grid;grid-template-columns:repeat(auto-fit,minmax(220px,1fr));gap:12px;margin:12px 0}
    .card{background:var(--surface);border:1px solid var(--border);border-radius:12px;padding:14px;width:100%;border-spacing:0}
    .label{color:var(--muted);font-size:13px}
    .amount{font-size:22px;font-weight:700}
    th,td{padding:10px 12px;border-bottom:1px solid var(--border);text-align:left;font-size:14px}
    .badge{padding:3px 8px;border-radius:999px;font-size:12px;background:#0f1318}
    .badge.up{color:var(--green)}
    .badge.down{color:var(--red)}
    .mono{font-family:ui-monospace,monospace;font-size:12px;margin-right:12px}
    .muted{color:var(--muted)}
    .pulse{font-size:12px;margin:4px 0 0}
    .actions button,button.danger{margin-right:8px;cursor:pointer;background:var(--surface);color:var(--text);border:1px solid var(--border);border-radius:6px;padding:4px 10px}
    button.danger{color:var(--red)}
    #notes{list-style:none;padding:0}
    .note.ok{color:var(--green)}
    .note.err{color:var(--red)}
    a{color:var(--accent);text-decoration:none}
    """.strip()

    return (
        "<!doctype html><html><head><meta charset=utf-8>"
        '<meta name=viewport content="width=device-width, initial-scale=1">'
        "<title>Hub Liquidity</title>"
        f"<style>{styles}</style>"
        '<script src="https://unpkg.com/htmx.org@2.0.2" crossorigin="anonymous"></script>'
        '<script src="/static/dashboard.js" defer></script>'
        "</head><body>"
        "<header><h1>Liquidity</h1><div class=muted>Manage your lightning node liquidity.</div></header>"
        "<main>"
        '<div hx-get="/dashboard" hx-trigger="every 10s" hx-target="#dashboard" hx-swap="outerHTML">'
        f"{render_dashboard(session)}"
        "</div>"
        "</main>"
        "</body></html>"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = HubSettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    client = httpx.AsyncClient(timeout=settings.http_timeout)
    session = HubSession(
        HubClient(settings.hub_url, client),
        client,
        settings.mempool_api,
        settings.metadata_concurrency,
    )
    await session.load()
    logger.info(
        "Connected to %s (backend %s, %d channels)",
        settings.hub_url,
        session.backend.value if session.backend else "unknown",
        len(session.channels or ()),
    )
    stop_event = asyncio.Event()
    refresh_task: asyncio.Task[Any] = asyncio.create_task(
        refresh_loop(session, stop_event, settings.refresh_interval)
    )
    app.state.session = session
    app.state.stop_event = stop_event
    app.state.refresh_task = refresh_task
    try:
        yield
    finally:
        stop_event.set()
        refresh_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await refresh_task
        await client.aclose()


app = FastAPI(lifespan=lifespan)

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/", response_class=HTMLResponse)
async def index(session: HubSession = Depends(get_session)) -> str:
    return render_index(session)


@app.get("/dashboard", response_class=HTMLResponse)
async def dashboard(session: HubSession = Depends(get_session)) -> str:
    return render_dashboard(session)


@app.get("/api/snapshot")
async def api_snapshot(session: HubSession = Depends(get_session)) -> dict[str, Any]:
    return snapshot(session)


def _workflow_for(session: HubSession, channel_id: str) -> CloseChannelWorkflow:
    workflow = session.close_workflows.get(channel_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="No close in progress for channel")
    return workflow


@app.post("/channels/{channel_id}/close")
async def begin_close(
    channel_id: str, session: HubSession = Depends(get_session)
) -> JSONResponse:
    channel = session.find_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Unknown channel")
    try:
        workflow = session.start_close(channel)
    except HubError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return JSONResponse(workflow_json(workflow))


@app.post("/channels/{channel_id}/close/inactive")
async def acknowledge_inactive(
    channel_id: str, decision: Decision, session: HubSession = Depends(get_session)
) -> JSONResponse:
    workflow = _workflow_for(session, channel_id)
    try:
        workflow.acknowledge_inactive(decision.accept)
    except HubError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return JSONResponse(workflow_json(workflow))


@app.post("/channels/{channel_id}/close/confirm")
async def confirm_close(
    channel_id: str, decision: Decision, session: HubSession = Depends(get_session)
) -> JSONResponse:
    workflow = _workflow_for(session, channel_id)
    ctx = require_context(session)
    try:
        await workflow.confirm(
            decision.accept,
            ctx,
            session.hub,
            session.reload_channels,
            session.guard,
            force=decision.force,
        )
    except HubError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    session.notify(workflow.notification)
    status = 200 if workflow.state is not CloseState.FAILED else status_for(workflow.error)
    return JSONResponse(workflow_json(workflow), status_code=status)


@app.post("/node/reset-router")
async def api_reset_router(session: HubSession = Depends(get_session)) -> JSONResponse:
    result = await reset_router(require_context(session), session.hub, session.reload_info)
    return action_response(session, result)


@app.post("/node/stop")
async def api_stop_node(session: HubSession = Depends(get_session)) -> JSONResponse:
    result = await stop_node(require_context(session), session.hub, session.reload_info)
    return action_response(session, result)


@app.post("/wallet/new-address")
async def api_new_address(session: HubSession = Depends(get_session)) -> JSONResponse:
    result = await new_onchain_address(require_context(session), session.hub)
    return action_response(session, result)


@app.post("/wallet/redeem")
async def api_redeem(
    body: RedeemRequest, session: HubSession = Depends(get_session)
) -> JSONResponse:
    result = await redeem_onchain_funds(
        require_context(session),
        session.hub,
        session.balances,
        body.to_address,
        session.reload_balances,
    )
    return action_response(session, result)


if __name__ == "__main__":
    import uvicorn

    settings = HubSettings.from_env()
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=False)
