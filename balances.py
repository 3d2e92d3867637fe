from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from hub import AlbyBalance, Balances, Channel
from lightning import PeerMetadata, peer_alias


SCALE_SUFFIXES = ("", "k", "M", "G")


def msat_to_sats(msat: int) -> int:
    return msat // 1000


def lightning_spendable_msat(channels: Sequence[Channel]) -> int:
    return sum(c.local_balance for c in channels)


def format_sats(sats: int) -> str:
    return f"{sats:,} sats"


def onchain_incoming_sats(balances: Balances) -> int:
    return balances.onchain.total - balances.onchain.spendable


def format_incoming(balances: Balances) -> str | None:
    incoming = onchain_incoming_sats(balances)
    if incoming == 0:
        return None
    return f"+{incoming:,} sats incoming"


def scale_amount(msat: int, decimals: int = 1) -> str:
    """Render msat as sats with a k/M/G suffix.

    The scale is picked on the unrounded value, so 999_999 sats stays in
    the k range and renders as "1000.0k". Division happens in binary
    floating point and the exact binary value is rounded half-up, so ties
    such as 1.15 (stored as 1.1499...) round down the way a browser's
    `toFixed` does.
    """
    amount = msat / 1000
    i = 0
    while amount >= 1000 and i < len(SCALE_SUFFIXES) - 1:
        amount /= 1000
        i += 1
    places = decimals if i > 0 else 0
    value = Decimal(amount).quantize(
        Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP
    )
    return f"{value:.{places}f}{SCALE_SUFFIXES[i]}"


@dataclass
class BalanceSummary:
    onchain_spendable: str | None
    onchain_incoming: str | None
    lightning_spendable: str | None
    lightning_receivable: str | None
    alby_hosted: str | None
    # Raw values
    raw_onchain_spendable: int | None
    raw_lightning_spendable_msat: int | None


def summarize(
    channels: Sequence[Channel] | None,
    balances: Balances | None,
    alby_balance: AlbyBalance | None = None,
) -> BalanceSummary:
    spendable_msat = (
        lightning_spendable_msat(channels) if channels is not None else None
    )
    return BalanceSummary(
        onchain_spendable=(
            format_sats(balances.onchain.spendable) if balances else None
        ),
        onchain_incoming=format_incoming(balances) if balances else None,
        lightning_spendable=(
            format_sats(msat_to_sats(spendable_msat))
            if spendable_msat is not None
            else None
        ),
        lightning_receivable=(
            format_sats(msat_to_sats(balances.lightning.total_receivable))
            if balances
            else None
        ),
        alby_hosted=format_sats(alby_balance.sats) if alby_balance else None,
        raw_onchain_spendable=balances.onchain.spendable if balances else None,
        raw_lightning_spendable_msat=spendable_msat,
    )


@dataclass
class ChannelRow:
    id: str
    remote_pubkey: str
    alias: str
    status: str
    visibility: str
    capacity: str
    local_balance: str
    remote_balance: str
    link: str
    active: bool


def channel_rows(
    channels: Sequence[Channel], peers: dict[str, PeerMetadata]
) -> list[ChannelRow]:
    return [
        ChannelRow(
            id=c.id,
            remote_pubkey=c.remote_pubkey,
            alias=peer_alias(c, peers),
            status="Online" if c.active else "Offline",
            visibility="Public" if c.public else "Private",
            capacity=f"{scale_amount(c.capacity)} sats",
            local_balance=f"{scale_amount(c.local_balance)} sats",
            remote_balance=f"{scale_amount(c.remote_balance)} sats",
            link=f"https://amboss.space/node/{c.remote_pubkey}",
            active=c.active,
        )
        for c in channels
    ]
