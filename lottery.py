"""
Weekly lottery funded by Bet Mode losses.

The snapshot freezes the pool and hands every ticket holder a contiguous range
of ticket numbers. The draw derives up to 31 distinct winning numbers from a
published seed, pays the tier prizes and splits what is left of the pool
between the remaining ticket holders.
"""

import hashlib
import logging
import secrets
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException

from bet_mode import current_week_id, forfeit
from database import (
    CURRENCY_ACCOUNTS,
    BET_MODE_GAMES,
    WEEKLY_POOLS,
    LOTTERY_TICKETS,
    QT_TRANSACTIONS,
    create_document,
    find_one,
    get_documents,
    update_document,
    increment_field,
    push_item,
    now_utc,
)
from schemas import QtTransaction

logger = logging.getLogger(__name__)

# (tier, share of the final pool in basis points, winners sharing it).
# The tiers pay 46.2% of the pool; the rest goes to the consolation split.
PRIZE_TIERS = [
    (1, 2500, 1),
    (2, 1000, 2),
    (3, 600, 3),
    (4, 300, 5),
    (5, 120, 10),
    (6, 100, 10),
]
MAX_WINNERS = sum(count for _, _, count in PRIZE_TIERS)
MAX_DRAW_ATTEMPTS = 1000


def tier_for_position(position: int) -> int:
    if position == 0:
        return 1
    if position <= 2:
        return 2
    if position <= 5:
        return 3
    if position <= 10:
        return 4
    if position <= 20:
        return 5
    return 6


def prize_per_winner(final_pool: int, tier: int) -> int:
    for t, basis_points, count in PRIZE_TIERS:
        if t == tier:
            return final_pool * basis_points // (10_000 * count)
    return 0


def make_seed(week_id: str, entropy: str, now: datetime) -> str:
    return hashlib.sha256(f"{week_id}-{entropy}-{int(now.timestamp() * 1000)}".encode()).hexdigest()


def winning_numbers(seed: str, total_tickets: int, count: int) -> List[int]:
    """Distinct ticket numbers in [0, total_tickets), reproducible from the seed."""
    count = min(count, total_tickets)
    used = set()
    numbers = []
    for i in range(count):
        for attempt in range(MAX_DRAW_ATTEMPTS):
            digest = hashlib.sha256(f"{seed}:{i}:{attempt}".encode()).hexdigest()
            number = int(digest, 16) % total_tickets
            if number not in used:
                break
        else:
            raise RuntimeError("Could not generate unique ticket numbers")
        used.add(number)
        numbers.append(number)
    return numbers


def _pool_or_404(week_id: str) -> dict:
    pool = find_one(WEEKLY_POOLS, {"week_id": week_id})
    if not pool:
        raise HTTPException(404, "Weekly pool not found")
    return pool


def take_snapshot(week_id: Optional[str] = None, now: datetime = None) -> dict:
    now = now or now_utc()
    week_id = week_id or current_week_id(now)
    pool = _pool_or_404(week_id)
    if pool.get("snapshot_taken"):
        return {"message": "Snapshot already taken", "week_id": week_id}

    # games still running when the window closes are forfeited into this pool
    closed = 0
    for game in get_documents(BET_MODE_GAMES, {"week_id": week_id, "status": "active"}):
        if forfeit(game, now):
            closed += 1

    tickets = get_documents(LOTTERY_TICKETS, {"week_id": week_id}, sort=[("fid", 1)])
    next_number = 0
    holders = 0
    for ticket in tickets:
        count = int(ticket.get("total_tickets", 0))
        if count <= 0:
            continue
        update_document(LOTTERY_TICKETS, ticket["id"], {
            "ticket_range_start": next_number,
            "ticket_range_end": next_number + count - 1,
            "snapshot_at": now,
        })
        next_number += count
        holders += 1

    pool = _pool_or_404(week_id)
    final_pool = pool.get("lottery_pool", 0)
    locked = update_document(
        WEEKLY_POOLS,
        {"week_id": week_id, "snapshot_taken": False},
        {
            "snapshot_taken": True,
            "snapshot_at": now,
            "final_pool": final_pool,
            "total_tickets": next_number,
            "total_participants": holders,
            "status": "snapshot_complete",
        },
    )
    if not locked:
        return {"message": "Snapshot already taken", "week_id": week_id}

    logger.info("lottery snapshot week=%s tickets=%s pool=%s closed_games=%s", week_id, next_number, final_pool, closed)
    return {
        "success": True,
        "week_id": week_id,
        "total_tickets": next_number,
        "total_participants": holders,
        "final_pool": final_pool,
        "active_games_closed": closed,
    }


def _pay(fid: int, amount: int, week_id: str, type_: str, tier: Optional[int] = None) -> bool:
    paid = increment_field(CURRENCY_ACCOUNTS, {"fid": fid}, {"qt_balance": amount})
    if not paid:
        logger.warning("lottery payout to fid=%s found no account", fid)
        return False
    create_document(QT_TRANSACTIONS, QtTransaction(fid=fid, type=type_, amount=amount, week_id=week_id, tier=tier))
    return True


def draw(week_id: Optional[str] = None, entropy: Optional[str] = None, now: datetime = None) -> dict:
    now = now or now_utc()
    week_id = week_id or current_week_id(now)
    pool = _pool_or_404(week_id)
    if not pool.get("snapshot_taken"):
        raise HTTPException(400, "Snapshot not taken yet")
    if pool.get("draw_completed"):
        return {"message": "Draw already completed", "week_id": week_id}

    final_pool = pool.get("final_pool", 0)
    total_tickets = pool.get("total_tickets", 0)
    if total_tickets <= 0:
        raise HTTPException(400, "No tickets to draw from")

    seed = make_seed(week_id, entropy or secrets.token_hex(32), now)
    # Claim the draw before paying anything so that a second run stops here.
    claimed = update_document(
        WEEKLY_POOLS,
        {"week_id": week_id, "status": "snapshot_complete"},
        {"status": "drawing", "draw_seed": seed},
    )
    if not claimed:
        return {"message": "Draw already in progress or completed", "week_id": week_id}
    logger.info("lottery draw claimed week=%s seed=%s tickets=%s pool=%s", week_id, seed, total_tickets, final_pool)

    tickets = get_documents(LOTTERY_TICKETS, {"week_id": week_id})
    numbers = winning_numbers(seed, total_tickets, MAX_WINNERS)

    distributions = []
    for position, number in enumerate(numbers):
        owner = next(
            (t for t in tickets
             if t.get("ticket_range_start") is not None
             and t["ticket_range_start"] <= number <= t["ticket_range_end"]),
            None,
        )
        if owner is None:
            continue
        tier = tier_for_position(position)
        prize = prize_per_winner(final_pool, tier)
        winner = {"tier": tier, "fid": owner["fid"], "ticket_number": number, "prize": prize}
        # each payout is recorded on the pool as it happens so an interrupted
        # draw can be finished by hand from the stored seed
        if _pay(owner["fid"], prize, week_id, "lottery_win", tier):
            push_item(WEEKLY_POOLS, {"week_id": week_id}, "paid_winners", winner)
        update_document(LOTTERY_TICKETS, owner["id"], {"won": True, "tier": tier, "prize_amount": prize})
        distributions.append(winner)

    distributed = sum(d["prize"] for d in distributions)
    winner_fids = {d["fid"] for d in distributions}
    others = [
        t for t in tickets
        if t.get("ticket_range_start") is not None and t["fid"] not in winner_fids
    ]
    consolation = (final_pool - distributed) // len(others) if others else 0
    if consolation > 0:
        for ticket in others:
            if _pay(ticket["fid"], consolation, week_id, "lottery_consolation"):
                push_item(WEEKLY_POOLS, {"week_id": week_id}, "paid_consolations", {"fid": ticket["fid"], "amount": consolation})
            update_document(LOTTERY_TICKETS, ticket["id"], {"won": False, "consolation_amount": consolation})

    update_document(WEEKLY_POOLS, {"week_id": week_id}, {
        "draw_completed": True,
        "draw_at": now,
        "winners": distributions,
        "consolation_amount": consolation,
        "total_distributed": distributed + consolation * len(others),
        "status": "completed",
    })
    logger.info("lottery draw week=%s winners=%s distributed=%s", week_id, len(distributions), distributed)

    return {
        "success": True,
        "week_id": week_id,
        "winners": distributions,
        "consolation": {"per_person": consolation, "recipients": len(others)},
        "verification": {"seed": seed, "total_tickets": total_tickets},
    }
