"""
Coin ledger

Every balance change is one atomic document update followed by a row in the
transaction log. Spends put the balance check inside the update filter.
"""

import logging
import random
from datetime import timedelta
from typing import Optional

from fastapi import HTTPException

import config
from database import (
    CURRENCY_ACCOUNTS,
    CURRENCY_TXNS,
    create_document,
    find_one,
    update_document,
    increment_field,
    now_utc,
)
from schemas import CurrencyAccount, CurrencyTxn

logger = logging.getLogger(__name__)

DAILY_BASE_GRANT = 50
STARTING_BALANCE = 50
DEFAULT_ADMIN_GRANT = 500

TXN_REASONS = [
    "time_entry",
    "challenge_entry",
    "win_reward",
    "daily_claim",
    "spin_wheel",
    "admin_adjust",
    "other",
]

SPIN_OPTIONS = [
    {"id": "0_coins", "coins": 0, "probability": 0.20, "label": "0 Coins", "is_token": False},
    {"id": "5_coins", "coins": 5, "probability": 0.25, "label": "5 Coins", "is_token": False},
    {"id": "10_coins", "coins": 10, "probability": 0.20, "label": "10 Coins", "is_token": False},
    {"id": "15_coins", "coins": 15, "probability": 0.15, "label": "15 Coins", "is_token": False},
    {"id": "25_coins", "coins": 25, "probability": 0.10, "label": "25 Coins", "is_token": False},
    {"id": "qt_token", "coins": 0, "probability": 0.10, "label": "10k $QT Token", "is_token": True},
]


def utc_day(moment) -> str:
    return moment.strftime("%Y-%m-%d")


def ensure_account(fid: int, starting_balance: int = 0) -> dict:
    """Create the account if it does not exist yet; existing balances are untouched."""
    fresh = CurrencyAccount(fid=fid, balance=starting_balance)
    return update_document(
        CURRENCY_ACCOUNTS,
        {"fid": fid},
        {},
        upsert=True,
        on_insert=fresh.model_dump(exclude_none=True, exclude={"fid"}),
    )


def peek_balance(fid: int) -> int:
    account = find_one(CURRENCY_ACCOUNTS, {"fid": fid})
    return account.get("balance", 0) if account else 0


def get_balance(fid: int, now=None) -> dict:
    """Balance lookup that also hands out the once-per-UTC-day base grant."""
    now = now or now_utc()
    today = utc_day(now)
    account = ensure_account(fid)

    # The day marker sits in the filter, so concurrent lookups grant at most once.
    granted = increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": fid, "last_daily_base_day": {"$ne": today}},
        {"balance": DAILY_BASE_GRANT},
        set_dict={"last_daily_base_day": today, "last_daily_base_at": now},
    )
    if granted:
        logger.info("daily base grant fid=%s balance=%s", fid, granted["balance"])
        create_document(CURRENCY_TXNS, CurrencyTxn(fid=fid, amount=DAILY_BASE_GRANT, reason="daily_claim"))
        account = granted
    return {"fid": fid, "balance": account.get("balance", 0)}


def credit(fid: int, amount: int, reason: str, ref_id: Optional[str] = None) -> dict:
    updated = increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": fid},
        {"balance": amount},
        upsert=True,
        on_insert={"daily_streak_day": 0},
    )
    create_document(CURRENCY_TXNS, CurrencyTxn(fid=fid, amount=amount, reason=reason, ref_id=ref_id))
    logger.info("credit fid=%s amount=%s reason=%s balance=%s", fid, amount, reason, updated["balance"])
    return updated


def debit(fid: int, amount: int, reason: str, ref_id: Optional[str] = None, seed_balance: Optional[int] = None) -> dict:
    if amount <= 0:
        raise HTTPException(400, "Amount must be positive")
    if seed_balance is not None:
        ensure_account(fid, seed_balance)
    updated = increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": fid, "balance": {"$gte": amount}},
        {"balance": -amount},
    )
    if not updated:
        logger.warning("insufficient balance fid=%s amount=%s reason=%s", fid, amount, reason)
        raise HTTPException(400, "Insufficient balance")
    create_document(CURRENCY_TXNS, CurrencyTxn(fid=fid, amount=-amount, reason=reason, ref_id=ref_id))
    logger.info("debit fid=%s amount=%s reason=%s balance=%s", fid, amount, reason, updated["balance"])
    return updated


def admin_grant(fid: int, amount: int = DEFAULT_ADMIN_GRANT, reason: Optional[str] = None) -> dict:
    if reason not in TXN_REASONS:
        reason = "admin_adjust"
    updated = credit(fid, amount, reason)
    return {"fid": fid, "balance": updated.get("balance", amount)}


def pick_spin(rng=random) -> dict:
    roll = rng.random()
    cumulative = 0.0
    for option in SPIN_OPTIONS:
        cumulative += option["probability"]
        if roll <= cumulative:
            return option
    return SPIN_OPTIONS[0]


def spin_wheel(fid: int, rng=random, now=None) -> dict:
    """Daily claim: one spin per UTC day, tracking a consecutive-day streak."""
    now = now or now_utc()
    today = utc_day(now)
    yesterday = utc_day(now - timedelta(days=1))
    account = ensure_account(fid)

    last_day = account.get("last_spin_day")
    if config.ENFORCE_DAILY_SPIN and last_day == today:
        return {"success": True, "balance": account.get("balance", 0), "already_spun": True}

    streak = account.get("daily_streak_day", 0)
    if last_day == yesterday:
        streak += 1
    elif last_day != today:
        streak = 1

    query = {"fid": fid}
    if config.ENFORCE_DAILY_SPIN:
        # Only the request that still sees the old marker gets to spin.
        query["last_spin_day"] = last_day
    claimed = update_document(
        CURRENCY_ACCOUNTS,
        query,
        {"last_spin_day": today, "last_spin_at": now, "daily_streak_day": streak},
    )
    if not claimed:
        fresh = find_one(CURRENCY_ACCOUNTS, {"fid": fid}) or {}
        return {"success": True, "balance": fresh.get("balance", 0), "already_spun": True}

    option = pick_spin(rng)
    balance = claimed.get("balance", 0)
    if not option["is_token"] and option["coins"] > 0:
        balance = credit(fid, option["coins"], "spin_wheel")["balance"]
    logger.info("spin fid=%s result=%s streak=%s", fid, option["id"], streak)

    return {
        "success": True,
        "balance": balance,
        "daily_streak_day": streak,
        "spin_result": {
            "id": option["id"],
            "coins": option["coins"],
            "label": option["label"],
            "is_token": option["is_token"],
        },
    }
