"""
Bet Mode

A ten question ladder played for QT. The stake is locked when the game starts;
each correct answer raises the payout multiplier, a wrong answer forfeits the
stake into the weekly pool (burn / lottery / platform split), and from
question 5 on the player may cash out. Question 10 cashes out automatically.

Account fields used here: qt_balance (spendable), qt_locked_balance (stakes of
running games), active_game_id (at most one running game per player), and the
lifetime counters qt_total_*.
"""

import logging
import random
import re
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from database import (
    CURRENCY_ACCOUNTS,
    BET_MODE_GAMES,
    BET_MODE_QUESTIONS,
    WEEKLY_POOLS,
    LOTTERY_TICKETS,
    QT_TRANSACTIONS,
    create_document,
    find_one,
    get_documents,
    update_document,
    increment_field,
    now_utc,
)
from schemas import BetModeGame, GameQuestion, LotteryTicket, QtTransaction, WeeklyPool

logger = logging.getLogger(__name__)

# Payout multipliers for Q1..Q10 (index 0 unused)
BET_MODE_MULTIPLIERS = [0, 1.1, 1.3, 1.6, 2.2, 3.0, 4.2, 6.5, 7.2, 8.5, 10.0]
# same table in tenths, for exact integer payouts
_MULTIPLIER_TENTHS = [0, 11, 13, 16, 22, 30, 42, 65, 72, 85, 100]

QUESTIONS_PER_GAME = 10
MIN_BET = 10_000
MAX_BET = 500_000
MIN_BALANCE_MULTIPLIER = 2
QUESTION_TIME_LIMIT = 30
MIN_CASH_OUT_QUESTION = 5

LOSS_BURN_PERCENT = 60
LOSS_LOTTERY_PERCENT = 35
LOSS_PLATFORM_PERCENT = 5

QT_PER_TICKET = 10_000
TICKETS_PER_GAME = 0.5
STREAK_3_DAY_MULTIPLIER = 1.1
STREAK_7_DAY_MULTIPLIER = 1.5

WINDOW_START_WEEKDAY = 2  # Wednesday
WINDOW_START_HOUR = 11
WINDOW_DURATION = timedelta(hours=48)
DRAW_DELAY = timedelta(hours=3)

_WALLET_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# -------- Pure rules --------

def current_week_id(now: datetime = None) -> str:
    now = now or now_utc()
    start_of_year = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    days = (now - start_of_year).days
    # Sunday-based weekday of Jan 1st, as the week numbering counts from Sunday
    jan1_weekday = (start_of_year.weekday() + 1) % 7
    week = -(-(days + jan1_weekday + 1) // 7)
    return f"{now.year}-W{week:02d}"


def window_state(now: datetime = None) -> dict:
    """The weekly window runs Wednesday 11:00 UTC for 48 hours; the lottery
    snapshot is taken at its close and the draw follows three hours later."""
    now = now or now_utc()
    days_back = (now.weekday() - WINDOW_START_WEEKDAY) % 7
    start = (now - timedelta(days=days_back)).replace(hour=WINDOW_START_HOUR, minute=0, second=0, microsecond=0)
    if start > now:
        start -= timedelta(days=7)
    if now >= start + WINDOW_DURATION:
        start += timedelta(days=7)
    end = start + WINDOW_DURATION
    snapshot_time = end
    draw_time = snapshot_time + DRAW_DELAY
    is_open = start <= now < end

    def ms(delta: timedelta) -> int:
        return max(0, int(delta.total_seconds() * 1000))

    return {
        "is_open": is_open,
        "window_start": start,
        "window_end": end,
        "snapshot_time": snapshot_time,
        "draw_time": draw_time,
        "time_until_open": None if is_open else ms(start - now),
        "time_until_close": ms(end - now) if is_open else None,
        "time_until_snapshot": ms(snapshot_time - now) if now < snapshot_time else None,
        "time_until_draw": ms(draw_time - now) if now < draw_time else None,
    }


def calculate_payout(bet_amount: int, question_number: int) -> int:
    if question_number < 1 or question_number > QUESTIONS_PER_GAME:
        raise ValueError("Question number must be between 1 and 10")
    return bet_amount * _MULTIPLIER_TENTHS[question_number] // 10


def loss_distribution(loss_amount: int) -> dict:
    return {
        "to_burn": loss_amount * LOSS_BURN_PERCENT // 100,
        "to_lottery": loss_amount * LOSS_LOTTERY_PERCENT // 100,
        "to_platform": loss_amount * LOSS_PLATFORM_PERCENT // 100,
    }


def base_tickets(total_wagered: int, games_played: int) -> dict:
    bet_based = total_wagered // QT_PER_TICKET
    game_based = games_played * TICKETS_PER_GAME
    return {
        "bet_based_tickets": bet_based,
        "game_based_tickets": game_based,
        "total_tickets": bet_based + game_based,
    }


def streak_multiplier(consecutive: int) -> float:
    if consecutive >= 7:
        return STREAK_7_DAY_MULTIPLIER
    if consecutive >= 3:
        return STREAK_3_DAY_MULTIPLIER
    return 1.0


def consecutive_days(days_played: List[str]) -> int:
    """Longest run of consecutive calendar days in a list of YYYY-MM-DD strings."""
    if not days_played:
        return 0
    days = sorted({datetime.strptime(d, "%Y-%m-%d").date() for d in days_played})
    longest = current = 1
    for prev, cur in zip(days, days[1:]):
        if (cur - prev).days == 1:
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    return longest


def format_qt(amount: int) -> str:
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.2f}M QT"
    if amount >= 1_000:
        return f"{amount / 1_000:.2f}K QT"
    return f"{amount:,} QT"


def format_time_remaining(ms: int) -> str:
    if ms <= 0:
        return "0s"
    seconds = ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def validate_bet(bet_amount: int, available: int) -> Optional[str]:
    """Error message for an unacceptable bet, None when the bet is fine."""
    if bet_amount < MIN_BET:
        return f"Minimum bet is {format_qt(MIN_BET)}"
    if bet_amount > MAX_BET:
        return f"Maximum bet is {format_qt(MAX_BET)}"
    if available < bet_amount * MIN_BALANCE_MULTIPLIER:
        return (
            f"You need at least {format_qt(bet_amount * MIN_BALANCE_MULTIPLIER)} "
            f"to bet {format_qt(bet_amount)}"
        )
    return None


# -------- Storage helpers --------

def _public_question(number: int, q: dict) -> dict:
    return {
        "question_number": number,
        "question_id": q["question_id"],
        "text": q["question_text"],
        "options": q["options"],
        "time_limit": QUESTION_TIME_LIMIT,
    }


def _active_game(fid: int, game_id: str) -> dict:
    game = find_one(BET_MODE_GAMES, {"game_id": game_id, "fid": fid, "status": "active"})
    if not game:
        raise HTTPException(404, "Game not found or not active")
    return game


def ensure_weekly_pool(week_id: str, now: datetime = None) -> dict:
    window = window_state(now)
    fresh = WeeklyPool(week_id=week_id, start_date=window["window_start"], end_date=window["window_end"])
    return update_document(
        WEEKLY_POOLS,
        {"week_id": week_id},
        {},
        upsert=True,
        on_insert=fresh.model_dump(exclude={"week_id"}),
    )


def award_tickets(fid: int, bet_amount: int, week_id: str, today: str) -> float:
    """Add one game's tickets to the player's weekly record; returns the base tickets earned."""
    earned = base_tickets(bet_amount, 1)
    current = find_one(LOTTERY_TICKETS, {"week_id": week_id, "fid": fid}) or {}

    days_played = list(current.get("days_played", []))
    if today not in days_played:
        days_played.append(today)
    streak = consecutive_days(days_played)
    multiplier = streak_multiplier(streak)

    bet_based = current.get("bet_based_tickets", 0) + earned["bet_based_tickets"]
    game_based = current.get("game_based_tickets", 0) + earned["game_based_tickets"]
    base_total = bet_based + game_based

    record = LotteryTicket(
        week_id=week_id,
        fid=fid,
        bet_based_tickets=bet_based,
        game_based_tickets=game_based,
        bonus_tickets=base_total * (multiplier - 1),
        total_tickets=base_total * multiplier,
        games_played=current.get("games_played", 0) + 1,
        total_wagered=current.get("total_wagered", 0) + bet_amount,
        consecutive_days=streak,
        days_played=days_played,
        streak_multiplier=multiplier,
    )
    update_document(
        LOTTERY_TICKETS,
        {"week_id": week_id, "fid": fid},
        record.model_dump(exclude={"week_id", "fid"}),
        upsert=True,
    )
    return earned["total_tickets"]


def _log_qt(fid: int, type_: str, amount: int, **extra) -> None:
    create_document(QT_TRANSACTIONS, QtTransaction(fid=fid, type=type_, amount=amount, **extra))


def _settle_loss(game: dict, now: datetime) -> dict:
    """Move a forfeited stake into the weekly pool. The game document must already be closed."""
    bet = game["bet_amount"]
    dist = loss_distribution(bet)
    increment_field(
        WEEKLY_POOLS,
        {"week_id": game["week_id"]},
        {
            "total_losses": bet,
            "to_burn_accumulated": dist["to_burn"],
            "lottery_pool": dist["to_lottery"],
            "platform_revenue": dist["to_platform"],
        },
    )
    increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": game["fid"]},
        {"qt_locked_balance": -bet},
        set_dict={"active_game_id": None},
    )
    award_tickets(game["fid"], bet, game["week_id"], now.strftime("%Y-%m-%d"))
    _log_qt(game["fid"], "game_loss", -bet, game_id=game["game_id"], week_id=game["week_id"])
    logger.info("bet mode loss game=%s fid=%s bet=%s", game["game_id"], game["fid"], bet)
    return dist


def forfeit(game: dict, now: datetime = None) -> bool:
    """Close a still-running game as lost. False when it was settled elsewhere first."""
    now = now or now_utc()
    closed = update_document(
        BET_MODE_GAMES,
        {"game_id": game["game_id"], "status": "active"},
        {"status": "lost", "completed_at": now, "loss_distribution": loss_distribution(game["bet_amount"])},
    )
    if not closed:
        return False
    _settle_loss(game, now)
    return True


def _settle_win(game: dict, payout: int, status: str, now: datetime, extra: dict = None) -> dict:
    closed = update_document(
        BET_MODE_GAMES,
        {"game_id": game["game_id"], "status": "active", "current_question": game["current_question"]},
        {"status": status, "completed_at": now, "final_payout": payout, **(extra or {})},
    )
    if not closed:
        raise HTTPException(409, "Game state changed, please refresh")
    bet = game["bet_amount"]
    account = increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": game["fid"]},
        {"qt_balance": payout, "qt_locked_balance": -bet, "qt_total_won": payout},
        set_dict={"active_game_id": None},
    )
    award_tickets(game["fid"], bet, game["week_id"], now.strftime("%Y-%m-%d"))
    _log_qt(game["fid"], "game_win", payout, game_id=game["game_id"], week_id=game["week_id"])
    logger.info("bet mode %s game=%s fid=%s payout=%s", status, game["game_id"], game["fid"], payout)
    return account


# -------- Game flow --------

def start(fid: int, bet_amount: int, now: datetime = None, rng=random) -> dict:
    now = now or now_utc()
    account = find_one(CURRENCY_ACCOUNTS, {"fid": fid})
    if not account:
        raise HTTPException(404, "Account not found")

    error = validate_bet(bet_amount, account.get("qt_balance", 0))
    if error:
        raise HTTPException(400, error)
    if account.get("active_game_id") or find_one(BET_MODE_GAMES, {"fid": fid, "status": "active"}):
        raise HTTPException(400, "You already have an active game")

    pool = get_documents(BET_MODE_QUESTIONS, {"is_active": True})
    if len(pool) < QUESTIONS_PER_GAME:
        raise HTTPException(500, "Not enough questions available. Please contact admin.")
    selected = rng.sample(pool, QUESTIONS_PER_GAME)

    week_id = current_week_id(now)
    game_id = f"bet_{fid}_{int(now.timestamp() * 1000)}"

    # Balance check, stake lock and the one-game-per-player rule in one update.
    locked = increment_field(
        CURRENCY_ACCOUNTS,
        {
            "fid": fid,
            "qt_balance": {"$gte": bet_amount * MIN_BALANCE_MULTIPLIER},
            "active_game_id": None,
        },
        {"qt_balance": -bet_amount, "qt_locked_balance": bet_amount, "qt_total_wagered": bet_amount},
        set_dict={"active_game_id": game_id},
    )
    if not locked:
        logger.warning("bet mode stake lock failed fid=%s bet=%s", fid, bet_amount)
        raise HTTPException(400, "Insufficient balance or game already running")

    questions = [
        GameQuestion(
            question_id=str(q["id"]),
            question_text=q["text"],
            options=q["options"],
            correct_index=q["correct_index"],
            explanation=q.get("explanation"),
        )
        for q in selected
    ]
    create_document(BET_MODE_GAMES, BetModeGame(
        game_id=game_id,
        fid=fid,
        bet_amount=bet_amount,
        questions=questions,
        started_at=now,
        week_id=week_id,
    ))
    ensure_weekly_pool(week_id, now)
    logger.info("bet mode start game=%s fid=%s bet=%s", game_id, fid, bet_amount)

    return {
        "success": True,
        "game_id": game_id,
        "bet_amount": bet_amount,
        "question": _public_question(1, questions[0].model_dump()),
    }


def current(fid: int, game_id: str) -> dict:
    game = _active_game(fid, game_id)
    number = game.get("current_question", 1)
    questions = game.get("questions", [])
    if number > len(questions):
        raise HTTPException(404, "Current question not found")
    return {
        "game": {
            "game_id": game["game_id"],
            "bet_amount": game["bet_amount"],
            "current_question": number,
            "started_at": game["started_at"],
        },
        "question": _public_question(number, questions[number - 1]),
    }


def answer(fid: int, game_id: str, answer_index: int, now: datetime = None) -> dict:
    now = now or now_utc()
    game = _active_game(fid, game_id)
    number = game["current_question"]
    questions = game["questions"]
    if number > len(questions):
        raise HTTPException(400, "Question not found")
    question = questions[number - 1]
    if question.get("user_answer") is not None:
        raise HTTPException(400, "Question already answered")

    is_correct = answer_index == question["correct_index"]
    question.update({"user_answer": answer_index, "is_correct": is_correct, "answered_at": now})
    bet = game["bet_amount"]

    if not is_correct:
        dist = loss_distribution(bet)
        closed = update_document(
            BET_MODE_GAMES,
            {"game_id": game_id, "status": "active", "current_question": number},
            {"status": "lost", "questions": questions, "completed_at": now, "loss_distribution": dist},
        )
        if not closed:
            raise HTTPException(409, "Game state changed, please refresh")
        _settle_loss(game, now)
        return {
            "success": True,
            "result": "lost",
            "correct_answer": question["correct_index"],
            "explanation": question.get("explanation") or "Better luck next time!",
            "loss_distribution": dist,
            "tickets_earned": base_tickets(bet, 1)["total_tickets"],
        }

    if number == QUESTIONS_PER_GAME:
        payout = calculate_payout(bet, number)
        _settle_win(game, payout, "won", now, extra={"questions": questions})
        return {
            "success": True,
            "result": "won",
            "question_number": number,
            "payout": payout,
            "profit": payout - bet,
            "tickets_earned": base_tickets(bet, 1)["total_tickets"],
            "next_question": None,
        }

    advanced = update_document(
        BET_MODE_GAMES,
        {"game_id": game_id, "status": "active", "current_question": number},
        {"current_question": number + 1, "questions": questions},
    )
    if not advanced:
        raise HTTPException(409, "Game state changed, please refresh")

    return {
        "success": True,
        "result": "correct",
        "question_number": number,
        "correct_answer": question["correct_index"],
        "current_payout": calculate_payout(bet, number),
        "next_payout": calculate_payout(bet, number + 1),
        "can_cash_out": number >= MIN_CASH_OUT_QUESTION,
        "next_question": _public_question(number + 1, questions[number]),
    }


def cash_out(fid: int, game_id: str, now: datetime = None) -> dict:
    """Pay out the multiplier of the last correctly answered question."""
    now = now or now_utc()
    game = _active_game(fid, game_id)
    answered = game["current_question"] - 1
    if answered < MIN_CASH_OUT_QUESTION:
        raise HTTPException(400, f"You can only cash out after answering question {MIN_CASH_OUT_QUESTION}")

    bet = game["bet_amount"]
    payout = calculate_payout(bet, answered)
    account = _settle_win(game, payout, "cashed_out", now)
    return {
        "success": True,
        "payout": payout,
        "profit": payout - bet,
        "new_balance": account.get("qt_balance", 0) if account else 0,
        "tickets_earned": base_tickets(bet, 1)["total_tickets"],
    }


# -------- QT balance movements --------

def deposit(fid: int, amount: int, tx_ref: str, wallet_address: Optional[str] = None) -> dict:
    """Record a QT deposit confirmed outside this service. tx_ref makes it idempotent."""
    if amount <= 0:
        raise HTTPException(400, "Amount must be positive")
    # the txn insert claims tx_ref through its unique index; only the winner credits
    try:
        _log_qt(fid, "deposit", amount, tx_ref=tx_ref, wallet_address=wallet_address)
    except DuplicateKeyError:
        raise HTTPException(409, "Deposit already recorded")

    set_dict = {"wallet_address": wallet_address} if wallet_address else None
    account = increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": fid},
        {"qt_balance": amount, "qt_total_deposited": amount},
        set_dict=set_dict,
        upsert=True,
        on_insert={"balance": 0, "daily_streak_day": 0},
    )
    logger.info("qt deposit fid=%s amount=%s ref=%s", fid, amount, tx_ref)
    return {"success": True, "qt_balance": account.get("qt_balance", 0)}


def withdraw(fid: int, amount: int, wallet_address: str) -> dict:
    """Debit QT and queue a pending withdrawal for the external payer."""
    if amount <= 0:
        raise HTTPException(400, "Amount must be positive")
    if not _WALLET_RE.match(wallet_address or ""):
        raise HTTPException(400, "Invalid wallet address")

    account = increment_field(
        CURRENCY_ACCOUNTS,
        {"fid": fid, "qt_balance": {"$gte": amount}},
        {"qt_balance": -amount, "qt_total_withdrawn": amount},
        set_dict={"wallet_address": wallet_address},
    )
    if not account:
        logger.warning("qt withdrawal refused fid=%s amount=%s", fid, amount)
        raise HTTPException(400, "Insufficient balance")
    _log_qt(fid, "withdrawal", -amount, wallet_address=wallet_address, status="pending")
    logger.info("qt withdrawal queued fid=%s amount=%s", fid, amount)
    return {"success": True, "qt_balance": account.get("qt_balance", 0), "status": "pending"}


def status(fid: int, now: datetime = None) -> dict:
    now = now or now_utc()
    window = window_state(now)
    week_id = current_week_id(now)

    account = find_one(CURRENCY_ACCOUNTS, {"fid": fid}) or {}
    game = find_one(BET_MODE_GAMES, {"fid": fid, "status": "active"})
    pool = find_one(WEEKLY_POOLS, {"week_id": week_id})
    tickets = get_documents(LOTTERY_TICKETS, {"week_id": week_id})
    mine = next((t for t in tickets if t.get("fid") == fid), {})

    total_tickets = sum(t.get("total_tickets", 0) for t in tickets)
    user_tickets = mine.get("total_tickets", 0)
    share = user_tickets / total_tickets * 100 if total_tickets > 0 else 0.0

    def remaining(ms):
        return format_time_remaining(ms) if ms else None

    return {
        "window": {
            "is_open": window["is_open"],
            "time_until_open": remaining(window["time_until_open"]),
            "time_until_close": remaining(window["time_until_close"]),
            "time_until_snapshot": remaining(window["time_until_snapshot"]),
            "time_until_draw": remaining(window["time_until_draw"]),
            "window_start": window["window_start"].isoformat(),
            "window_end": window["window_end"].isoformat(),
            "snapshot_time": window["snapshot_time"].isoformat(),
            "draw_time": window["draw_time"].isoformat(),
        },
        "balance": {
            "qt_balance": account.get("qt_balance", 0),
            "qt_locked_balance": account.get("qt_locked_balance", 0),
            "available_balance": account.get("qt_balance", 0),
            "total_deposited": account.get("qt_total_deposited", 0),
            "total_withdrawn": account.get("qt_total_withdrawn", 0),
            "total_wagered": account.get("qt_total_wagered", 0),
            "total_won": account.get("qt_total_won", 0),
        },
        "active_game": {
            "game_id": game["game_id"],
            "bet_amount": game["bet_amount"],
            "current_question": game["current_question"],
            "started_at": game["started_at"],
        } if game else None,
        "weekly_pool": {
            "week_id": pool["week_id"],
            "lottery_pool": pool.get("lottery_pool", 0),
            "to_burn_accumulated": pool.get("to_burn_accumulated", 0),
            "total_losses": pool.get("total_losses", 0),
            "snapshot_taken": pool.get("snapshot_taken", False),
            "draw_completed": pool.get("draw_completed", False),
            "burn_completed": pool.get("burn_completed", False),
            "total_participants": pool.get("total_participants", 0),
            "total_tickets": pool.get("total_tickets", 0),
        } if pool else None,
        "lottery": {
            "user_tickets": user_tickets,
            "total_tickets": total_tickets,
            "user_share": f"{share:.2f}",
            "week_id": week_id,
            "bet_based_tickets": mine.get("bet_based_tickets", 0),
            "game_based_tickets": mine.get("game_based_tickets", 0),
            "bonus_tickets": mine.get("bonus_tickets", 0),
            "consecutive_days": mine.get("consecutive_days", 0),
            "games_played": mine.get("games_played", 0),
            "total_wagered": mine.get("total_wagered", 0),
        },
    }
