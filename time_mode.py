"""Time Mode: a paid 45 second sprint; results go to the TIME_MODE leaderboard."""

import logging
from typing import Optional

from database import TIME_ATTEMPTS, create_document, now_utc
from ledger import STARTING_BALANCE, debit
from leaderboard import record_mode_entry
from schemas import TimeAttempt

logger = logging.getLogger(__name__)

ENTRY_COST = 10
DURATION_SEC = 45


def start(fid: int) -> dict:
    now = now_utc()
    session_id = f"time_{fid}_{int(now.timestamp() * 1000)}"
    account = debit(fid, ENTRY_COST, "time_entry", ref_id=session_id, seed_balance=STARTING_BALANCE)
    return {
        "success": True,
        "session_id": session_id,
        "balance": account.get("balance", 0),
        "duration_sec": DURATION_SEC,
    }


def submit(
    fid: int,
    correct_count: int,
    total_answered: int,
    duration_sec: Optional[int] = None,
    avg_answer_time_sec: Optional[float] = None,
    username: str = "",
    display_name: Optional[str] = None,
    pfp_url: Optional[str] = None,
) -> dict:
    duration = duration_sec or DURATION_SEC
    accuracy = correct_count / total_answered if total_answered > 0 else 0.0
    if not avg_answer_time_sec:
        avg_answer_time_sec = duration / total_answered if total_answered > 0 else 0.0

    now = now_utc()
    create_document(TIME_ATTEMPTS, TimeAttempt(
        fid=fid,
        correct_count=correct_count,
        total_answered=total_answered,
        accuracy=accuracy,
        duration_sec=duration,
        avg_answer_time_sec=avg_answer_time_sec,
    ))
    record_mode_entry(
        fid,
        "TIME_MODE",
        score=correct_count,
        time_in_seconds=duration,
        username=username,
        display_name=display_name,
        pfp_url=pfp_url,
        completed_at=now,
    )
    logger.info("time mode fid=%s correct=%s/%s", fid, correct_count, total_answered)
    return {"success": True, "accuracy": accuracy}
