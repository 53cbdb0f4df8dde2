"""
Head-to-head challenges.

Both players pay ENTRY_COST. The challenger pays on create, the opponent on
accept; the winner takes WIN_REWARD. State moves
pending -> accepted -> completed | tied, or pending -> expired.
Each transition is a conditional update on the current status so that two
racing requests cannot both perform it.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import HTTPException

from database import (
    CHALLENGES,
    QUESTIONS,
    create_document,
    find_one,
    update_document,
    sample,
    as_utc,
    now_utc,
)
from ledger import credit, debit
from leaderboard import record_mode_entry
from schemas import Challenge, ChallengeResult

logger = logging.getLogger(__name__)

ENTRY_COST = 10
WIN_REWARD = 20
DURATION_SEC = 120
QUESTION_COUNT = 10
EXPIRES_AFTER = timedelta(hours=24)


def _profile(username: str = "", display_name: Optional[str] = None, pfp_url: Optional[str] = None) -> dict:
    return {k: v for k, v in {"username": username or "", "display_name": display_name, "pfp_url": pfp_url}.items() if v is not None}


def _load(challenge_id: str) -> dict:
    ch = find_one(CHALLENGES, {"challenge_id": challenge_id})
    if not ch:
        raise HTTPException(404, "Challenge not found")
    return ch


def decide_winner(challenger: dict, opponent: dict) -> str:
    """More correct answers, then higher accuracy, then the faster run. Otherwise a tie."""
    if challenger["correct"] != opponent["correct"]:
        return "challenger" if challenger["correct"] > opponent["correct"] else "opponent"
    if challenger["accuracy"] != opponent["accuracy"]:
        return "challenger" if challenger["accuracy"] > opponent["accuracy"] else "opponent"
    if challenger["duration_sec"] != opponent["duration_sec"]:
        return "challenger" if challenger["duration_sec"] < opponent["duration_sec"] else "opponent"
    return "tie"


def create(fid: int, username: str = "", display_name: Optional[str] = None, pfp_url: Optional[str] = None) -> dict:
    now = now_utc()
    challenge_id = f"ch_{fid}_{int(now.timestamp() * 1000)}"
    debit(fid, ENTRY_COST, "challenge_entry", ref_id=challenge_id)

    questions = sample(QUESTIONS, {"is_active": True}, QUESTION_COUNT)
    challenge = Challenge(
        challenge_id=challenge_id,
        challenger_fid=fid,
        expires_at=now + EXPIRES_AFTER,
        duration_sec=DURATION_SEC,
        questions=questions,
    )
    doc = challenge.model_dump(exclude_none=True)
    doc["challenger_profile"] = _profile(username, display_name, pfp_url)
    create_document(CHALLENGES, doc)
    logger.info("challenge created id=%s fid=%s", challenge_id, fid)
    return {"success": True, "challenge_id": challenge_id, "duration_sec": DURATION_SEC}


def _expire(ch: dict) -> None:
    expired = update_document(
        CHALLENGES,
        {"challenge_id": ch["challenge_id"], "status": "pending"},
        {"status": "expired"},
    )
    if expired:
        # nobody played against the challenger: give the entry back once
        credit(ch["challenger_fid"], ENTRY_COST, "challenge_entry", ref_id=ch["challenge_id"])
        logger.info("challenge expired id=%s", ch["challenge_id"])


def accept(fid: int, challenge_id: str, username: str = "", display_name: Optional[str] = None, pfp_url: Optional[str] = None) -> dict:
    ch = _load(challenge_id)
    if ch.get("status") != "pending":
        raise HTTPException(400, "Challenge not available")
    if ch["challenger_fid"] == fid:
        raise HTTPException(400, "Cannot accept your own challenge")
    expires_at = as_utc(ch.get("expires_at"))
    if expires_at and expires_at <= now_utc():
        _expire(ch)
        raise HTTPException(400, "Challenge expired")

    debit(fid, ENTRY_COST, "challenge_entry", ref_id=challenge_id)
    bound = update_document(
        CHALLENGES,
        {"challenge_id": challenge_id, "status": "pending"},
        {"status": "accepted", "opponent_fid": fid, "opponent_profile": _profile(username, display_name, pfp_url)},
    )
    if not bound:
        credit(fid, ENTRY_COST, "challenge_entry", ref_id=challenge_id)
        logger.warning("challenge %s taken before fid=%s could accept; entry refunded", challenge_id, fid)
        raise HTTPException(409, "Challenge already accepted")
    logger.info("challenge accepted id=%s opponent=%s", challenge_id, fid)
    return {"success": True}


def submit(fid: int, challenge_id: str, correct: int, total: int, duration_sec: int) -> dict:
    ch = _load(challenge_id)
    if ch.get("status") not in ("pending", "accepted"):
        raise HTTPException(400, "Challenge not open")
    if fid == ch["challenger_fid"]:
        side = "challenger"
    elif fid == ch.get("opponent_fid"):
        side = "opponent"
    else:
        raise HTTPException(403, "Not in challenge")

    result = ChallengeResult(
        correct=correct,
        total=total,
        duration_sec=duration_sec,
        accuracy=correct / total if total > 0 else 0.0,
    )
    fresh = update_document(CHALLENGES, {"challenge_id": challenge_id, side: None}, {side: result.model_dump()})
    if not fresh:
        raise HTTPException(400, "Result already submitted")

    if fresh.get("challenger") and fresh.get("opponent"):
        _resolve(fresh)
    return {"success": True}


def _resolve(ch: dict) -> None:
    c, o = ch["challenger"], ch["opponent"]
    outcome = decide_winner(c, o)
    winner_fid = None
    if outcome == "challenger":
        winner_fid = ch["challenger_fid"]
    elif outcome == "opponent":
        winner_fid = ch["opponent_fid"]

    update = {"status": "tied"} if winner_fid is None else {"status": "completed", "winner_fid": winner_fid}
    settled = update_document(CHALLENGES, {"challenge_id": ch["challenge_id"], "status": "accepted"}, update)
    if not settled:
        return
    if winner_fid is not None:
        credit(winner_fid, WIN_REWARD, "win_reward", ref_id=ch["challenge_id"])
    logger.info("challenge resolved id=%s outcome=%s", ch["challenge_id"], outcome)

    now = now_utc()
    for side_fid, result, profile in (
        (ch["challenger_fid"], c, ch.get("challenger_profile") or {}),
        (ch["opponent_fid"], o, ch.get("opponent_profile") or {}),
    ):
        record_mode_entry(
            side_fid,
            "CHALLENGE",
            score=result["correct"],
            time_in_seconds=result["duration_sec"],
            username=profile.get("username", ""),
            display_name=profile.get("display_name"),
            pfp_url=profile.get("pfp_url"),
            completed_at=now,
        )


def get(challenge_id: str) -> dict:
    ch = _load(challenge_id)
    ch.pop("id", None)
    return {"challenge": ch}
