"""
Leaderboard storage and ranking.

Entries are keyed by (fid, mode) and, for classic weekly quizzes, the quiz id.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from database import LEADERBOARD, find_one, get_documents, update_document, as_utc, now_utc
from schedule import token_reward
from schemas import LeaderboardEntry

logger = logging.getLogger(__name__)

WINNER_COUNT = 10
_KEY_FIELDS = {"fid", "mode", "quiz_id"}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def rank_entries(entries: List[dict]) -> List[dict]:
    """Higher score first; earlier completion wins a tie."""
    ordered = sorted(
        entries,
        key=lambda e: (-e.get("score", 0), as_utc(e.get("completed_at")) or _EPOCH),
    )
    return [{**entry, "rank": i + 1} for i, entry in enumerate(ordered)]


def rank_winners(entries: List[dict], count: int = WINNER_COUNT) -> List[dict]:
    """Higher score first; faster run wins a tie. Top ``count`` with their QT reward."""
    ordered = sorted(entries, key=lambda e: (-e.get("score", 0), e.get("time_in_seconds") or 0))
    return [
        {
            "rank": i + 1,
            "fid": e.get("fid"),
            "username": e.get("username"),
            "display_name": e.get("display_name"),
            "score": e.get("score"),
            "time": e.get("time"),
            "time_in_seconds": e.get("time_in_seconds"),
            "tokens": token_reward(i + 1),
            "completed_at": e.get("completed_at"),
        }
        for i, e in enumerate(ordered[:count])
    ]


def list_ranked(mode: Optional[str] = None, quiz_id: Optional[str] = None) -> List[dict]:
    query = {}
    if mode:
        query["mode"] = mode
    if quiz_id:
        query["quiz_id"] = quiz_id
    return rank_entries(get_documents(LEADERBOARD, query))


def submit_entry(
    fid: int,
    username: str,
    score: int,
    display_name: Optional[str] = None,
    pfp_url: Optional[str] = None,
    time: Optional[str] = None,
    time_in_seconds: Optional[int] = None,
    quiz_id: Optional[str] = None,
) -> dict:
    if time is None and time_in_seconds is not None:
        time = format_duration(time_in_seconds)
    entry = LeaderboardEntry(
        fid=fid,
        username=username,
        display_name=display_name,
        pfp_url=pfp_url,
        score=score,
        time=time,
        time_in_seconds=time_in_seconds,
        completed_at=now_utc(),
        quiz_id=quiz_id,
    )
    doc = update_document(
        LEADERBOARD,
        {"fid": fid, "mode": "CLASSIC", "quiz_id": quiz_id},
        entry.model_dump(exclude_none=True, exclude=_KEY_FIELDS),
        upsert=True,
    )
    logger.info("leaderboard entry fid=%s quiz=%s score=%s", fid, quiz_id, score)
    return doc


def record_mode_entry(
    fid: int,
    mode: str,
    score: int,
    time_in_seconds: int,
    username: str = "",
    display_name: Optional[str] = None,
    pfp_url: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> dict:
    """One standing entry per player for TIME_MODE and CHALLENGE; these never carry a quiz id."""
    entry = LeaderboardEntry(
        fid=fid,
        mode=mode,
        username=username or "",
        display_name=display_name,
        pfp_url=pfp_url,
        score=score,
        time=format_duration(time_in_seconds),
        time_in_seconds=time_in_seconds,
        completed_at=completed_at or now_utc(),
    )
    return update_document(
        LEADERBOARD,
        {"fid": fid, "mode": mode},
        entry.model_dump(exclude_none=True, exclude=_KEY_FIELDS),
        upsert=True,
        unset=["quiz_id"],
    )


def check_completion(fid: int, quiz_id: str) -> dict:
    existing = find_one(LEADERBOARD, {"fid": fid, "mode": "CLASSIC", "quiz_id": quiz_id})
    return {"completed": bool(existing), "exists": bool(existing), "entry": existing}


def winners(quiz_id: str, mode: str = "CLASSIC") -> dict:
    entries = get_documents(LEADERBOARD, {"mode": mode, "quiz_id": quiz_id})
    return {
        "success": True,
        "quiz_id": quiz_id,
        "mode": mode,
        "winners": rank_winners(entries),
        "total_participants": len(entries),
        "last_updated": now_utc().isoformat(),
    }
