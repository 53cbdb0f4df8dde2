"""
Question bank: random sampling for the classic/challenge pools and admin tooling
for the Bet Mode question set.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import HTTPException

from database import (
    QUESTIONS,
    BET_MODE_QUESTIONS,
    create_documents,
    get_documents,
    update_document,
    sample,
    now_utc,
)
from schemas import BetModeQuestion, Question

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")

# Minimum Bet Mode question coverage before a game can be dealt
NEEDS_TOTAL = 10
NEEDS_EASY_MEDIUM = 4
NEEDS_HARD = 3
NEEDS_EXPERT = 3

SAMPLE_BET_QUESTIONS = [
    {
        "id": "q1",
        "text": "What is the capital of France?",
        "options": ["London", "Berlin", "Paris", "Madrid"],
        "correct_index": 2,
        "difficulty": "easy",
        "explanation": "Paris is the capital and largest city of France.",
        "is_active": True,
    },
    {
        "id": "q2",
        "text": "Which planet is known as the Red Planet?",
        "options": ["Venus", "Mars", "Jupiter", "Saturn"],
        "correct_index": 1,
        "difficulty": "easy",
        "explanation": "Mars is called the Red Planet due to iron oxide on its surface.",
        "is_active": True,
    },
]


def random_questions(topic: Optional[str] = None, limit: int = 10) -> List[dict]:
    limit = max(1, min(100, limit))
    match = {"is_active": True}
    if topic:
        match["topic_key"] = topic
    return sample(QUESTIONS, match, limit)


def _correct_index(raw: dict):
    for key in ("correct_index", "correctIndex", "correct"):
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def normalize_bulk(topic_key: Optional[str], items: list) -> List[dict]:
    """Coerce loosely shaped question payloads into stored question documents.

    Accepts the legacy aliases (``question`` for ``text``, ``correctIndex`` /
    ``correct`` for ``correct_index``). Raises 400 on the first invalid item so
    that a batch is inserted entirely or not at all.
    """
    if not isinstance(items, list) or not items:
        raise HTTPException(400, "questions array required")

    base = now_utc()
    docs = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise HTTPException(400, "Each question must be an object")
        options = raw.get("options")
        doc = {
            "topic_key": str(raw.get("topic_key") or topic_key or "general"),
            "type": raw.get("type") or "mcq",
            "text": str(raw.get("text") or raw.get("question") or ""),
            "options": [str(o) for o in options] if isinstance(options, list) else None,
            "correct_index": _correct_index(raw),
            "media_url": str(raw["media_url"]) if raw.get("media_url") else None,
            "explanation": str(raw["explanation"]) if raw.get("explanation") else None,
            "difficulty": raw.get("difficulty") if raw.get("difficulty") in DIFFICULTIES else None,
            "is_active": raw.get("is_active") is not False,
            # keeps the batch order stable when sorting by created_at
            "created_at": base + timedelta(milliseconds=idx),
        }

        if not doc["text"] or not doc["topic_key"]:
            raise HTTPException(400, "Each question requires text and topic_key")
        if doc["type"] not in ("mcq", "truefalse", "open"):
            raise HTTPException(400, f"Unknown question type: {doc['type']}")
        if doc["type"] == "mcq":
            if not doc["options"] or len(doc["options"]) < 2:
                raise HTTPException(400, "MCQ requires options (>=2)")
            ci = doc["correct_index"]
            if ci is None or ci < 0 or ci >= len(doc["options"]):
                raise HTTPException(400, "MCQ requires valid correct_index")

        docs.append(Question(**doc).model_dump(exclude_none=True))
    return docs


def bulk_insert(topic_key: Optional[str], items: list) -> int:
    docs = normalize_bulk(topic_key, items)
    inserted = create_documents(QUESTIONS, docs)
    logger.info("inserted %s questions", inserted)
    return inserted


def seed_bet_questions(items: Optional[list] = None) -> int:
    items = items or SAMPLE_BET_QUESTIONS
    for raw in items:
        q = BetModeQuestion(**raw)
        update_document(BET_MODE_QUESTIONS, {"id": q.id}, q.model_dump(exclude_none=True), upsert=True)
    logger.info("seeded %s bet mode questions", len(items))
    return len(items)


def list_bet_questions() -> List[dict]:
    return [
        {
            "id": q.get("id"),
            "text": q.get("text"),
            "options": q.get("options"),
            "correct_index": q.get("correct_index"),
            "difficulty": q.get("difficulty"),
            "is_active": q.get("is_active"),
        }
        for q in get_documents(BET_MODE_QUESTIONS)
    ]


def bet_question_coverage() -> dict:
    active = get_documents(BET_MODE_QUESTIONS, {"is_active": True})
    by_level = {level: 0 for level in ("easy", "medium", "hard", "expert")}
    for q in active:
        if q.get("difficulty") in by_level:
            by_level[q["difficulty"]] += 1
    easy_medium = by_level["easy"] + by_level["medium"]

    has_total = len(active) >= NEEDS_TOTAL
    has_easy_medium = easy_medium >= NEEDS_EASY_MEDIUM
    has_hard = by_level["hard"] >= NEEDS_HARD
    has_expert = by_level["expert"] >= NEEDS_EXPERT

    return {
        "success": True,
        "summary": {"total": len(active), **by_level, "easy_medium": easy_medium},
        "requirements": {
            "needs_easy_medium": NEEDS_EASY_MEDIUM,
            "needs_hard": NEEDS_HARD,
            "needs_expert": NEEDS_EXPERT,
            "needs_total": NEEDS_TOTAL,
        },
        "status": {
            "has_enough_total": has_total,
            "has_enough_easy_medium": has_easy_medium,
            "has_enough_hard": has_hard,
            "has_enough_expert": has_expert,
            "can_start_game": has_total and has_easy_medium and has_hard and has_expert,
        },
        "questions": [
            {
                "id": q.get("id"),
                "difficulty": q.get("difficulty"),
                "text": q.get("text", "")[:50] + "...",
                "is_active": q.get("is_active"),
            }
            for q in active
        ],
    }
