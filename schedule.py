"""
Weekly quiz schedule

Quizzes run twice a week, Tuesday and Friday from 18:00 UTC, for 12 hours.
The top ten of each quiz share a fixed QT reward table.
"""

from datetime import datetime, timedelta

from database import now_utc

QUIZ_WEEKDAYS = (1, 4)  # Tuesday, Friday
QUIZ_START_HOUR = 18
QUIZ_DURATION = timedelta(hours=12)

TOKEN_REWARDS = {
    1: 4_000_000,
    2: 2_500_000,
    3: 1_500_000,
    4: 1_000_000,
    5: 1_000_000,
    6: 1_000_000,
    7: 1_000_000,
    8: 1_000_000,
    9: 1_000_000,
    10: 1_000_000,
}


def _start_on(day: datetime) -> datetime:
    return day.replace(hour=QUIZ_START_HOUR, minute=0, second=0, microsecond=0)


def next_quiz_start(now: datetime = None) -> datetime:
    """First quiz start strictly after ``now``."""
    now = now or now_utc()
    for offset in range(8):
        candidate = _start_on(now + timedelta(days=offset))
        if candidate.weekday() in QUIZ_WEEKDAYS and candidate > now:
            return candidate
    raise RuntimeError("no quiz day within a week")


def previous_quiz_start(now: datetime = None) -> datetime:
    now = now or now_utc()
    for offset in range(8):
        candidate = _start_on(now - timedelta(days=offset))
        if candidate.weekday() in QUIZ_WEEKDAYS and candidate <= now:
            return candidate
    raise RuntimeError("no quiz day within a week")


def quiz_end(start: datetime) -> datetime:
    return start + QUIZ_DURATION


def quiz_state(start: datetime, end: datetime, now: datetime = None) -> str:
    now = now or now_utc()
    if now < start:
        return "upcoming"
    if now < end:
        return "live"
    return "ended"


def quiz_id_for(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def format_countdown(milliseconds: int) -> str:
    if milliseconds <= 0:
        return "Starting..."
    total_seconds = milliseconds // 1000
    days, rem = divmod(total_seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m {seconds}s"
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def token_reward(rank: int) -> int:
    return TOKEN_REWARDS.get(rank, 0)


def format_tokens(amount: int) -> str:
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.1f}K"
    return str(amount)


def current_window(now: datetime = None) -> dict:
    """The live quiz window if one is running, otherwise the next one."""
    now = now or now_utc()
    start = previous_quiz_start(now)
    if quiz_end(start) <= now:
        start = next_quiz_start(now)
    end = quiz_end(start)
    state = quiz_state(start, end, now)
    target = start if state == "upcoming" else end
    return {
        "quiz_id": quiz_id_for(start),
        "state": state,
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
        "countdown": format_countdown(int((target - now).total_seconds() * 1000)),
    }
