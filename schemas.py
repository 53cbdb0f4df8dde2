"""
QT Trivia Schemas

Each class corresponds to a MongoDB document shape. Collection names live in database.py.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Literal
from datetime import datetime

LeaderboardMode = Literal["CLASSIC", "TIME_MODE", "CHALLENGE"]


class CurrencyAccount(BaseModel):
    fid: int
    balance: int = Field(0, ge=0, description="Off-chain coin balance")
    daily_streak_day: int = 0
    last_daily_base_at: Optional[datetime] = None
    last_spin_at: Optional[datetime] = None
    # Bet Mode
    qt_balance: int = 0
    qt_locked_balance: int = 0
    qt_total_deposited: int = 0
    qt_total_withdrawn: int = 0
    qt_total_wagered: int = 0
    qt_total_won: int = 0
    wallet_address: Optional[str] = None


class CurrencyTxn(BaseModel):
    fid: int
    amount: int = Field(..., description="Signed: negative for spends")
    reason: str = Field(..., description="time_entry, challenge_entry, win_reward, daily_claim, spin_wheel, admin_adjust, other")
    ref_id: Optional[str] = None


class Question(BaseModel):
    topic_key: str = Field(..., min_length=1)
    type: Literal["mcq", "truefalse", "open"] = "mcq"
    text: str = Field(..., min_length=1)
    options: Optional[List[str]] = None
    correct_index: Optional[int] = None
    media_url: Optional[str] = None
    explanation: Optional[str] = None
    difficulty: Optional[Literal["easy", "medium", "hard"]] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class BetModeQuestion(BaseModel):
    id: str
    text: str
    options: List[str]
    correct_index: int
    difficulty: Literal["easy", "medium", "hard", "expert"] = "medium"
    explanation: Optional[str] = None
    is_active: bool = True


class ChallengeResult(BaseModel):
    correct: int
    total: int
    duration_sec: int
    accuracy: float


class Challenge(BaseModel):
    challenge_id: str
    challenger_fid: int
    opponent_fid: Optional[int] = None
    status: str = Field("pending", description="pending, accepted, completed, tied, expired")
    expires_at: datetime
    duration_sec: int = 120
    questions: List[Dict] = []
    challenger: Optional[ChallengeResult] = None
    opponent: Optional[ChallengeResult] = None
    winner_fid: Optional[int] = None


class TimeAttempt(BaseModel):
    fid: int
    correct_count: int = 0
    total_answered: int = 0
    accuracy: float = 0.0
    duration_sec: int = 45
    avg_answer_time_sec: float = 0.0


class LeaderboardEntry(BaseModel):
    fid: int
    username: str = ""
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    score: int
    time: Optional[str] = None
    time_in_seconds: Optional[int] = None
    completed_at: datetime
    mode: LeaderboardMode = "CLASSIC"
    quiz_id: Optional[str] = None


class GameQuestion(BaseModel):
    question_id: str
    question_text: str
    options: List[str]
    correct_index: int
    explanation: Optional[str] = None
    user_answer: Optional[int] = None
    is_correct: Optional[bool] = None
    answered_at: Optional[datetime] = None


class BetModeGame(BaseModel):
    game_id: str
    fid: int
    bet_amount: int
    status: str = Field("active", description="active, won, lost, cashed_out")
    current_question: int = 1
    questions: List[GameQuestion]
    started_at: datetime
    week_id: str
    completed_at: Optional[datetime] = None
    final_payout: Optional[int] = None
    loss_distribution: Optional[Dict[str, int]] = None


class WeeklyPool(BaseModel):
    week_id: str
    start_date: datetime
    end_date: datetime
    total_losses: int = 0
    to_burn_accumulated: int = 0
    lottery_pool: int = 0
    platform_revenue: int = 0
    snapshot_taken: bool = False
    draw_completed: bool = False
    burn_completed: bool = False
    status: str = Field("active", description="active, snapshot_complete, drawing, completed")
    paid_winners: List[dict] = Field([], description="Tier payouts, appended while the draw runs")
    paid_consolations: List[dict] = Field([], description="Consolation payouts, appended while the draw runs")


class LotteryTicket(BaseModel):
    week_id: str
    fid: int
    bet_based_tickets: int = 0
    game_based_tickets: float = 0
    bonus_tickets: float = 0
    total_tickets: float = 0
    games_played: int = 0
    total_wagered: int = 0
    consecutive_days: int = 0
    days_played: List[str] = []
    streak_multiplier: float = 1.0


class QtTransaction(BaseModel):
    fid: int
    type: str = Field(..., description="deposit, withdrawal, game_win, game_loss, lottery_win")
    amount: int
    game_id: Optional[str] = None
    week_id: Optional[str] = None
    tier: Optional[int] = None
    tx_ref: Optional[str] = None
    wallet_address: Optional[str] = None
    status: str = "completed"
