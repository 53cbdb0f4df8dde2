import logging
from typing import Annotated, Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
import database
import bet_mode
import challenges
import leaderboard
import ledger
import lottery
import questions
import schedule
import time_mode
from database import DatabaseUnavailable
from schemas import LeaderboardMode

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="QT Trivia API", version="2.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DatabaseUnavailable)
def database_unavailable(request: Request, exc: DatabaseUnavailable):
    logger.error("database unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def _require_admin_secret(provided: Optional[str]):
    if not config.ADMIN_SECRET or provided != config.ADMIN_SECRET:
        raise HTTPException(401, "Unauthorized")


def _require_admin_key(provided: Optional[str]):
    if not config.ADMIN_API_KEY or provided != config.ADMIN_API_KEY:
        raise HTTPException(401, "Unauthorized")


def _require_cron(authorization: Optional[str]):
    if not config.CRON_SECRET or authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(401, "Unauthorized")


@app.get("/")
def root():
    return {"name": "QT Trivia", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": config.DATABASE_NAME or "❌ Not Set",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["collections"] = database.db.list_collection_names()[:20]
    except Exception as e:
        logger.exception("database check failed")
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# -------- Currency --------
Fid = Annotated[int, Field(gt=0, description="Farcaster id")]


class SpendPayload(BaseModel):
    fid: Fid
    amount: int
    reason: Optional[str] = None
    ref_id: Optional[str] = None


class FidPayload(BaseModel):
    fid: Fid


class GrantPayload(BaseModel):
    fid: Fid
    amount: int = ledger.DEFAULT_ADMIN_GRANT
    reason: Optional[str] = None


@app.get("/currency/balance")
def currency_balance(fid: int = Query(..., gt=0)):
    return ledger.get_balance(fid)


@app.post("/currency/spend")
def currency_spend(payload: SpendPayload):
    if payload.amount <= 0:
        raise HTTPException(400, "fid and positive amount required")
    reason = payload.reason if payload.reason in ledger.TXN_REASONS else "other"
    account = ledger.debit(
        payload.fid, payload.amount, reason, ref_id=payload.ref_id, seed_balance=ledger.STARTING_BALANCE
    )
    return {"success": True, "balance": account["balance"]}


@app.post("/currency/claim-daily")
def currency_claim_daily(payload: FidPayload):
    return ledger.spin_wheel(payload.fid)


@app.get("/coins")
def coins_balance(fid: int = Query(..., gt=0)):
    return {"fid": fid, "balance": ledger.peek_balance(fid)}


@app.post("/coins")
def coins_grant(payload: GrantPayload, x_admin_secret: Optional[str] = Header(None)):
    _require_admin_secret(x_admin_secret)
    return ledger.admin_grant(payload.fid, payload.amount, payload.reason)


# -------- Questions --------
class BulkQuestionsPayload(BaseModel):
    topic_key: Optional[str] = None
    questions: List[Dict[str, Any]] = []


class SeedQuestionsPayload(BaseModel):
    questions: Optional[List[Dict[str, Any]]] = None


@app.get("/questions/random")
def questions_random(topic: Optional[str] = None, limit: int = 10):
    return {"questions": questions.random_questions(topic, limit)}


@app.post("/questions/bulk")
def questions_bulk(payload: BulkQuestionsPayload, x_admin_secret: Optional[str] = Header(None)):
    _require_admin_secret(x_admin_secret)
    inserted = questions.bulk_insert(payload.topic_key, payload.questions)
    return {"success": True, "inserted_count": inserted}


@app.post("/admin/questions/seed")
def admin_questions_seed(payload: Optional[SeedQuestionsPayload] = None, x_admin_key: Optional[str] = Header(None)):
    _require_admin_key(x_admin_key)
    inserted = questions.seed_bet_questions(payload.questions if payload else None)
    return {"success": True, "inserted": inserted, "message": "Questions seeded successfully"}


@app.get("/admin/questions/list")
def admin_questions_list(x_admin_key: Optional[str] = Header(None)):
    _require_admin_key(x_admin_key)
    items = questions.list_bet_questions()
    return {"success": True, "count": len(items), "questions": items}


@app.get("/admin/questions/check")
def admin_questions_check():
    return questions.bet_question_coverage()


# -------- Leaderboard & weekly quiz --------
class LeaderboardPayload(BaseModel):
    fid: Optional[int] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    score: Optional[int] = None
    time: Optional[str] = None
    time_in_seconds: Optional[int] = Field(None, ge=0)
    quiz_id: Optional[str] = None


@app.get("/leaderboard")
def leaderboard_list(mode: Optional[LeaderboardMode] = None, quiz_id: Optional[str] = None):
    ranked = leaderboard.list_ranked(mode, quiz_id)
    return {
        "leaderboard": ranked,
        "total_participants": len(ranked),
        "last_updated": database.now_utc().isoformat(),
    }


@app.post("/leaderboard")
def leaderboard_submit(payload: LeaderboardPayload):
    if not payload.fid or not payload.username or payload.score is None:
        raise HTTPException(400, "Missing required fields: fid, username, score")
    leaderboard.submit_entry(
        payload.fid,
        payload.username,
        payload.score,
        display_name=payload.display_name,
        pfp_url=payload.pfp_url,
        time=payload.time,
        time_in_seconds=payload.time_in_seconds,
        quiz_id=payload.quiz_id,
    )
    ranked = leaderboard.list_ranked("CLASSIC", payload.quiz_id)
    return {
        "success": True,
        "leaderboard": ranked,
        "total_participants": len(ranked),
        "last_updated": database.now_utc().isoformat(),
    }


@app.get("/leaderboard/check")
def leaderboard_check(fid: int = Query(..., gt=0), quiz_id: str = Query(..., min_length=1)):
    return leaderboard.check_completion(fid, quiz_id)


@app.get("/leaderboard/winners")
def leaderboard_winners(quiz_id: str = Query(..., min_length=1), mode: LeaderboardMode = "CLASSIC"):
    return leaderboard.winners(quiz_id, mode)


@app.get("/quiz/schedule")
def quiz_schedule():
    return schedule.current_window()


# -------- Time mode --------
class TimeSubmitPayload(BaseModel):
    fid: Fid
    correct_count: int = Field(0, ge=0)
    total_answered: int = Field(0, ge=0)
    duration_sec: Optional[int] = Field(None, gt=0)
    avg_answer_time_sec: Optional[float] = None
    username: str = ""
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None


@app.post("/time/start")
def time_start(payload: FidPayload):
    return time_mode.start(payload.fid)


@app.post("/time/submit")
def time_submit(payload: TimeSubmitPayload):
    return time_mode.submit(
        payload.fid,
        payload.correct_count,
        payload.total_answered,
        duration_sec=payload.duration_sec,
        avg_answer_time_sec=payload.avg_answer_time_sec,
        username=payload.username,
        display_name=payload.display_name,
        pfp_url=payload.pfp_url,
    )


# -------- Challenges --------
class CreateChallenge(BaseModel):
    fid: Fid
    username: str = ""
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None


class AcceptChallenge(CreateChallenge):
    challenge_id: str


class SubmitChallenge(BaseModel):
    fid: Fid
    challenge_id: str
    correct: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    duration_sec: int = Field(challenges.DURATION_SEC, ge=0)


@app.post("/challenge/create")
def challenge_create(payload: CreateChallenge):
    return challenges.create(payload.fid, payload.username, payload.display_name, payload.pfp_url)


@app.post("/challenge/accept")
def challenge_accept(payload: AcceptChallenge):
    return challenges.accept(payload.fid, payload.challenge_id, payload.username, payload.display_name, payload.pfp_url)


@app.post("/challenge/submit")
def challenge_submit(payload: SubmitChallenge):
    return challenges.submit(payload.fid, payload.challenge_id, payload.correct, payload.total, payload.duration_sec)


@app.get("/challenge/{challenge_id}")
def challenge_get(challenge_id: str):
    return challenges.get(challenge_id)


# -------- Bet mode --------
class StartBet(BaseModel):
    fid: Fid
    bet_amount: int = Field(..., gt=0)


class AnswerBet(BaseModel):
    fid: Fid
    game_id: str
    answer_index: int


class CashOutBet(BaseModel):
    fid: Fid
    game_id: str


class DepositQt(BaseModel):
    fid: Fid
    amount: int
    tx_ref: str = Field(..., min_length=1, description="Reference of the confirmed on-chain transfer")
    wallet_address: Optional[str] = None


class WithdrawQt(BaseModel):
    fid: Fid
    amount: int
    wallet_address: str


@app.post("/bet-mode/start")
def bet_start(payload: StartBet):
    return bet_mode.start(payload.fid, payload.bet_amount)


@app.get("/bet-mode/game")
def bet_game(game_id: str, fid: int = Query(..., gt=0)):
    return bet_mode.current(fid, game_id)


@app.post("/bet-mode/answer")
def bet_answer(payload: AnswerBet):
    return bet_mode.answer(payload.fid, payload.game_id, payload.answer_index)


@app.post("/bet-mode/cash-out")
def bet_cash_out(payload: CashOutBet):
    return bet_mode.cash_out(payload.fid, payload.game_id)


@app.get("/bet-mode/status")
def bet_status(fid: int = Query(..., gt=0)):
    return bet_mode.status(fid)


@app.post("/bet-mode/deposit")
def bet_deposit(payload: DepositQt, x_admin_key: Optional[str] = Header(None)):
    _require_admin_key(x_admin_key)
    return bet_mode.deposit(payload.fid, payload.amount, payload.tx_ref, payload.wallet_address)


@app.post("/bet-mode/withdraw")
def bet_withdraw(payload: WithdrawQt):
    return bet_mode.withdraw(payload.fid, payload.amount, payload.wallet_address)


# -------- Cron --------
@app.get("/cron/snapshot")
def cron_snapshot(week_id: Optional[str] = None, authorization: Optional[str] = Header(None)):
    _require_cron(authorization)
    return lottery.take_snapshot(week_id)


@app.get("/cron/lottery-draw")
def cron_lottery_draw(week_id: Optional[str] = None, authorization: Optional[str] = Header(None)):
    _require_cron(authorization)
    return lottery.draw(week_id)


# -------- Admin lottery triggers --------
@app.post("/admin/trigger-snapshot")
def admin_trigger_snapshot(week_id: Optional[str] = None, x_admin_key: Optional[str] = Header(None)):
    _require_admin_key(x_admin_key)
    logger.info("manual lottery snapshot week=%s", week_id)
    return lottery.take_snapshot(week_id)


@app.post("/admin/trigger-lottery-draw")
def admin_trigger_lottery_draw(week_id: Optional[str] = None, x_admin_key: Optional[str] = Header(None)):
    _require_admin_key(x_admin_key)
    logger.info("manual lottery draw week=%s", week_id)
    return lottery.draw(week_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
