"""
Bet Mode tests: payout and ticket rules, the ten question game flow and QT movements.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

import bet_mode
from database import BET_MODE_GAMES, CURRENCY_ACCOUNTS, LOTTERY_TICKETS, QT_TRANSACTIONS, WEEKLY_POOLS
from conftest import ADMIN_KEY, account, make_account

WALLET = "0x" + "ab" * 20


# ==================== RULES ====================

class TestPayoutRules:

    def test_payout_table(self):
        assert bet_mode.calculate_payout(10_000, 1) == 11_000
        assert bet_mode.calculate_payout(10_000, 5) == 30_000
        assert bet_mode.calculate_payout(10_000, 10) == 100_000
        assert bet_mode.calculate_payout(12_345, 3) == 19_752

    @pytest.mark.parametrize("number", [0, 11])
    def test_payout_out_of_range(self, number):
        with pytest.raises(ValueError):
            bet_mode.calculate_payout(10_000, number)

    def test_loss_split(self):
        assert bet_mode.loss_distribution(10_000) == {"to_burn": 6_000, "to_lottery": 3_500, "to_platform": 500}
        assert bet_mode.loss_distribution(33) == {"to_burn": 19, "to_lottery": 11, "to_platform": 1}

    def test_validate_bet(self):
        assert bet_mode.validate_bet(5_000, 1_000_000) == "Minimum bet is 10.00K QT"
        assert bet_mode.validate_bet(600_000, 10_000_000) == "Maximum bet is 500.00K QT"
        assert bet_mode.validate_bet(10_000, 15_000) == "You need at least 20.00K QT to bet 10.00K QT"
        assert bet_mode.validate_bet(10_000, 20_000) is None


class TestTicketRules:

    def test_base_tickets(self):
        assert bet_mode.base_tickets(25_000, 2) == {
            "bet_based_tickets": 2,
            "game_based_tickets": 1.0,
            "total_tickets": 3.0,
        }

    def test_streak_multiplier(self):
        assert bet_mode.streak_multiplier(0) == 1.0
        assert bet_mode.streak_multiplier(2) == 1.0
        assert bet_mode.streak_multiplier(3) == 1.1
        assert bet_mode.streak_multiplier(7) == 1.5

    def test_consecutive_days(self):
        assert bet_mode.consecutive_days([]) == 0
        assert bet_mode.consecutive_days(["2025-03-04"]) == 1
        days = ["2025-03-01", "2025-03-02", "2025-03-02", "2025-03-04", "2025-03-05", "2025-03-06"]
        assert bet_mode.consecutive_days(days) == 3

    def test_award_tickets_applies_streak(self, mongo):
        for day in ("2025-03-04", "2025-03-05", "2025-03-06"):
            bet_mode.award_tickets(9, 20_000, "2025-W10", day)
        record = mongo[LOTTERY_TICKETS].find_one({"fid": 9, "week_id": "2025-W10"})
        assert record["games_played"] == 3
        assert record["bet_based_tickets"] == 6
        assert record["game_based_tickets"] == 1.5
        assert record["consecutive_days"] == 3
        assert record["streak_multiplier"] == 1.1
        assert record["total_tickets"] == pytest.approx(7.5 * 1.1)


class TestCalendar:

    def test_week_id(self):
        assert bet_mode.current_week_id(datetime(2025, 1, 1, tzinfo=timezone.utc)) == "2025-W01"
        assert bet_mode.current_week_id(datetime(2025, 3, 4, 12, tzinfo=timezone.utc)) == "2025-W10"

    def test_window_open(self):
        now = datetime(2025, 3, 5, 12, 0, tzinfo=timezone.utc)
        window = bet_mode.window_state(now)
        assert window["is_open"] is True
        assert window["window_start"] == datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc)
        assert window["window_end"] == datetime(2025, 3, 7, 11, 0, tzinfo=timezone.utc)
        assert window["time_until_close"] == 47 * 3600 * 1000
        assert window["time_until_open"] is None
        assert window["draw_time"] == datetime(2025, 3, 7, 14, 0, tzinfo=timezone.utc)

    def test_window_closed_before_wednesday(self):
        window = bet_mode.window_state(datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc))
        assert window["is_open"] is False
        assert window["window_start"] == datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc)
        assert window["time_until_open"] == 23 * 3600 * 1000
        assert window["time_until_close"] is None

    def test_window_after_close_points_to_next_week(self):
        window = bet_mode.window_state(datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc))
        assert window["is_open"] is False
        assert window["window_start"] == datetime(2025, 3, 12, 11, 0, tzinfo=timezone.utc)

    def test_formatting(self):
        assert bet_mode.format_qt(999) == "999 QT"
        assert bet_mode.format_qt(10_000) == "10.00K QT"
        assert bet_mode.format_qt(1_500_000) == "1.50M QT"
        assert bet_mode.format_time_remaining(0) == "0s"
        assert bet_mode.format_time_remaining(3_661_000) == "1h 1m 1s"
        assert bet_mode.format_time_remaining(90_061_000) == "1d 1h 1m"


# ==================== GAME FLOW ====================

def start_game(client, fid=9, bet=10_000):
    response = client.post("/bet-mode/start", json={"fid": fid, "bet_amount": bet})
    assert response.status_code == 200, response.text
    return response.json()


def answer(client, game_id, index, fid=9):
    return client.post("/bet-mode/answer", json={"fid": fid, "game_id": game_id, "answer_index": index})


class TestStart:

    def test_start_locks_stake(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        data = start_game(client)
        assert data["bet_amount"] == 10_000
        question = data["question"]
        assert question["question_number"] == 1
        assert question["time_limit"] == bet_mode.QUESTION_TIME_LIMIT
        assert "correct_index" not in question

        acct = account(mongo, 9)
        assert acct["qt_balance"] == 90_000
        assert acct["qt_locked_balance"] == 10_000
        assert acct["qt_total_wagered"] == 10_000
        assert acct["active_game_id"] == data["game_id"]

        game = mongo[BET_MODE_GAMES].find_one({"game_id": data["game_id"]})
        assert len(game["questions"]) == bet_mode.QUESTIONS_PER_GAME
        assert len({q["question_id"] for q in game["questions"]}) == bet_mode.QUESTIONS_PER_GAME
        assert mongo[WEEKLY_POOLS].find_one({"week_id": game["week_id"]})["status"] == "active"

    def test_one_game_at_a_time(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        start_game(client)
        again = client.post("/bet-mode/start", json={"fid": 9, "bet_amount": 10_000})
        assert again.status_code == 400
        assert again.json()["detail"] == "You already have an active game"

    def test_unknown_account(self, client, bet_questions):
        response = client.post("/bet-mode/start", json={"fid": 404, "bet_amount": 10_000})
        assert response.status_code == 404

    def test_balance_must_cover_twice_the_bet(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=15_000)
        response = client.post("/bet-mode/start", json={"fid": 9, "bet_amount": 10_000})
        assert response.status_code == 400
        assert account(mongo, 9)["qt_balance"] == 15_000

    def test_bet_limits(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=10_000_000)
        assert client.post("/bet-mode/start", json={"fid": 9, "bet_amount": 9_999}).status_code == 400
        assert client.post("/bet-mode/start", json={"fid": 9, "bet_amount": 500_001}).status_code == 400

    def test_not_enough_questions(self, client, mongo):
        make_account(mongo, 9, qt_balance=100_000)
        response = client.post("/bet-mode/start", json={"fid": 9, "bet_amount": 10_000})
        assert response.status_code == 500
        assert account(mongo, 9)["qt_balance"] == 100_000

    @pytest.mark.parametrize("changed", [{"qt_balance": 15_000}, {"active_game_id": "bet_9_elsewhere"}])
    def test_stake_lock_rechecks_account(self, mongo, bet_questions, changed):
        make_account(mongo, 9, qt_balance=100_000)
        expected = {**account(mongo, 9), **changed}

        class ChangingRng:
            # the account changes after the pre-checks, before the stake is locked
            def sample(self, population, k):
                mongo[CURRENCY_ACCOUNTS].update_one({"fid": 9}, {"$set": changed})
                return random.sample(population, k)

        with pytest.raises(HTTPException) as exc:
            bet_mode.start(9, 10_000, rng=ChangingRng())
        assert exc.value.status_code == 400
        assert exc.value.detail == "Insufficient balance or game already running"

        acct = account(mongo, 9)
        assert acct["qt_balance"] == expected["qt_balance"]
        assert acct.get("qt_locked_balance", 0) == 0
        assert acct.get("active_game_id") == expected.get("active_game_id")
        assert mongo[BET_MODE_GAMES].count_documents({"fid": 9}) == 0


class TestPlay:

    def test_wrong_answer_forfeits_stake(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        game_id = start_game(client)["game_id"]
        response = answer(client, game_id, 0)
        assert response.status_code == 200
        data = response.json()
        assert data["result"] == "lost"
        assert data["correct_answer"] == 1
        assert data["loss_distribution"] == {"to_burn": 6_000, "to_lottery": 3_500, "to_platform": 500}
        assert data["tickets_earned"] == 1.5

        acct = account(mongo, 9)
        assert acct["qt_balance"] == 90_000
        assert acct["qt_locked_balance"] == 0
        assert acct["active_game_id"] is None

        game = mongo[BET_MODE_GAMES].find_one({"game_id": game_id})
        assert game["status"] == "lost"
        pool = mongo[WEEKLY_POOLS].find_one({"week_id": game["week_id"]})
        assert pool["total_losses"] == 10_000
        assert pool["lottery_pool"] == 3_500
        assert pool["to_burn_accumulated"] == 6_000
        assert pool["platform_revenue"] == 500
        assert mongo[LOTTERY_TICKETS].find_one({"fid": 9})["total_tickets"] == 1.5
        assert mongo[QT_TRANSACTIONS].find_one({"fid": 9, "type": "game_loss"})["amount"] == -10_000

        # the finished game is gone, a new one may start
        assert answer(client, game_id, 1).status_code == 404
        start_game(client)

    def test_cash_out_after_question_five(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        game_id = start_game(client)["game_id"]
        for number in range(1, 5):
            step = answer(client, game_id, 1).json()
            assert step["result"] == "correct"
            assert step["can_cash_out"] is False
            assert step["next_question"]["question_number"] == number + 1

        early = client.post("/bet-mode/cash-out", json={"fid": 9, "game_id": game_id})
        assert early.status_code == 400

        fifth = answer(client, game_id, 1).json()
        assert fifth["can_cash_out"] is True
        assert fifth["current_payout"] == 30_000
        assert fifth["next_payout"] == 42_000

        response = client.post("/bet-mode/cash-out", json={"fid": 9, "game_id": game_id})
        assert response.status_code == 200
        data = response.json()
        assert data["payout"] == 30_000
        assert data["profit"] == 20_000
        assert data["new_balance"] == 120_000

        acct = account(mongo, 9)
        assert acct["qt_locked_balance"] == 0
        assert acct["qt_total_won"] == 30_000
        assert acct["active_game_id"] is None
        assert mongo[BET_MODE_GAMES].find_one({"game_id": game_id})["status"] == "cashed_out"
        assert mongo[LOTTERY_TICKETS].find_one({"fid": 9})["games_played"] == 1

    def test_tenth_answer_wins_automatically(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        game_id = start_game(client)["game_id"]
        for _ in range(9):
            assert answer(client, game_id, 1).json()["result"] == "correct"
        final = answer(client, game_id, 1).json()
        assert final["result"] == "won"
        assert final["payout"] == 100_000
        assert final["profit"] == 90_000
        assert final["next_question"] is None
        assert account(mongo, 9)["qt_balance"] == 190_000
        win = mongo[QT_TRANSACTIONS].find_one({"fid": 9, "type": "game_win"})
        assert win["amount"] == 100_000

    def test_current_question(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        game_id = start_game(client)["game_id"]
        answer(client, game_id, 1)
        response = client.get("/bet-mode/game", params={"game_id": game_id, "fid": 9})
        assert response.status_code == 200
        data = response.json()
        assert data["game"]["current_question"] == 2
        assert data["question"]["question_number"] == 2
        # other players cannot look at it
        assert client.get("/bet-mode/game", params={"game_id": game_id, "fid": 10}).status_code == 404

    def test_status(self, client, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        game_id = start_game(client)["game_id"]
        data = client.get("/bet-mode/status", params={"fid": 9}).json()
        assert data["balance"]["qt_balance"] == 90_000
        assert data["balance"]["available_balance"] == 90_000
        assert data["balance"]["qt_locked_balance"] == 10_000
        assert data["active_game"]["game_id"] == game_id
        assert data["weekly_pool"]["lottery_pool"] == 0

        answer(client, game_id, 3)
        data = client.get("/bet-mode/status", params={"fid": 9}).json()
        assert data["active_game"] is None
        assert data["lottery"]["user_tickets"] == 1.5
        assert data["lottery"]["user_share"] == "100.00"
        assert data["weekly_pool"]["lottery_pool"] == 3_500


class TestForfeit:

    def test_forfeit_only_once(self, mongo, bet_questions):
        make_account(mongo, 9, qt_balance=100_000)
        now = datetime(2025, 3, 6, 12, 0, tzinfo=timezone.utc)
        game = bet_mode.start(9, 20_000, now=now)
        stored = mongo[BET_MODE_GAMES].find_one({"game_id": game["game_id"]})
        later = now + timedelta(hours=1)
        assert bet_mode.forfeit(stored, later) is True
        assert bet_mode.forfeit(stored, later) is False
        pool = mongo[WEEKLY_POOLS].find_one({"week_id": "2025-W10"})
        assert pool["total_losses"] == 20_000


# ==================== QT MOVEMENTS ====================

class TestDepositWithdraw:

    def test_deposit_requires_admin_key(self, client):
        body = {"fid": 9, "amount": 50_000, "tx_ref": "0xtx1"}
        assert client.post("/bet-mode/deposit", json=body).status_code == 401

    def test_deposit_is_idempotent(self, client, mongo):
        body = {"fid": 9, "amount": 50_000, "tx_ref": "0xtx1", "wallet_address": WALLET}
        headers = {"x-admin-key": ADMIN_KEY}
        first = client.post("/bet-mode/deposit", json=body, headers=headers)
        assert first.status_code == 200
        assert first.json()["qt_balance"] == 50_000
        again = client.post("/bet-mode/deposit", json=body, headers=headers)
        assert again.status_code == 409

        acct = account(mongo, 9)
        assert acct["qt_balance"] == 50_000
        assert acct["qt_total_deposited"] == 50_000
        assert acct["balance"] == 0
        assert acct["wallet_address"] == WALLET

    def test_withdraw(self, client, mongo):
        make_account(mongo, 9, qt_balance=50_000)
        response = client.post("/bet-mode/withdraw", json={"fid": 9, "amount": 20_000, "wallet_address": WALLET})
        assert response.status_code == 200
        assert response.json() == {"success": True, "qt_balance": 30_000, "status": "pending"}
        txn = mongo[QT_TRANSACTIONS].find_one({"fid": 9, "type": "withdrawal"})
        assert txn["amount"] == -20_000
        assert txn["status"] == "pending"

    def test_withdraw_rejections(self, client, mongo):
        make_account(mongo, 9, qt_balance=50_000)
        bad_wallet = client.post("/bet-mode/withdraw", json={"fid": 9, "amount": 1, "wallet_address": "0x123"})
        assert bad_wallet.status_code == 400
        too_much = client.post("/bet-mode/withdraw", json={"fid": 9, "amount": 50_001, "wallet_address": WALLET})
        assert too_much.status_code == 400
        assert account(mongo, 9)["qt_balance"] == 50_000

    def test_deposit_delivered_twice_credits_once(self, mongo, monkeypatch):
        real_increment = bet_mode.increment_field
        second = []

        def increment_after_second_delivery(*args, **kwargs):
            # the same deposit arrives again before the first one has credited
            if not second:
                with pytest.raises(HTTPException) as exc:
                    bet_mode.deposit(1, 1_000, "0xabc")
                second.append(exc.value.status_code)
            return real_increment(*args, **kwargs)

        monkeypatch.setattr(bet_mode, "increment_field", increment_after_second_delivery)
        assert bet_mode.deposit(1, 1_000, "0xabc")["qt_balance"] == 1_000
        assert second == [409]
        assert account(mongo, 1)["qt_balance"] == 1_000
        assert mongo[QT_TRANSACTIONS].count_documents({"tx_ref": "0xabc"}) == 1
