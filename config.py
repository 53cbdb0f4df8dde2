"""
Runtime configuration

All settings come from environment variables (a local .env file is loaded first).
Secrets left unset disable the routes they protect.
"""

import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# x-admin-secret header: coin grants, bulk question import
ADMIN_SECRET = os.getenv("ADMIN_SECRET")
# x-admin-key header: Bet Mode question admin, QT deposits
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")
# Authorization: Bearer <CRON_SECRET>
CRON_SECRET = os.getenv("CRON_SECRET")

ENFORCE_DAILY_SPIN = os.getenv("ENFORCE_DAILY_SPIN", "1") == "1"

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))
