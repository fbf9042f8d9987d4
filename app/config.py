import os

DATABASE_URL = os.getenv("DATABASE_URL")

CHARGE_SERVICE_URL = os.getenv("CHARGE_SERVICE_URL")
CHARGE_TIMEOUT_SECONDS = float(os.getenv("CHARGE_TIMEOUT_SECONDS", "5"))

# Pricing, in yen
BASE_FEE = int(os.getenv("BASE_FEE", "500"))
INCLUDED_SECONDS = int(os.getenv("INCLUDED_SECONDS", "3600"))
PER_MINUTE_RATE = int(os.getenv("PER_MINUTE_RATE", "8"))
DAILY_CAP = int(os.getenv("DAILY_CAP", "2000"))
MIN_SESSION_SECONDS = int(os.getenv("MIN_SESSION_SECONDS", "900"))

CREATE_TABLES = os.getenv("CREATE_TABLES", "1") == "1"
SEED_MENU = os.getenv("SEED_MENU", "1") == "1"

PORT = int(os.getenv("PORT", "8000"))
