import os
import logging
from decimal import Decimal

from dotenv import load_dotenv

# -------------------------------
# Load environment variables
# -------------------------------
load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")
POOL_MAX = int(os.getenv("POOL_MAX", "10"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CURRENCY = os.getenv("CURRENCY", "USD").upper()
PAYOUT_TAX_RATE = Decimal(os.getenv("PAYOUT_TAX_RATE", "0"))

AVG_SPEED_KMH = float(os.getenv("AVG_SPEED_KMH", "25"))
ETA_FALLBACK_MINUTES = int(os.getenv("ETA_FALLBACK_MINUTES", "10"))

# -------------------------------
# Logging setup
# -------------------------------
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
)
