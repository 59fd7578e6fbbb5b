import os

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./settlement.db")
ENV = os.getenv("ENV", "dev").strip().lower()
IS_DEV = ENV in {"dev", "development", "local"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _flag("SQL_ECHO")

# Opening balance of a new cashbox day: zero, or the closing of the last recorded day
CASHBOX_CARRY_FORWARD = _flag("CASHBOX_CARRY_FORWARD")

DRIVER_STATEMENT_PREFIX = os.getenv("DRIVER_STATEMENT_PREFIX", "DS").strip()
CLIENT_STATEMENT_PREFIX = os.getenv("CLIENT_STATEMENT_PREFIX", "CS").strip()
STATEMENT_ID_WIDTH = int(os.getenv("STATEMENT_ID_WIDTH", "6"))

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip()]
if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = ["*"]
