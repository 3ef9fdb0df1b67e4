# clinic_billing/core/config.py
import os
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _env_decimal(name: str) -> Optional[Decimal]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    return Decimal(raw)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Clinic Billing")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    CLINIC_NAME: str = os.getenv("CLINIC_NAME", "DentalVerse Elite")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "clinic_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "clinic_billing")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins when set (sqlite for local runs / tests)
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    DB_CREATE_ALL: bool = _env_bool("DB_CREATE_ALL", "true")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "2440"))

    # ---------- Billing policy ----------
    # due date offsets in days, per invoice kind
    BILLING_DUE_DAYS_CHECKUP: int = int(
        os.getenv("BILLING_DUE_DAYS_CHECKUP", "7"))
    BILLING_DUE_DAYS_PROCEDURE: int = int(
        os.getenv("BILLING_DUE_DAYS_PROCEDURE", "30"))
    BILLING_DUE_DAYS_LAB: int = int(os.getenv("BILLING_DUE_DAYS_LAB", "15"))
    BILLING_DUE_DAYS_PRESCRIPTION: int = int(
        os.getenv("BILLING_DUE_DAYS_PRESCRIPTION", "7"))
    BILLING_DUE_DAYS_GENERIC: int = int(
        os.getenv("BILLING_DUE_DAYS_GENERIC", "30"))

    # fallback fee when a source record carries no cost (unset = none)
    BILLING_DEFAULT_FEE_CHECKUP: Optional[Decimal] = _env_decimal(
        "BILLING_DEFAULT_FEE_CHECKUP")
    BILLING_DEFAULT_FEE_PROCEDURE: Optional[Decimal] = _env_decimal(
        "BILLING_DEFAULT_FEE_PROCEDURE")
    BILLING_DEFAULT_FEE_LAB: Optional[Decimal] = _env_decimal(
        "BILLING_DEFAULT_FEE_LAB")
    BILLING_DEFAULT_FEE_PRESCRIPTION: Optional[Decimal] = _env_decimal(
        "BILLING_DEFAULT_FEE_PRESCRIPTION")

    BILLING_ADVANCE_PAYMENT_PERCENTAGE: Decimal = Decimal(
        os.getenv("BILLING_ADVANCE_PAYMENT_PERCENTAGE", "25"))

    def due_days(self) -> Dict[str, int]:
        return {
            "checkup": self.BILLING_DUE_DAYS_CHECKUP,
            "procedure": self.BILLING_DUE_DAYS_PROCEDURE,
            "lab": self.BILLING_DUE_DAYS_LAB,
            "prescription": self.BILLING_DUE_DAYS_PRESCRIPTION,
            "generic": self.BILLING_DUE_DAYS_GENERIC,
        }

    def default_fees(self) -> Dict[str, Optional[Decimal]]:
        return {
            "checkup": self.BILLING_DEFAULT_FEE_CHECKUP,
            "procedure": self.BILLING_DEFAULT_FEE_PROCEDURE,
            "lab": self.BILLING_DEFAULT_FEE_LAB,
            "prescription": self.BILLING_DEFAULT_FEE_PRESCRIPTION,
        }


settings = Settings()
