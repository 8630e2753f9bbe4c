# palmai_core/settings.py
from typing import List, Optional, Union, Any
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Shared tiny helper to normalize a CSV or JSON-like env into a list
def _normalize_list_like(value: Union[str, List[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if s.startswith("[") and s.endswith("]"):
        try:
            parsed = json.loads(s)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(x).strip() for x in parsed if str(x).strip()]
    return [part.strip() for part in s.split(",") if part.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- core ---
    APP_NAME: str = "PalmAI"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS envs - accept either str or list input at runtime
    CORS_ORIGINS: Optional[Union[List[str], str]] = None
    ALLOWED_ORIGINS: Optional[Union[List[str], str]] = None
    ALLOW_ORIGIN_REGEX: Optional[str] = r"^https://([a-z0-9-]+\.)?(vercel\.app|lovable\.app)$"

    # --- identity service (Supabase-style HS256 access tokens) ---
    SUPABASE_JWT_SECRET: Optional[str] = None
    JWT_ALGO: str = "HS256"
    JWT_AUDIENCE: Optional[str] = "authenticated"
    AUTH_COOKIE_NAME: str = "token"

    # Comma-separated bootstrap admins; copied into admin_users at startup
    ADMIN_EMAILS: Optional[Union[List[str], str]] = None

    DATABASE_URL: Optional[str] = None

    # --- completion API ---
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SECONDS: float = 120.0

    # --- chat quota ---
    DAILY_MESSAGE_LIMIT: int = 10
    CHAT_HISTORY_TURNS: int = 10

    # --- pricing (minor units) ---
    HOME_COUNTRY: str = "IN"
    HOME_PRICE: int = 9900
    HOME_CURRENCY: str = "INR"
    DEFAULT_PRICE: int = 199
    DEFAULT_CURRENCY: str = "USD"
    PRODUCT_NAME: str = "PalmAI - Lifetime Access"

    # --- payment providers ---
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    PAYMENT_TIMEOUT_SECONDS: float = 15.0

    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SIGNING_SECRET: Optional[str] = None

    @field_validator("CORS_ORIGINS", "ALLOWED_ORIGINS", "ADMIN_EMAILS", mode="before")
    @classmethod
    def _split_csv(cls, v: Any) -> List[str]:
        # accepts None, list, comma-separated string, or JSON-list string
        return _normalize_list_like(v)

    @property
    def ALLOWED_ORIGINS_LIST(self) -> List[str]:
        # merge both and dedupe while preserving order
        out: List[str] = []
        for x in _normalize_list_like(self.CORS_ORIGINS) + _normalize_list_like(self.ALLOWED_ORIGINS):
            if x and x not in out:
                out.append(x)
        return out or ["http://localhost:3000", "http://localhost:5173"]

    @property
    def ADMIN_EMAILS_SET(self) -> set:
        return {e.lower() for e in _normalize_list_like(self.ADMIN_EMAILS)}


# create the instance
settings = Settings()
