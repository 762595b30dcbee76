"""
Configuration settings for the application
"""
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Session token signing
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_expire_seconds: int = Field(default=604800, alias="JWT_EXPIRE_SECONDS")  # 7 days

    # Signs the Starlette session cookie that carries OAuth state
    session_secret_key: Optional[str] = Field(default=None, alias="SESSION_SECRET_KEY")

    # Google OAuth
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: Optional[str] = Field(default=None, alias="GOOGLE_REDIRECT_URI")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE")

    # Pricing configuration
    stripe_basic_plan_price_id: Optional[str] = Field(default=None, alias="STRIPE_BASIC_PLAN_PRICE_ID")
    stripe_premium_plan_price_id: Optional[str] = Field(default=None, alias="STRIPE_PREMIUM_PLAN_PRICE_ID")

    # Public base URL (checkout/portal return URLs, OAuth landing page, CORS)
    app_url: Optional[str] = Field(default="http://localhost:3000", alias="APP_URL")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    def get_app_url(self) -> str:
        """Base URL without trailing slash, scheme defaulted to https."""
        url = (self.app_url or "http://localhost:3000").rstrip("/")
        return url if url.startswith("http") else f"https://{url}"

    def price_plan_map(self) -> Dict[str, "Plan"]:
        """Configured Stripe price ids mapped to the plan they grant."""
        from database_models import Plan

        prices = {}
        if self.stripe_basic_plan_price_id:
            prices[self.stripe_basic_plan_price_id] = Plan.BASIC
        if self.stripe_premium_plan_price_id:
            prices[self.stripe_premium_plan_price_id] = Plan.PREMIUM
        return prices


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
