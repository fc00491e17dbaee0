#Description: Pydantic settings loader with defaults, reading .env.
import pathlib

from pydantic_settings import BaseSettings
from pydantic import Field
from dotenv import load_dotenv

env_path = pathlib.Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_SNAPSHOT_SYMBOLS = [
    "BTC", "ETH", "SOL", "XRP", "AVAX", "ADA",
    "DOGE", "DOT", "LINK", "MATIC", "UNI", "AAVE",
]

class Settings(BaseSettings):
    APP_ENV: str = Field(default="development")
    DATABASE_URL: str = Field(default="sqlite:///./dashboard.db")

    # Ledger identity recorded for system-operator trades
    SYSTEM_USER_ID: str = Field(default="00000000-0000-0000-0000-000000000000")

    # Signal fusion
    FUSION_SCORE_SCALE: float = Field(default=20.0)
    FUSION_SCORE_CLAMP: float = Field(default=100.0)
    FUSION_DEFAULT_HORIZON: str = Field(default="1h")

    # Price bus
    PRICE_BUS_CACHE_TTL_SECONDS: float = Field(default=10.0)
    PRICE_BUS_MAX_CONCURRENT: int = Field(default=2)
    PRICE_BUS_MIN_INTERVAL_SECONDS: float = Field(default=1.2)
    PRICE_BUS_RETRY_BASE_SECONDS: float = Field(default=2.0)
    PRICE_BUS_RETRY_MAX_SECONDS: float = Field(default=10.0)
    PRICE_BUS_MAX_RETRIES: int = Field(default=3)

    TICKER_BASE_URL: str = Field(default="https://api.exchange.coinbase.com")
    TICKER_TIMEOUT_SECONDS: float = Field(default=5.0)

    # Snapshot refresh
    SNAPSHOT_QUOTE_CURRENCY: str = Field(default="EUR")
    SNAPSHOT_SYMBOLS: list[str] = Field(default_factory=lambda: list(DEFAULT_SNAPSHOT_SYMBOLS))
    SNAPSHOT_INTERVAL_SECONDS: int = Field(default=300)

    class Config:
        env_file = ".env"
        extra = "allow"

settings = Settings()
