"""Environment-driven settings shared by the monitor and API services."""

from functools import lru_cache
from typing import Callable

from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_WATCHLIST = "BTCUSDT,ETHUSDT,SOLUSDT,BNBUSDT,ADAUSDT"


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "DCA Monitor"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    MARKET_DATA_BASE_URL: str = "https://api.binance.com"
    MARKET_DATA_INTERVAL: str = "1h"
    MARKET_DATA_TIMEOUT_S: float = 10.0
    WATCHLIST: str = _DEFAULT_WATCHLIST
    QUOTE_ASSET: str = "USDT"

    CLASSIFIER_API_KEY: str = ""
    CLASSIFIER_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    CLASSIFIER_MODEL: str = "gemini-2.5-flash"
    CLASSIFIER_MAX_BARS: int = 50
    CLASSIFIER_TIMEOUT_S: float = 30.0

    STORE_URL: str = ""
    STORE_API_KEY: str = ""
    STORE_RUN_STATE_ID: str = "global"
    STORE_TIMEOUT_S: float = 10.0

    BOT_TOKEN: str = ""
    CHAT_DESTINATION_ID: str = ""
    ALERT_BASE_URL: str = "https://api.telegram.org"
    ALERT_TIMEOUT_S: float = 10.0

    POLL_INTERVAL_SECONDS: int = 3600
    BAR_WINDOW_SIZE: int = 100
    RUN_STATE_SYNC_SECONDS: int = 30
    STATUS_CLEAR_SECONDS: float = 3.0
    # Let the API process run timer cycles itself; turn off when a separate monitor process ticks.
    API_DRIVE_MONITOR: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def watchlist(self) -> tuple[str, ...]:
        """Return normalized instrument identifiers from WATCHLIST."""

        symbols = self._split_csv(self.WATCHLIST, transform=str.upper)
        if symbols:
            return symbols

        return self._split_csv(_DEFAULT_WATCHLIST, transform=str.upper)

    def poll_interval_s(self) -> float:
        return float(max(1, self.POLL_INTERVAL_SECONDS))

    def bar_window_size(self) -> int:
        return max(1, self.BAR_WINDOW_SIZE)

    def classifier_max_bars(self) -> int:
        return max(1, self.CLASSIFIER_MAX_BARS)

    @staticmethod
    def _split_csv(value: str, transform: Callable[[str], str]) -> tuple[str, ...]:
        """Split comma-separated values while removing empty entries and duplicates."""

        items: list[str] = []
        seen: set[str] = set()

        for raw in value.split(","):
            item = transform(raw.strip())
            if not item or item in seen:
                continue
            seen.add(item)
            items.append(item)

        return tuple(items)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
