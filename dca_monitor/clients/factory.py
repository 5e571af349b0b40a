"""Build the four upstream clients from settings, each on its own httpx client and timeout."""

from dataclasses import dataclass

import httpx

from dca_monitor.clients.alerts import AlertDispatcher
from dca_monitor.clients.classifier import SignalClassifier
from dca_monitor.clients.market_data import MarketDataClient
from dca_monitor.clients.store import SignalStore
from dca_monitor.core.config import Settings


@dataclass(slots=True)
class Upstreams:
    """Constructed clients plus the HTTP connections they own."""

    market_data: MarketDataClient
    classifier: SignalClassifier
    store: SignalStore
    dispatcher: AlertDispatcher
    http_clients: tuple[httpx.Client, ...]

    def close(self) -> None:
        for client in self.http_clients:
            client.close()


def build_upstreams(settings: Settings) -> Upstreams:
    market_http = httpx.Client(base_url=settings.MARKET_DATA_BASE_URL, timeout=settings.MARKET_DATA_TIMEOUT_S)
    classifier_http = httpx.Client(base_url=settings.CLASSIFIER_BASE_URL, timeout=settings.CLASSIFIER_TIMEOUT_S)
    store_http = httpx.Client(base_url=settings.STORE_URL, timeout=settings.STORE_TIMEOUT_S)
    alert_http = httpx.Client(base_url=settings.ALERT_BASE_URL, timeout=settings.ALERT_TIMEOUT_S)

    return Upstreams(
        market_data=MarketDataClient(
            market_http,
            watchlist=settings.watchlist(),
            interval=settings.MARKET_DATA_INTERVAL,
            quote_asset=settings.QUOTE_ASSET,
        ),
        classifier=SignalClassifier(
            classifier_http,
            api_key=settings.CLASSIFIER_API_KEY,
            model=settings.CLASSIFIER_MODEL,
            max_bars=settings.classifier_max_bars(),
            interval_hint=settings.MARKET_DATA_INTERVAL,
        ),
        store=SignalStore(store_http, api_key=settings.STORE_API_KEY, run_state_id=settings.STORE_RUN_STATE_ID),
        dispatcher=AlertDispatcher(alert_http, bot_token=settings.BOT_TOKEN, chat_id=settings.CHAT_DESTINATION_ID),
        http_clients=(market_http, classifier_http, store_http, alert_http),
    )
