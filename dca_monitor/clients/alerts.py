"""Telegram bot webhook dispatcher for verdict alerts."""

import logging

import httpx

from dca_monitor.core.types import Sentiment, Verdict

_SENTIMENT_BADGES = {
    Sentiment.BULLISH: "🟢 Bullish",
    Sentiment.BEARISH: "🔴 Bearish",
    Sentiment.NEUTRAL: "⚪ Neutral",
}

_MARKDOWN_SPECIALS = ("_", "*", "`", "[")

logger = logging.getLogger(__name__)


def escape_markdown(text: str) -> str:
    """Escape free text for Telegram legacy Markdown so model output cannot break entities."""

    for special in _MARKDOWN_SPECIALS:
        text = text.replace(special, f"\\{special}")
    return text


def format_price(value: float) -> str:
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


def format_alert(instrument_name: str, verdict: Verdict, observed_price: float) -> str:
    return "\n".join(
        [
            f"🚀 *Crypto DCA Alert:* {escape_markdown(instrument_name)}",
            f"💰 Price: ${format_price(observed_price)}",
            f"📊 Sentiment: {_SENTIMENT_BADGES[verdict.sentiment]}",
            f"🧩 Pattern: {escape_markdown(verdict.detected_pattern)}",
            f"🎯 Recommendation: *{verdict.recommendation.value}*",
            "",
            "📍 *Trade plan:*",
            f"🟢 Entry: *${format_price(verdict.entry_point)}*",
            f"🎁 Take Profit: *${format_price(verdict.take_profit)}*",
            f"🛡️ Stop Loss: *${format_price(verdict.stop_loss)}*",
            "",
            "💡 *Rationale:*",
            escape_markdown(verdict.reasoning),
            "",
            f"📉 Support: ${format_price(verdict.support_level)}",
            f"📈 Resistance: ${format_price(verdict.resistance_level)}",
        ]
    )


class AlertDispatcher:
    """Fire-and-forget sender; a failed alert is logged and dropped."""

    def __init__(self, client: httpx.Client, bot_token: str, chat_id: str, parse_mode: str = "Markdown") -> None:
        self._client = client
        self._bot_token = bot_token
        self.chat_id = chat_id
        self.parse_mode = parse_mode

    @property
    def configured(self) -> bool:
        return bool(self._bot_token and self.chat_id)

    def dispatch(self, instrument_name: str, verdict: Verdict, observed_price: float) -> bool:
        if not self.configured:
            logger.warning("alert_not_configured", extra={"instrument": instrument_name})
            return False

        body = {
            "chat_id": self.chat_id,
            "text": format_alert(instrument_name, verdict, observed_price),
            "parse_mode": self.parse_mode,
        }
        try:
            response = self._client.post(f"/bot{self._bot_token}/sendMessage", json=body)
        except httpx.HTTPError as exc:
            # str(exc) may carry the request URL, which embeds the token.
            logger.warning(
                "alert_dispatch_failed",
                extra={"instrument": instrument_name, "error": type(exc).__name__},
            )
            return False

        if not response.is_success:
            logger.warning(
                "alert_dispatch_failed",
                extra={"instrument": instrument_name, "status_code": response.status_code},
            )
            return False

        logger.info("alert_dispatched", extra={"instrument": instrument_name})
        return True
