"""Hosted-LLM classifier that turns a recent bar window into a validated Verdict.

The upstream model is asked for JSON matching `VERDICT_RESPONSE_SCHEMA`, but
nothing guarantees it complies, so every response is re-validated against the
`Verdict` model before it leaves this module. Only the tail of the bar window
is serialized into the prompt to keep request size bounded.
"""

import json
import logging
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from dca_monitor.core.errors import ClassificationUnavailable, MalformedResponse
from dca_monitor.core.types import PriceBar, Recommendation, Sentiment, Verdict

DEFAULT_MAX_BARS = 50

_NUMBER_FIELDS = ("supportLevel", "resistanceLevel", "entryPoint", "takeProfit", "stopLoss")

VERDICT_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "sentiment": {"type": "STRING", "enum": [item.value for item in Sentiment]},
        "recommendation": {"type": "STRING", "enum": [item.value for item in Recommendation]},
        "detectedPattern": {"type": "STRING"},
        "reasoning": {"type": "STRING"},
        "supportLevel": {"type": "NUMBER"},
        "resistanceLevel": {"type": "NUMBER"},
        "entryPoint": {"type": "NUMBER", "description": "Suggested DCA entry price"},
        "takeProfit": {"type": "NUMBER", "description": "Suggested take-profit price"},
        "stopLoss": {"type": "NUMBER", "description": "Suggested stop-loss price"},
    },
    "required": ["sentiment", "recommendation", "detectedPattern", "reasoning", *_NUMBER_FIELDS],
}

_PROMPT_TEMPLATE = """You are a seasoned cryptocurrency technical analyst. Analyze the recent {interval_hint}price action of {instrument}.

Price data ({count} most recent bars, oldest first): {series}
Current price: {current}

Tasks:
1. Identify the primary trend and any candlestick or chart pattern.
2. Propose a concrete DCA plan: entry point, take-profit target and stop-loss.
3. Give support and resistance levels.
4. Recommend one action: BUY (DCA), HOLD or WAIT.

Respond with JSON only."""

logger = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    return f"{value:.8g}"


def serialize_bars(bars: Sequence[PriceBar]) -> str:
    return " | ".join(
        f"[{bar.time}] O:{_fmt(bar.open)} H:{_fmt(bar.high)} L:{_fmt(bar.low)} C:{_fmt(bar.close)}"
        for bar in bars
    )


def parse_verdict(text: str) -> Verdict:
    """Parse model output into a Verdict or raise MalformedResponse."""

    try:
        payload = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise MalformedResponse("classifier output is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise MalformedResponse("classifier output is not a JSON object")

    try:
        return Verdict.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise MalformedResponse(f"classifier output failed validation: {', '.join(fields)}") from exc


class SignalClassifier:
    """Request/response wrapper around a Gemini-style generateContent endpoint."""

    def __init__(
        self,
        client: httpx.Client,
        api_key: str,
        model: str,
        max_bars: int = DEFAULT_MAX_BARS,
        interval_hint: str = "",
    ) -> None:
        self._client = client
        self._api_key = api_key
        self.model = model
        self.max_bars = max(1, max_bars)
        self.interval_hint = interval_hint

    def build_prompt(self, instrument_name: str, bars: Sequence[PriceBar]) -> str:
        window = list(bars)[-self.max_bars :]
        return _PROMPT_TEMPLATE.format(
            interval_hint=f"{self.interval_hint} " if self.interval_hint else "",
            instrument=instrument_name,
            count=len(window),
            series=serialize_bars(window),
            current=_fmt(window[-1].close),
        )

    def classify(self, instrument_name: str, bars: Sequence[PriceBar]) -> Verdict:
        if not bars:
            raise ValueError("bars must be non-empty")

        request_body = {
            "contents": [{"role": "user", "parts": [{"text": self.build_prompt(instrument_name, bars)}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": VERDICT_RESPONSE_SCHEMA,
            },
        }

        try:
            response = self._client.post(
                f"/models/{self.model}:generateContent",
                json=request_body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as exc:
            logger.warning("classifier_request_failed", extra={"model": self.model, "error": str(exc)})
            raise ClassificationUnavailable(f"classifier request failed: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "classifier_bad_status",
                extra={"model": self.model, "status_code": response.status_code},
            )
            raise ClassificationUnavailable(f"classifier returned HTTP {response.status_code}")

        verdict = parse_verdict(self._extract_text(response))
        logger.info(
            "classifier_verdict",
            extra={
                "instrument": instrument_name,
                "sentiment": verdict.sentiment.value,
                "recommendation": verdict.recommendation.value,
            },
        )
        return verdict

    @staticmethod
    def _extract_text(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponse("classifier envelope is not valid JSON") from exc

        try:
            parts = body["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("classifier envelope has no candidate text") from exc

        if not text.strip():
            raise MalformedResponse("classifier returned empty text")
        return text.strip()
