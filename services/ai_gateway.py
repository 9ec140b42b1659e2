"""Client for the OpenAI-compatible AI gateway (chat, tools, images)."""

from __future__ import annotations

import json
import logging
import re
from typing import Iterator, Optional

import requests
from flask import current_app
from requests.exceptions import RequestException

from config_models import AIConfig
from services.errors import ShopError
from services.i18n import Msg

logger = logging.getLogger(__name__)

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")

KNOWN_ACTIONS = {"navigate", "create_bill"}


class AIGatewayError(ShopError):
    """Gateway unreachable or refusing.  429 and 402 are passed through."""

    status_code = 502
    default_msg = Msg.AI_UNAVAILABLE

    def __init__(self, msg: Msg | None = None, detail: str = "", status_code: int | None = None):
        super().__init__(msg, detail)
        if status_code is not None:
            self.status_code = status_code


class AIGatewayClient:
    def __init__(self, config: AIConfig):
        self.config = config

    @property
    def available(self) -> bool:
        return bool(self.config.enabled and self.config.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: dict, *, stream: bool = False) -> requests.Response:
        """POST to the gateway and map failures to ``AIGatewayError``.

        Raises:
            AIGatewayError: gateway disabled, unreachable, or non-2xx.
        """
        if not self.available:
            raise AIGatewayError(detail="AI gateway is not configured", status_code=503)
        url = f"{self.config.base_url}{path}"
        try:
            response = requests.post(
                url,
                headers=self._headers(),
                json=payload,
                timeout=self.config.timeout,
                stream=stream,
            )
        except requests.exceptions.Timeout:
            logger.error("Timeout calling AI gateway %s", path)
            raise AIGatewayError(detail="AI gateway timed out")
        except RequestException as e:
            logger.error("AI gateway request to %s failed: %s", path, e)
            raise AIGatewayError(detail="Could not reach AI gateway")

        if response.status_code == 429:
            logger.warning("AI gateway rate limited %s", path)
            raise AIGatewayError(Msg.AI_RATE_LIMITED, status_code=429)
        if response.status_code == 402:
            logger.warning("AI gateway reports exhausted credits")
            raise AIGatewayError(Msg.AI_CREDITS_EXHAUSTED, status_code=402)
        if response.status_code >= 400:
            logger.error(
                "AI gateway error %s on %s: %s",
                response.status_code, path, response.text[:500],
            )
            raise AIGatewayError(detail=f"AI gateway returned {response.status_code}")
        return response

    def chat_completion(
        self,
        messages: list[dict],
        *,
        model: Optional[str] = None,
        tools: Optional[list[dict]] = None,
    ) -> dict:
        """Run one completion and return the assistant message dict."""
        payload: dict = {"model": model or self.config.chat_model, "messages": messages}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        data = self._post("/chat/completions", payload).json()
        try:
            return data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError):
            logger.error("Unexpected completion payload: %s", str(data)[:500])
            raise AIGatewayError(detail="Malformed completion response")

    def stream_chat(self, messages: list[dict], *, model: Optional[str] = None) -> Iterator[bytes]:
        """Yield the gateway's server-sent event stream chunk by chunk."""
        response = self._post(
            "/chat/completions",
            {"model": model or self.config.chat_model, "messages": messages, "stream": True},
            stream=True,
        )

        def _relay():
            try:
                for chunk in response.iter_content(chunk_size=None):
                    if chunk:
                        yield chunk
            finally:
                response.close()

        return _relay()

    def generate_image(self, prompt: str, *, size: str = "1024x1024") -> Optional[str]:
        """Return a data URL (or hosted URL) for the generated image."""
        data = self._post(
            "/images/generations",
            {"model": self.config.image_model, "prompt": prompt, "size": size, "n": 1},
        ).json()
        images = data.get("data") or []
        if not images:
            logger.warning("Image generation returned no data")
            return None
        first = images[0]
        if first.get("b64_json"):
            return f"data:image/png;base64,{first['b64_json']}"
        return first.get("url")


def get_gateway() -> AIGatewayClient:
    """Return a client for the running app's AI configuration."""
    return AIGatewayClient(current_app.config["AI_CONFIG"])


def extract_json(text: Optional[str]) -> Optional[dict]:
    """Return the outermost JSON object embedded in *text*, or None."""
    if not text:
        return None
    match = _JSON_BLOCK_RE.search(text)
    if not match:
        return None
    try:
        value = json.loads(match.group(0))
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def parse_action(reply: str) -> tuple[str, Optional[dict]]:
    """Split a chat reply into display text and an optional action tag.

    Only ``navigate`` (with a path starting ``/``) and ``create_bill``
    actions are recognised; anything else leaves the reply untouched.
    """
    action = extract_json(reply)
    if not action or action.get("action") not in KNOWN_ACTIONS:
        return reply, None
    if action["action"] == "navigate":
        path = str(action.get("path") or "")
        if not path.startswith("/"):
            return reply, None
        action = {"action": "navigate", "path": path}
    else:
        items = action.get("items")
        action = {
            "action": "create_bill",
            "items": items if isinstance(items, list) else [],
            "customer": action.get("customer") or "",
        }
    text = _JSON_BLOCK_RE.sub("", reply).strip()
    text = re.sub(r"```(?:json)?\s*```", "", text).strip()
    return text, action
