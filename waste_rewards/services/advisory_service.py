"""
Advisory client for best-effort text suggestions.

Talks to the advisory proxy with the generateContent request shape:

    {"contents": [{"parts": [{"text": ...}]}],
     "systemInstruction": {"parts": [{"text": ...}]}}

and reads ``candidates[0].content.parts[0].text`` from the reply. Every call
is a single attempt bounded by ``timeout_seconds``; any failure is logged and
degrades to a static fallback, so nothing here ever raises to the caller.

``GeminiProxy`` is the server side of that proxy: it holds the real model key
and forwards the payload unchanged.
"""

import asyncio
import hashlib
import json
import logging
import random
import re
from typing import Any, Dict, Optional, Tuple

import aiohttp

from waste_rewards.models.report_model import DEFAULT_BASE_REWARD, Report
from waste_rewards.services.prompt_manager import PromptManager
from waste_rewards.services.redis_service import RedisService

logger = logging.getLogger(__name__)

WASTE_CLASSES = ["High-Priority Plastic", "Hazardous E-Waste", "Organic Compost", "Mixed Recyclables"]
NO_RESPONSE = "No response from advisory service."


def build_payload(system_instruction: str, user_query: str) -> Dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": user_query}]}],
        "systemInstruction": {"parts": [{"text": system_instruction}]},
    }


def extract_text(reply: Any) -> str:
    """First candidate text, or "" when the reply does not have the expected shape."""
    try:
        text = reply["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return ""
    return text if isinstance(text, str) else ""


def parse_reward(reply: str) -> int:
    match = re.search(r"\d+", reply or "")
    if not match:
        return DEFAULT_BASE_REWARD
    value = int(match.group(0))
    return value if value > 0 else DEFAULT_BASE_REWARD


def priority_for(classification: str) -> str:
    return "High" if "Hazardous" in classification or "Plastic" in classification else "Medium"


class AdvisoryClient:
    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 10.0,
        prompts: Optional[PromptManager] = None,
        redis_service: Optional[RedisService] = None,
        cache_ttl: int = 3600,
        rng: Optional[random.Random] = None,
    ):
        self.endpoint = endpoint
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.prompts = prompts or PromptManager()
        self.redis_service = redis_service
        self.cache_ttl = cache_ttl
        self.rng = rng or random.Random()
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Single bounded POST to the proxy. Returns the JSON body or None."""
        if not self.endpoint:
            return None
        await self.start()
        try:
            async with self._session.post(self.endpoint, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.warning(f"⚠️ Advisory proxy returned {response.status}: {body[:200]}")
                    return None
                return await response.json(content_type=None)
        except asyncio.TimeoutError:
            logger.warning(f"⏰ Advisory call timed out after {self.timeout.total}s")
        except (aiohttp.ClientError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Advisory call failed: {e}")
        return None

    async def generate_text(self, system_instruction: str, user_query: str) -> str:
        try:
            reply = await self._post(build_payload(system_instruction, user_query))
        except Exception as e:
            logger.warning(f"⚠️ Advisory call raised unexpectedly: {e}")
            return ""
        return extract_text(reply).strip() if reply else ""

    # ---------------------------
    # Operations used by the report lifecycle
    # ---------------------------
    async def estimate_reward(self, classification: str, priority: str) -> int:
        query = f"Waste: {classification}. Priority: {priority}. Provide a single integer only."
        reply = await self.generate_text(self.prompts.load_prompt("reward"), query)
        reward = parse_reward(reply)
        if not reply:
            logger.info(f"ℹ️ No reward suggestion for {classification}; using default {reward}")
        elif not re.search(r"\d+", reply):
            logger.info(f"ℹ️ Non-numeric reward suggestion {reply[:40]!r}; using default {reward}")
        return reward

    async def classify(self, image_data_url: Optional[str] = None) -> Tuple[str, str]:
        """Informational label for a new report.

        Local heuristic: picks one of the known waste classes. The photo is
        accepted so a model-backed classifier can replace this without
        changing callers.
        """
        classification = self.rng.choice(WASTE_CLASSES)
        return classification, priority_for(classification)

    # ---------------------------
    # Supplementary guidance
    # ---------------------------
    async def handling_guide(self, classification: str, priority: str) -> str:
        cache_key = hashlib.sha1(f"{classification}|{priority}".encode("utf-8")).hexdigest()
        if self.redis_service is not None:
            cached = await self.redis_service.get_cached_advice(cache_key)
            if cached:
                return cached

        query = f"Classification: {classification}. Priority: {priority}."
        reply = await self.generate_text(self.prompts.load_prompt("guidance"), query)
        if not reply:
            return NO_RESPONSE
        if self.redis_service is not None:
            await self.redis_service.cache_advice(cache_key, reply, self.cache_ttl)
        return reply

    async def review_summary(self, report: Report) -> str:
        query = (
            f"Status: {report.status.value}. Class: {report.aiClassification}. "
            f"Priority: {report.priority}. BaseReward: {report.reward_breakdown().reporter}."
        )
        reply = await self.generate_text(self.prompts.load_prompt("review_summary"), query)
        return reply or NO_RESPONSE


class GeminiProxy:
    """Forwards generateContent payloads to the model API with the server-held key."""

    def __init__(self, api_key: Optional[str], model: str, api_base: str, timeout_seconds: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def _request(self, payload: Dict[str, Any]) -> Tuple[int, Any]:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self._url(), params={"key": self.api_key}, json=payload) as response:
                return response.status, await response.json(content_type=None)

    async def forward(self, payload: Dict[str, Any]) -> Tuple[int, Any]:
        """Returns (status, body). Missing key or transport failure maps to 500."""
        if not self.configured:
            return 500, {"error": "No Gemini API key configured."}
        try:
            return await self._request(payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            logger.error(f"❌ Gemini proxy error: {e}")
            return 500, {"error": "Proxy failed"}
