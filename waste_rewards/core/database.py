# 🗄️ Store and Service Wiring
# Builds the document store, Redis and the services on top of them, opened at
# startup and closed at shutdown. Handlers reach them through app.state.

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from starlette.requests import HTTPConnection

from waste_rewards.core.config import Settings
from waste_rewards.services.advisory_service import AdvisoryClient, GeminiProxy
from waste_rewards.services.document_store import DocumentStore
from waste_rewards.services.identity_service import IdentityService
from waste_rewards.services.memory_store import InMemoryDocumentStore
from waste_rewards.services.mongodb_service import MongoDocumentStore
from waste_rewards.services.profile_service import ProfileService
from waste_rewards.services.prompt_manager import PromptManager
from waste_rewards.services.redis_service import RedisService
from waste_rewards.services.report_lifecycle import ReportLifecycleEngine

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "memory":
        logger.info(f"🧠 Using in-memory document store (namespace={settings.app_id})")
        return InMemoryDocumentStore(namespace=settings.app_id)
    return MongoDocumentStore(settings.mongo_uri, settings.mongodb_name, settings.app_id)


@dataclass
class Services:
    settings: Settings
    store: DocumentStore
    redis: RedisService
    identity: IdentityService
    advisory: AdvisoryClient
    gemini_proxy: GeminiProxy
    profiles: ProfileService
    engine: ReportLifecycleEngine

    async def open(self) -> None:
        store_ok = await self.store.open()
        if not store_ok:
            logger.warning("⚠️ Document store unavailable at startup - requests will fail until it recovers")
        redis_ok = await self.redis.connect()
        if not redis_ok:
            logger.info("ℹ️ Continuing without Redis: sign-outs are tracked in-process and advice is not cached")
        await self.advisory.start()

    async def close(self) -> None:
        await self.advisory.close()
        await self.redis.disconnect()
        await self.store.close()

    async def health(self) -> Dict[str, Any]:
        return {
            "store": await self.store.health_check(),
            "redis": await self.redis.health_check(),
            "advisory": {"endpoint": self.settings.advisory_endpoint},
        }


def build_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    advisory: Optional[AdvisoryClient] = None,
    redis_service: Optional[RedisService] = None,
) -> Services:
    store = store or build_store(settings)
    redis_service = redis_service or RedisService(settings.redis_url)
    advisory = advisory or AdvisoryClient(
        settings.advisory_endpoint,
        timeout_seconds=settings.advisory_timeout_seconds,
        prompts=PromptManager(),
        redis_service=redis_service,
        cache_ttl=settings.advisory_cache_ttl,
    )
    return Services(
        settings=settings,
        store=store,
        redis=redis_service,
        identity=IdentityService(settings.secret_key, settings.session_ttl_minutes, redis_service),
        advisory=advisory,
        gemini_proxy=GeminiProxy(settings.gemini_api_key, settings.gemini_model, settings.gemini_api_base),
        profiles=ProfileService(store, max_attempts=settings.transaction_max_attempts),
        engine=ReportLifecycleEngine(store, advisory, max_attempts=settings.transaction_max_attempts),
    )


def get_services(connection: HTTPConnection) -> Services:
    return connection.app.state.services
