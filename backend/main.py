"""FastAPI application: streaming chat over a websocket.

Architecture layers:
  1. Settings        (settings.py)             centralized configuration
  2. Credentials     (credentials.py)          upstream key pool + failover
  3. Response cache  (response_cache.py)       fingerprint → final answer
  4. LLM Package     (llm/)                    providers, prompts, generation client
  5. Search          (search.py, search_augmentation.py)  `:search` round trip
  6. Store           (conversation_store.py)   Postgres or in-memory
  7. Pipeline        (pipeline.py)             one submission end to end
  8. Sessions        (session.py)              websocket state + heartbeat
  9. Hooks/Telemetry (hooks.py, telemetry.py)  extension points, records

Routes:
  WS     /ws               chat frames (user_message, set_active_chat, ping)
  GET    /health           status, store, provider, cache, sessions
  GET    /admin/cache      cache stats            (X-Admin-Token)
  DELETE /admin/cache      clear the cache        (X-Admin-Token)
  GET    /admin/telemetry  telemetry summary      (X-Admin-Token)
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

import worker
from auth import IdentityResolver, StaticTokenResolver, token_from_websocket
from conversation_store import ConversationStore, open_store
from llm.client import GenerationClient
from llm.providers import provider_name
from pipeline import ChatPipeline
from search import SearchService
from session import ChatSession, SessionRegistry
from settings import settings
from telemetry import TelemetryStore

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG_MODE else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Services
# ---------------------------------------------------------------------------

@dataclass
class Services:
    """Process-wide collaborators shared by every session."""
    client: GenerationClient
    search: SearchService
    store: ConversationStore
    pipeline: ChatPipeline
    resolver: IdentityResolver
    registry: SessionRegistry
    admin_token: str = ""


def build_services() -> Services:
    client = GenerationClient.from_settings()
    search = SearchService.from_settings()
    store = open_store()
    if not search.configured:
        logger.warning("Search credentials missing; `:search` commands will return no results")
    return Services(
        client=client,
        search=search,
        store=store,
        pipeline=ChatPipeline(client, search, store, history_window=settings.HISTORY_WINDOW),
        resolver=StaticTokenResolver.from_settings(),
        registry=SessionRegistry(),
        admin_token=settings.ADMIN_TOKEN,
    )


# ---------------------------------------------------------------------------
#  Application
# ---------------------------------------------------------------------------

def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the app.  Services are created at startup unless supplied."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: D401
        """Run startup logic; yield to serve requests; clean up on shutdown."""
        svc = services or build_services()
        app.state.services = svc
        TelemetryStore.configure(settings.TELEMETRY_MAX_RECORDS)
        worker.start_periodic("heartbeat", settings.HEARTBEAT_INTERVAL, svc.registry.sweep)
        worker.start_periodic("cache-sweep", settings.CACHE_SWEEP_INTERVAL, svc.client.cache.sweep_expired)
        logger.info(
            f"Chat server ready: provider={provider_name()} store={svc.store.name} "
            f"credentials={len(svc.client.pool)}"
        )

        yield  # ← application runs here

        await worker.shutdown()
        await svc.registry.close_all()
        close = getattr(svc.store, "close", None)
        if close is not None:
            close()

    app = FastAPI(title="TMGPT Chat", version="1.0.0", lifespan=lifespan)
    _raw_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_raw_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_routes(app)
    return app


def _services(request: Request) -> Services:
    return request.app.state.services


def require_admin(
    svc: Services = Depends(_services),
    x_admin_token: Optional[str] = Header(default=None),
) -> None:
    """Admin routes are disabled unless ADMIN_TOKEN is set."""
    if not svc.admin_token or not x_admin_token:
        raise HTTPException(status_code=403, detail="Admin access denied")
    if not hmac.compare_digest(x_admin_token.encode(), svc.admin_token.encode()):
        raise HTTPException(status_code=403, detail="Admin access denied")


def _register_routes(app: FastAPI) -> None:

    # ═══════════════════════════════════════════════════════════════════════
    #  WEBSOCKET
    # ═══════════════════════════════════════════════════════════════════════

    @app.websocket("/ws")
    async def chat_socket(websocket: WebSocket):
        svc: Services = websocket.app.state.services
        await websocket.accept()
        identity = await svc.resolver.resolve(token_from_websocket(websocket))
        session = ChatSession(websocket, svc.pipeline, identity)
        svc.registry.add(session)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is None:
                    continue
                await session.handle_frame(raw)
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # Socket closed underneath us (heartbeat termination).
            logger.debug(f"Session {session.session_id}: receive ended: {e}")
        finally:
            session.closed = True
            await session.cancel_active()
            svc.registry.remove(session)

    # ═══════════════════════════════════════════════════════════════════════
    #  HEALTH CHECK
    # ═══════════════════════════════════════════════════════════════════════

    @app.get("/health")
    def health_check(svc: Services = Depends(_services)):
        """Returns store, provider, credential, cache and session info."""
        return {
            "status": "ok",
            "store": svc.store.name,
            "llm_provider": provider_name(),
            "credentials": len(svc.client.pool),
            "search_configured": svc.search.configured,
            "cache": svc.client.cache_stats(),
            "sessions": len(svc.registry),
            "version": app.version,
        }

    # ═══════════════════════════════════════════════════════════════════════
    #  ADMIN
    # ═══════════════════════════════════════════════════════════════════════

    @app.get("/admin/cache", dependencies=[Depends(require_admin)])
    def cache_stats(svc: Services = Depends(_services)):
        return svc.client.cache_stats()

    @app.delete("/admin/cache", dependencies=[Depends(require_admin)])
    def clear_cache(svc: Services = Depends(_services)):
        cleared = svc.client.clear_cache()
        logger.info(f"Admin: cleared {cleared} cached responses")
        return {"cleared": cleared}

    @app.get("/admin/telemetry", dependencies=[Depends(require_admin)])
    def telemetry_summary(recent: int = 0):
        body = TelemetryStore.summary()
        if recent > 0:
            body["recent"] = TelemetryStore.recent(recent)
        return body


app = create_app()
