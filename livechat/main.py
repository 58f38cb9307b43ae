from __future__ import annotations

import logging

from fastapi import FastAPI

from livechat.client import LiveChat
from livechat.config import LiveChatConfig
from livechat.routes.blocks import router as blocks_router
from livechat.routes.chats import router as chats_router
from livechat.routes.messages import router as messages_router
from livechat.routes.presence import beacon_router
from livechat.routes.presence import router as presence_router
from livechat.services.document_store import DocumentStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
LOGGER = logging.getLogger(__name__)


def create_app(config: LiveChatConfig | None = None, store: DocumentStore | None = None) -> FastAPI:
    config = config or LiveChatConfig.from_env()
    app = FastAPI(title="Live Chat Service", version="1.0.0")
    app.state.live = LiveChat(config, store)

    app.include_router(chats_router, prefix="/v1")
    app.include_router(messages_router, prefix="/v1")
    app.include_router(blocks_router, prefix="/v1")
    app.include_router(presence_router, prefix="/v1")
    app.include_router(beacon_router)

    @app.get("/v1/health")
    def health() -> dict:
        live: LiveChat = app.state.live
        return {"status": "ok", "store_backend": live.config.store_backend}

    @app.on_event("shutdown")
    def shutdown() -> None:
        app.state.live.close()

    return app


app = create_app()
