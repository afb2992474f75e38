"""FastAPI application receiving platform webhooks.

Each webhook is filtered synchronously and handed to a background task, so
the platform gets its 200 before any review work starts.
"""

from __future__ import annotations

import json
import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from reviewrelay_core.platforms.base import WebhookRequest
from reviewrelay_core.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


def create_app(dispatcher: WebhookDispatcher) -> FastAPI:
    """Create the webhook application around an already wired dispatcher."""
    app = FastAPI(title="reviewrelay")
    app.state.dispatcher = dispatcher

    @app.get("/health")
    def health():
        return {"status": "ok", "platforms": sorted(dispatcher.adapters)}

    @app.post("/{platform}/webhook", response_class=PlainTextResponse)
    async def receive_webhook(platform: str, request: Request, background_tasks: BackgroundTasks):
        if platform not in dispatcher.adapters:
            raise HTTPException(status_code=404, detail=f"Unknown platform: {platform}")

        body = await request.body()
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

        webhook = WebhookRequest(platform=platform, payload=payload, headers=dict(request.headers))
        if not dispatcher.accepts(webhook):
            return PlainTextResponse("Webhook ignored")

        background_tasks.add_task(dispatcher.dispatch, webhook)
        logger.info("Accepted %s webhook", platform)
        return PlainTextResponse("Webhook received")

    return app


def run_http_server(dispatcher: WebhookDispatcher, host: str = "0.0.0.0", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(create_app(dispatcher), host=host, port=port, log_level="info")
