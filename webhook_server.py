"""
Push mode: HTTP endpoint receiving Jenkins build notifications.
"""

import json
import logging
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request, Response

import metrics
from errors import MalformedEventError
from ingestor import EventIngestor, is_completion, verify_signature

logger = logging.getLogger(__name__)


def create_app(ingestor: EventIngestor, secret: str, accepting: Optional[threading.Event] = None) -> FastAPI:
    """Build the webhook app. Events are only queued while *accepting* is set."""
    app = FastAPI(title="Jenkins build watcher", docs_url=None, redoc_url=None)
    if accepting is None:
        accepting = threading.Event()
        accepting.set()

    @app.get("/health")
    async def health():
        return {"status": "ok" if accepting.is_set() else "shutting_down"}

    @app.get("/metrics")
    async def prometheus_metrics():
        return Response(content=metrics.render_latest(), media_type="text/plain; version=0.0.4")

    @app.post("/jenkins/webhook", status_code=202)
    async def jenkins_webhook(
        request: Request,
        x_jenkins_signature: str = Header(default="", alias="X-Jenkins-Signature"),
    ):
        if not accepting.is_set():
            raise HTTPException(status_code=503, detail="Shutting down")

        body = await request.body()
        if not verify_signature(body, x_jenkins_signature, secret):
            logger.warning("Webhook signature verification failed")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            payload = json.loads(body)
        except ValueError:
            metrics.malformed_events_total.labels(source='webhook').inc()
            logger.warning("Dropping webhook with a body that is not JSON")
            raise HTTPException(status_code=400, detail="Body is not JSON") from None

        if isinstance(payload, dict) and not is_completion(payload):
            return {"status": "ignored", "reason": "build not completed"}

        try:
            event = ingestor.ingest(payload, source='webhook')
        except MalformedEventError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from None

        return {"status": "queued", "job": event.job_name, "build": event.build_number}

    return app


class WebhookServer:
    """Runs the app under uvicorn in a background thread."""

    def __init__(self, app: FastAPI, host: str, port: int, log_level: str = 'info'):
        self.server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=log_level.lower(),
                                                    lifespan='off'))
        self.thread = threading.Thread(target=self.server.run, name='webhook-server', daemon=True)

    def start(self) -> None:
        self.thread.start()
        logger.info("Webhook listener on http://%s:%d/jenkins/webhook",
                    self.server.config.host, self.server.config.port)

    def stop(self, timeout: float = 10.0) -> None:
        self.server.should_exit = True
        self.thread.join(timeout)
