from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Set

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from .completion import ResilientCompletionClient, RetryPolicy
from .config import Settings, load_settings
from .dispatcher import Dispatcher, Send
from .gemini_client import GeminiClient
from .prompt_loader import load_prompt_set
from .session import Session

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("roomie").setLevel(log_level)
logger = logging.getLogger("roomie.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)


def build_dispatcher(settings: Settings) -> Dispatcher:
    """Purpose: Wire prompts, the Gemini backend and the retry policy into a Dispatcher.
    Inputs/Outputs: Input is Settings; output is a ready Dispatcher.
    Side Effects / State: Configures the Gemini SDK and reads prompt files.
    Dependencies: GeminiClient, ResilientCompletionClient, load_prompt_set.
    Failure Modes: Missing GEMINI_API_KEY raises ValueError; missing prompt files raise
        FileNotFoundError.
    If Removed: The app has no way to answer WebSocket frames.
    Testing Notes: Tests inject a Dispatcher built on a fake backend instead.
    """
    # One backend client and policy shared by every connection.
    prompts = load_prompt_set(settings.prompts_dir)
    completion = ResilientCompletionClient(
        GeminiClient(settings),
        prompts.system,
        chat_model=settings.gemini_model_chat,
        structured_model=settings.gemini_model_spec,
        fallback_model=settings.gemini_model_fallback,
        policy=RetryPolicy(
            max_attempts=settings.max_retries,
            base_delay=settings.retry_base_delay_ms / 1000,
        ),
    )
    return Dispatcher(completion, prompts)


def create_app(dispatcher: Optional[Dispatcher] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create the gateway app; dispatcher and settings are built at startup when omitted."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.settings is None:
            app.state.settings = load_settings()
        if app.state.dispatcher is None:
            app.state.dispatcher = build_dispatcher(app.state.settings)
        settings_ = app.state.settings
        logger.info(
            "gateway ready chat=%s spec=%s fallback=%s",
            settings_.gemini_model_chat,
            settings_.gemini_model_spec,
            settings_.gemini_model_fallback,
        )
        yield

    app = FastAPI(title="Roomie Dialogue Gateway", lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    app.state.inflight = set()
    app.state.active_connections = 0

    @app.get("/health")
    async def health() -> dict:
        """Report readiness and the number of open connections."""
        return {
            "ok": True,
            "dispatcher_ready": app.state.dispatcher is not None,
            "connections": app.state.active_connections,
        }

    @app.websocket("/")
    @app.websocket("/ws")
    async def gateway_socket(websocket: WebSocket) -> None:
        """Handle one game client: a Session per socket, a task per inbound frame."""
        await websocket.accept()
        settings_ = websocket.app.state.settings or load_settings()
        dispatcher_ = websocket.app.state.dispatcher
        inflight: Set[asyncio.Task] = websocket.app.state.inflight
        session = Session(settings_.max_history_pairs)
        send = make_sender(websocket, session)
        websocket.app.state.active_connections += 1
        logger.info("conn=%s connected", session.connection_id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                # Overlapping turns must reach the busy gate instead of queueing here.
                task = asyncio.create_task(dispatcher_.handle(session, raw, send))
                inflight.add(task)
                task.add_done_callback(inflight.discard)
        except WebSocketDisconnect:
            pass
        finally:
            websocket.app.state.active_connections -= 1
            session.close()
            logger.info("conn=%s disconnected", session.connection_id)

    return app


def make_sender(websocket: WebSocket, session: Session) -> Send:
    """Return a send callable that is a no-op once the connection is gone."""

    async def send(frame: str) -> None:
        if session.closed or websocket.application_state != WebSocketState.CONNECTED:
            logger.debug("conn=%s send=skipped closed", session.connection_id)
            return
        try:
            await websocket.send_text(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug("conn=%s send=dropped error=%s", session.connection_id, exc)

    return send


app = create_app()


def main() -> None:
    settings = load_settings()
    uvicorn.run("roomie.app:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
