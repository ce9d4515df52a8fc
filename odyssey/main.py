import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from odyssey.config import settings
from odyssey.database import get_session_factory, init_db
from odyssey.game.clock import utcnow
from odyssey.game.errors import MissionError

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    from odyssey.game.reconciler import Reconciler, sweep_loop
    from odyssey.ws.broker import broker
    if settings.SWEEP_ENABLED:
        await sweep_loop.start(Reconciler(get_session_factory(), broker), settings.SWEEP_INTERVAL)
    yield
    await sweep_loop.stop()


def create_app() -> FastAPI:
    app = FastAPI(title="Odyssey Mission Core", version="0.1.0", lifespan=lifespan)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MissionError)
    async def mission_error_handler(request: Request, exc: MissionError):
        log.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error": exc.kind,
                "detail": exc.message,
                "server_now": utcnow().isoformat(),
            },
        )

    # Routers
    from odyssey.api.mission import router as mission_router
    from odyssey.api.leaderboard import router as leaderboard_router
    from odyssey.api.internal import router as internal_router

    app.include_router(mission_router)
    app.include_router(leaderboard_router)
    app.include_router(internal_router)

    from odyssey.ws.broker import Broker, get_broker

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "odyssey"}

    @app.websocket("/ws/{post_id}")
    async def websocket_endpoint(
        websocket: WebSocket,
        post_id: str,
        broker: Broker = Depends(get_broker),
        session_factory=Depends(get_session_factory),
    ):
        from odyssey.ws.handler import websocket_handler
        await websocket_handler(websocket, post_id, broker, session_factory)

    return app


app = create_app()
