import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings
from errors import register_error_handlers

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Velmora Nights backend starting up...")
    yield
    # Cancel every countdown and pending bot action before the loop goes away
    from agents.game_master import get_game_master
    get_game_master().shutdown()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Velmora Nights",
    version="0.1.0",
    description="Real-time social deduction game with synthetic bot participants",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

register_error_handlers(app)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "velmora-nights", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
