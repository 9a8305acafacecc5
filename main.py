from fastapi import FastAPI
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.apis.auth.main import router as auth_router
from app.apis.generate.main import router as generate_router
from app.apis.thematics.main import router as thematics_router
from app.apis.flashcards.main import router as flashcards_router
from app.apis.study.main import router as study_router
from app.apis.metrics.main import router as metrics_router
from app.modules.flashcards.main import FlashcardPipeline

import uvicorn
from fastapi.middleware.cors import CORSMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pipeline = FlashcardPipeline.from_settings(settings)
    app.state.pipeline = pipeline
    pipeline.rate_limiter.start()
    if not await pipeline.rasterizer.is_available():
        logger.warning("pdftoppm not found; PDF uploads will fail until installed")
    try:
        yield
    finally:
        await pipeline.rate_limiter.stop()


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.app.name, version=settings.app.version, lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(generate_router)
    app.include_router(thematics_router)
    app.include_router(flashcards_router)
    app.include_router(study_router)
    app.include_router(metrics_router)

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "app": settings.app.name,
            "version": settings.app.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    try:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.app.port,
            reload=not settings.app.is_production,
        )
    except Exception as e:
        logger.error("An error occurred when starting the server: %s", e)
