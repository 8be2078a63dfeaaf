import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .logging_config import configure_logging
from .services import build_services
from .stats_routes import router as stats_router
from .webhook_routes import router as webhook_router


configure_logging()
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    services = build_services(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        services.event_counter.attach()
        logger.info("Webhook hub storing data under %s", settings.data_dir)
        logger.info("Webhook secret configured: %s (policy=%s)", bool(settings.webhook_secret), settings.signature_policy)
        try:
            yield
        finally:
            services.event_counter.detach()

    app = FastAPI(title="Pulse Webhook Hub", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.hub = services
    app.include_router(webhook_router)
    app.include_router(stats_router)

    @app.get("/healthz")
    def health() -> Dict[str, object]:
        return {"status": "ok", "profiles": len(services.store.load())}

    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    logger.info("Starting webhook hub on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
