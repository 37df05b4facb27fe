"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from converter.api.routes import router
from converter.batch import BatchOrchestrator, ConversionQueue
from converter.config import CORS_ORIGINS, logger as config_logger
from converter.conversion.service import ConversionService

logging.getLogger("uvicorn").setLevel(logging.INFO)


def create_app(service: Optional[ConversionService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or ConversionService()
        app.state.service = svc
        app.state.queue = ConversionQueue(BatchOrchestrator(svc))
        app.state.results = {}
        config_logger.info("Converter API started")
        yield
        config_logger.info("Converter API shutting down")
        svc.loader.close()

    app = FastAPI(
        title="Drop Converter",
        description="Convert dropped images and media files locally, with progress tracking.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from converter.config import HOST, PORT
    uvicorn.run("converter.main:app", host=HOST, port=PORT, reload=True)
