"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from visionloop.config import Settings
    from visionloop.ml.sources import ImageSource

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visionloop.api.routes import router
from visionloop.config import get_settings
from visionloop.ml.classifier import ClassifierConfig, OnnxClassifier
from visionloop.ml.classifier_manager import ClassifierManager
from visionloop.ml.inference import InferencePipeline
from visionloop.ml.model_manager import ModelStore
from visionloop.ml.sink import InteractiveChannel, ResultBoard
from visionloop.ml.sources import DirectoryImageSource, QueueImageSource

logger = logging.getLogger(__name__)


def build_source(settings: Settings) -> ImageSource:
    """Read from the configured directory, or accept frames pushed through the API."""
    if settings.images_dir:
        return DirectoryImageSource(settings.images_dir, orientation=settings.sensor_orientation)
    return QueueImageSource()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start the pipeline on startup, release the classifier on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting visionloop (model=%s, device=%s, num_threads=%s, source=%s)",
        settings.model,
        settings.device,
        settings.num_threads,
        settings.images_dir or "api",
    )

    loop = asyncio.get_running_loop()
    board = ResultBoard(history=settings.result_history)
    channel = InteractiveChannel(loop, board)
    store = ModelStore(settings)
    manager = ClassifierManager(
        factory=partial(OnnxClassifier.create, store=store, max_results=settings.max_results),
        sink=channel,
    )
    await loop.run_in_executor(None, manager.reconfigure, ClassifierConfig.from_settings(settings))

    pipeline = InferencePipeline(manager, build_source(settings), channel, max_image_pixels=settings.max_image_pixels)
    app.state.result_board = board
    app.state.classifier_manager = manager
    app.state.pipeline = pipeline
    pipeline.start()

    logger.info("visionloop ready")
    yield

    logger.info("Shutting down visionloop")
    await loop.run_in_executor(None, pipeline.shutdown)
    manager.shutdown()
    logger.info("visionloop shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="visionloop",
        description="Background image classification with swappable ONNX classifiers",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("visionloop.main:app", host=settings.host, port=settings.port)
