"""API route definitions."""

from __future__ import annotations

import asyncio
import queue
import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from visionloop.api.middleware import verify_api_key
from visionloop.api.schemas import (
    ClassifierConfigRequest,
    ClassifierResponse,
    ErrorResponse,
    FrameAccepted,
    HealthResponse,
    InferenceResultResponse,
    ModelInfo,
    ModelsResponse,
    NoticesResponse,
)
from visionloop.ml.classifier import ClassifierConfig
from visionloop.ml.errors import ConfigIncompatibilityError
from visionloop.ml.model_manager import MODEL_REGISTRY, Device
from visionloop.ml.sources import Frame, QueueImageSource

if TYPE_CHECKING:
    from visionloop.config import Settings
    from visionloop.ml.classifier_manager import ClassifierManager
    from visionloop.ml.inference import InferencePipeline
    from visionloop.ml.sink import ResultBoard

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_manager(request: Request) -> ClassifierManager:
    manager: ClassifierManager = request.app.state.classifier_manager
    return manager


def _get_pipeline(request: Request) -> InferencePipeline:
    pipeline: InferencePipeline = request.app.state.pipeline
    return pipeline


def _get_board(request: Request) -> ResultBoard:
    board: ResultBoard = request.app.state.result_board
    return board


def _classifier_state(manager: ClassifierManager) -> ClassifierResponse:
    handle = manager.current()
    config = manager.config
    if handle is None or config is None:
        return ClassifierResponse(active=False)
    return ClassifierResponse(
        active=True,
        model=config.model,
        device=config.device,
        num_threads=config.num_threads,
        input_width=handle.input_width,
        input_height=handle.input_height,
    )


@router.get(
    "/classifier",
    response_model=ClassifierResponse,
    summary="Current classifier configuration",
)
async def get_classifier(request: Request) -> ClassifierResponse:
    """Return the live classifier configuration and its input size."""
    return _classifier_state(_get_manager(request))


@router.put(
    "/classifier",
    response_model=ClassifierResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Reconfigure the classifier",
)
async def put_classifier(body: ClassifierConfigRequest, request: Request) -> ClassifierResponse | JSONResponse:
    """Replace the classifier. Waits for any in-flight inference without blocking the event loop."""
    manager = _get_manager(request)
    config = ClassifierConfig(model=body.model, device=body.device, num_threads=body.num_threads)

    loop = asyncio.get_running_loop()
    error = await loop.run_in_executor(None, manager.reconfigure, config)

    if isinstance(error, ConfigIncompatibilityError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(error)})
    if error is not None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": f"Failed to create classifier: {error}"},
        )
    return _classifier_state(manager)


@router.post(
    "/frames",
    response_model=FrameAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Submit an image for classification",
)
async def submit_frame(
    file: UploadFile,
    request: Request,
    orientation: int | None = Query(default=None, multiple_of=90, description="Clockwise rotation in degrees"),
) -> FrameAccepted | JSONResponse:
    """Queue an uploaded image; the result appears under /results once processed."""
    settings = _get_settings(request)
    source = _get_pipeline(request).source
    if not isinstance(source, QueueImageSource):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": "Pipeline is reading from a directory; frames cannot be pushed"},
        )

    data = await file.read()
    if len(data) > settings.max_file_size:
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={"detail": f"File exceeds {settings.max_file_size} bytes"},
        )

    image_id = file.filename or uuid.uuid4().hex
    frame = Frame(
        image_id=image_id,
        data=data,
        orientation=settings.sensor_orientation if orientation is None else orientation,
    )

    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, source.submit, frame, settings.submit_timeout)
    except queue.Full:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Pipeline is busy, try again later"},
        )
    except RuntimeError as exc:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})
    return FrameAccepted(image_id=image_id)


@router.get(
    "/results",
    response_model=list[InferenceResultResponse],
    summary="Recent inference results",
)
async def list_results(
    request: Request,
    limit: int | None = Query(default=None, ge=1),
) -> list[InferenceResultResponse]:
    """Return retained results in submission order."""
    board = _get_board(request)
    return [InferenceResultResponse.from_result(r) for r in board.results(limit)]


@router.get(
    "/results/latest",
    response_model=InferenceResultResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Most recent inference result",
)
async def latest_result(request: Request) -> InferenceResultResponse | JSONResponse:
    """Return the result currently on display."""
    latest = _get_board(request).latest
    if latest is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "No results yet"})
    return InferenceResultResponse.from_result(latest)


@router.get(
    "/notices",
    response_model=NoticesResponse,
    summary="User-visible notices",
)
async def list_notices(request: Request) -> NoticesResponse:
    """Return notices such as rejected configurations."""
    return NoticesResponse(notices=_get_board(request).notices())


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    manager = _get_manager(request)
    pipeline = _get_pipeline(request)
    config = manager.config
    return HealthResponse(
        status="ok",
        device=config.device if config is not None else _get_settings(request).device,
        model=config.model if config is not None else None,
        classifier_ready=manager.current() is not None,
        pipeline_running=pipeline.running,
        processed=pipeline.processed,
        skipped=pipeline.skipped,
        failed=pipeline.failed,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status on the configured device."""
    settings = _get_settings(request)
    config = _get_manager(request).config
    device = config.device if config is not None else Device(settings.device)
    active = config.model if config is not None else None

    models: list[ModelInfo] = []
    for model, spec in MODEL_REGISTRY.items():
        if model == active:
            model_status = "active"
        elif spec.quantized and device.accelerated:
            model_status = "unsupported"
        else:
            model_status = "available"
        models.append(ModelInfo(name=model, quantized=spec.quantized, status=model_status))

    return ModelsResponse(models=models)
