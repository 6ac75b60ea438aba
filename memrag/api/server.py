"""
FastAPI application.

Exposes memory-augmented chat, image/audio/video ingestion, and memory
management over HTTP. Errors are returned as ``{"error": message}`` with
the status carried by the exception class.
"""

import json
import logging
import threading
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..config import ConfigManager
from ..errors import MemragError, ValidationError
from ..models import ChatMessage, MediaAsset, Modality, VideoFrame
from ..services import ServiceContainer

logger = logging.getLogger(__name__)

_services_lock = threading.Lock()


class ChatRequest(BaseModel):
    message: Optional[str] = None
    history: Optional[List[Dict[str, Any]]] = None
    conversationHistory: Optional[List[Dict[str, Any]]] = None
    useMemory: bool = True


class MemoryRequest(BaseModel):
    content: Optional[str] = None
    type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


def get_services(request: Request) -> ServiceContainer:
    """Return the process-wide services, building them once on first use."""
    services = getattr(request.app.state, "services", None)
    if services is not None:
        return services

    with _services_lock:
        services = getattr(request.app.state, "services", None)
        if services is None:
            config = ConfigManager().load_config()
            services = ServiceContainer.from_config(config)
            request.app.state.services = services
    return services


def read_upload(upload: Optional[UploadFile], missing_message: str) -> MediaAsset:
    if upload is None:
        raise ValidationError(missing_message)
    data = upload.file.read()
    if not data:
        raise ValidationError(missing_message)
    return MediaAsset(
        data=data,
        mime_type=upload.content_type or "application/octet-stream",
        name=upload.filename or "upload"
    )


def parse_frames(raw: Optional[str]) -> List[VideoFrame]:
    """Parse the ``frames`` form field: a JSON list of ``{timestamp, base64}``."""
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid frames JSON: {e.msg}", cause=e)
    if not isinstance(items, list):
        raise ValidationError("Frames must be a JSON list")

    frames = []
    for item in items:
        if not isinstance(item, dict) or not item.get("base64"):
            raise ValidationError("Each frame needs a base64 field")
        try:
            timestamp = float(item.get("timestamp", 0))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid frame timestamp: {item.get('timestamp')!r}", cause=e)
        frames.append(VideoFrame(timestamp=timestamp, base64=item["base64"]))
    return frames


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Pre-built services; built lazily from the environment when None
    """
    app = FastAPI(
        title="memrag API",
        description="Memory-augmented multimodal assistant",
        version=__version__
    )
    app.state.services = services

    cors_enabled = services.config.api.cors_enabled if services else True
    if cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=services.config.api.cors_origins if services else ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(MemragError)
    async def memrag_error_handler(request: Request, exc: MemragError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        field = ".".join(str(loc) for loc in errors[0]["loc"]) if errors else "request"
        message = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": f"{field}: {message}"})

    @app.post("/api/chat")
    def chat(body: ChatRequest, services: ServiceContainer = Depends(get_services)):
        if not body.message or not body.message.strip():
            raise ValidationError("Missing message")
        raw_history = body.history if body.history is not None else body.conversationHistory
        history = [ChatMessage.from_dict(turn) for turn in raw_history or []]

        result = services.memory.chat_with_context(body.message, history, use_memory=body.useMemory)
        return {
            "response": result.response,
            "context": result.context.to_dict(),
            "memorySaved": result.memory_saved,
        }

    @app.post("/api/image")
    def image(
        image: Optional[UploadFile] = File(None),
        question: Optional[str] = Form(None),
        saveToMemory: bool = Form(False),
        services: ServiceContainer = Depends(get_services)
    ):
        asset = read_upload(image, "Missing image")
        result = services.image.ingest(asset, question, save_to_memory=saveToMemory)

        payload = {"response": result.response, "memorySaved": result.memory_saved}
        if result.image_url:
            payload["imageUrl"] = result.image_url
        return payload

    @app.post("/api/audio")
    def audio(
        audio: Optional[UploadFile] = File(None),
        question: Optional[str] = Form(None),
        saveToMemory: bool = Form(False),
        services: ServiceContainer = Depends(get_services)
    ):
        asset = read_upload(audio, "Missing audio file")
        result = services.audio.ingest(asset, question, save_to_memory=saveToMemory)

        payload = {
            "transcript": result.transcript,
            "memorySaved": result.memory_saved,
            "fileSizeMB": result.file_size_mb,
            "transcriptionSkipped": result.transcription_skipped,
        }
        if result.answer is not None:
            payload["answer"] = result.answer
        if result.audio_url:
            payload["audioUrl"] = result.audio_url
        return payload

    @app.post("/api/video")
    def video(
        video: Optional[UploadFile] = File(None),
        frames: Optional[str] = Form(None),
        audioTranscript: Optional[str] = Form(None),
        question: Optional[str] = Form(None),
        saveToMemory: bool = Form(True),
        services: ServiceContainer = Depends(get_services)
    ):
        parsed_frames = parse_frames(frames)
        asset = None
        if video is not None:
            data = video.file.read()
            if data:
                asset = MediaAsset(
                    data=data,
                    mime_type=video.content_type or "application/octet-stream",
                    name=video.filename or "video"
                )
        if not parsed_frames and asset is None:
            raise ValidationError("Missing frames")

        result = services.video.ingest(
            question,
            frames=parsed_frames,
            asset=asset,
            audio_transcript=audioTranscript,
            save_to_memory=saveToMemory
        )

        payload = {
            "answer": result.answer,
            "frameAnalyses": [analysis.to_dict() for analysis in result.frame_analyses],
            "audioTranscript": result.audio_transcript,
            "memorySaved": result.memory_saved,
        }
        if result.video_url:
            payload["videoUrl"] = result.video_url
        return payload

    @app.post("/api/memory")
    def add_memory(body: MemoryRequest, services: ServiceContainer = Depends(get_services)):
        if not body.content or not body.content.strip():
            raise ValidationError("Missing content")
        if not body.type:
            raise ValidationError("Missing type")
        modality = Modality.parse(body.type)

        memory_id = services.memory.store(body.content, modality, body.metadata)
        return {"id": memory_id, "success": True}

    @app.delete("/api/memory")
    def clear_memory(services: ServiceContainer = Depends(get_services)):
        result = services.memory.clear()
        return {"success": True, "deleted": result.deleted, "message": result.message}

    @app.get("/api/stats")
    def stats(services: ServiceContainer = Depends(get_services)):
        result = services.memory.stats()
        return {"totalMemories": result.total_memories, "byType": result.by_type, "exact": result.exact}

    @app.get("/api/health")
    def health(services: ServiceContainer = Depends(get_services)):
        info = services.vector_store.get_collection_info()
        return {"status": "ok" if info else "degraded", "vectorStore": info}

    return app
