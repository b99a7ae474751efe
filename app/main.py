import logging
import os
import threading
import uuid
from functools import lru_cache
from typing import Callable, Dict, List, Literal, Optional, Set

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .storage import StorageService
from .studio import (
    BatchAborted,
    BinaryAsset,
    GenerationOrchestrator,
    QuotaStore,
    StorageUnavailable,
    get_generator,
)
from .studio.clients import list_providers
from .studio.models import BatchResult, Descriptor
from .studio.presets import (
    background_descriptor,
    descriptors_for_poses,
    infographic_descriptor,
    load_presets,
    thumbnail_descriptor,
    thumbnail_refine_descriptor,
)
from .studio.quota import can_generate, has_active_subscription, remaining_generations

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Character Studio",
    description="Quota-gated character variation generation",
    version="1.0.0"
)

# Security Configuration
API_KEY = os.getenv("API_KEY", "default-insecure-key")


def get_api_key(
    api_key_header: str = Header(None, alias="X-API-Key"),
    api_key_query: str = Query(None, alias="api_key")
):
    """
    Validate API Key from Header or Query Parameter.
    """
    if not API_KEY:
        return True  # Open if no key configured (dev mode)

    key = api_key_header or api_key_query
    if key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return key


@lru_cache
def get_quota_store() -> QuotaStore:
    return QuotaStore(StorageService())


def get_generator_factory() -> Callable:
    return get_generator


# One batch per user at a time: the quota record has a single writer
_active_users: Set[str] = set()
_active_users_guard = threading.Lock()


def acquire_user_lock(user_id: str) -> None:
    with _active_users_guard:
        if user_id in _active_users:
            raise HTTPException(status_code=409, detail=f"A batch is already running for {user_id}")
        _active_users.add(user_id)


def release_user_lock(user_id: str) -> None:
    with _active_users_guard:
        _active_users.discard(user_id)


# =============================================================================
# Request / Response Models
# =============================================================================

class DescriptorIn(BaseModel):
    """A caller-written variation, sent as-is to the generator."""
    id: str = Field(..., min_length=1)
    instruction: str = Field(..., min_length=1, description="Instruction text for this variation")
    reference_images: List[str] = Field(
        default_factory=list,
        description="Extra images (base64 or data URL) sent after the main reference image",
    )
    aspect_ratio: Optional[str] = Field(default=None, description="e.g. '16:9'")


class InfographicIn(BaseModel):
    content_image: str = Field(..., description="Image whose information is laid out")
    style_image: str = Field(..., description="Image whose look is copied")
    prompt: str = ""
    font_description: Optional[str] = None
    font_image: Optional[str] = None
    brand_color: Optional[str] = Field(default=None, description="e.g. '#FF6B00'")


class ThumbnailIn(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    style_prompt: str = ""
    face_images: List[str] = Field(default_factory=list)
    style_reference: Optional[str] = None
    inspiration_weight: Literal["low", "medium", "high"] = "medium"


class ThumbnailRefineIn(BaseModel):
    image: str = Field(..., description="Thumbnail to edit, base64 or data URL")
    instruction: str = Field(..., min_length=1)


class GenerateRequest(BaseModel):
    """
    Request body for a generation batch.

    Exactly one kind of batch per request: poses (the default), a background
    swap, caller-written descriptors, an infographic, a thumbnail, or a
    thumbnail refinement.
    """
    user_id: str = Field(..., min_length=1, description="Identity provider user id")
    provider: str = Field(default="gemini", description="Generator: 'gemini' or 'gemini-rest'")
    reference_image: Optional[str] = Field(default=None, description="Reference image as base64 or data URL")
    reference_mime_type: str = Field(default="image/jpeg")
    style: Optional[str] = Field(default=None, description="Art style preset value")
    poses: List[str] = Field(default_factory=list, description="Pose preset ids")
    extra: str = Field(default="", description="Additional description appended to every prompt")
    background_image: Optional[str] = Field(default=None, description="Background for a swap request")
    background_prompt: Optional[str] = None
    descriptors: Optional[List[DescriptorIn]] = None
    infographic: Optional[InfographicIn] = None
    thumbnail: Optional[ThumbnailIn] = None
    thumbnail_refine: Optional[ThumbnailRefineIn] = None

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user-123",
                "provider": "gemini",
                "reference_image": "data:image/jpeg;base64,...",
                "style": "comic-style",
                "poses": ["arms-crossed", "sitting-desk"],
            }
        }


class OutcomeResponse(BaseModel):
    descriptor_id: str
    status: str
    reason: Optional[str] = None
    detail: Optional[str] = None
    image: Optional[str] = None


class GenerateResponse(BaseModel):
    """Response from a generation batch."""
    status: str
    succeeded_count: int = 0
    failed_count: int = 0
    outcomes: List[OutcomeResponse] = []
    job_id: Optional[str] = None
    progress: Optional[Dict[str, int]] = None
    error: Optional[str] = None


def to_response(result: BatchResult, **extra) -> GenerateResponse:
    outcomes = []
    for outcome in result.outcomes:
        if outcome.succeeded:
            outcomes.append(OutcomeResponse(
                descriptor_id=outcome.descriptor_id,
                status="success",
                image=outcome.image.to_data_url(),
            ))
        else:
            outcomes.append(OutcomeResponse(
                descriptor_id=outcome.descriptor_id,
                status="failed",
                reason=outcome.reason.value,
                detail=outcome.detail,
            ))
    return GenerateResponse(
        status=result.status.value,
        succeeded_count=result.succeeded_count,
        failed_count=result.failed_count,
        outcomes=outcomes,
        **extra,
    )


BATCH_KINDS = ("background_image", "descriptors", "infographic", "thumbnail", "thumbnail_refine")


def decode_image(value: str) -> BinaryAsset:
    return BinaryAsset.from_base64(value)


def custom_descriptors(items: List[DescriptorIn], reference: Optional[BinaryAsset]) -> List[Descriptor]:
    ids = [item.id for item in items]
    if len(set(ids)) != len(ids):
        raise ValueError("Descriptor ids must be unique")
    lead = (reference,) if reference is not None else ()
    return [
        Descriptor(
            id=item.id,
            instruction_text=item.instruction,
            reference_assets=lead + tuple(decode_image(image) for image in item.reference_images),
            aspect_ratio=item.aspect_ratio,
        )
        for item in items
    ]


def build_descriptors(request: GenerateRequest) -> List[Descriptor]:
    requested = [kind for kind in BATCH_KINDS if getattr(request, kind) is not None]
    if len(requested) > 1:
        raise HTTPException(status_code=400, detail=f"Request only one of: {', '.join(requested)}")

    try:
        if request.infographic is not None:
            params = request.infographic
            return [infographic_descriptor(
                decode_image(params.content_image),
                decode_image(params.style_image),
                params.prompt,
                params.font_description,
                decode_image(params.font_image) if params.font_image else None,
                params.brand_color,
            )]
        if request.thumbnail is not None:
            params = request.thumbnail
            return [thumbnail_descriptor(
                params.title,
                [decode_image(face) for face in params.face_images],
                params.description,
                params.style_prompt,
                decode_image(params.style_reference) if params.style_reference else None,
                params.inspiration_weight,
            )]
        if request.thumbnail_refine is not None:
            params = request.thumbnail_refine
            return [thumbnail_refine_descriptor(decode_image(params.image), params.instruction)]

        reference = None
        if request.reference_image:
            reference = BinaryAsset.from_base64(request.reference_image, request.reference_mime_type)

        if request.descriptors is not None:
            descriptors = custom_descriptors(request.descriptors, reference)
        else:
            if reference is None:
                raise HTTPException(status_code=400, detail="reference_image is required")
            if request.background_image:
                background = decode_image(request.background_image)
                return [background_descriptor(reference, background, request.background_prompt)]
            if not request.style:
                raise HTTPException(status_code=400, detail="A style is required for pose generation")
            descriptors = descriptors_for_poses(load_presets(), reference, request.poses, request.style, request.extra)
        if not descriptors:
            raise HTTPException(status_code=400, detail="Select at least one pose or descriptor to generate")
        return descriptors
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e.args[0]))


def build_orchestrator(request: GenerateRequest, quota_store: QuotaStore, factory: Callable) -> GenerationOrchestrator:
    try:
        generator = factory(request.provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Generator error: {e}")
    if not generator.is_configured():
        missing = ", ".join(generator.get_missing_config())
        raise HTTPException(status_code=500, detail=f"Generator not configured. Missing: {missing}")
    return GenerationOrchestrator(quota_store, generator)


# =============================================================================
# Generation Endpoints
# =============================================================================

@app.post("/generate", response_model=GenerateResponse, tags=["Generation"])
def generate(
    request: GenerateRequest,
    auth: str = Depends(get_api_key),
    quota_store: QuotaStore = Depends(get_quota_store),
    factory: Callable = Depends(get_generator_factory),
):
    """
    Run a generation batch synchronously.

    Returns one outcome per requested variation. A batch where only some
    items succeeded is still a 200 response.
    """
    descriptors = build_descriptors(request)
    orchestrator = build_orchestrator(request, quota_store, factory)

    acquire_user_lock(request.user_id)
    try:
        result = orchestrator.run(request.user_id, descriptors)
    except ValueError as e:
        # Empty batch or invalid user id
        raise HTTPException(status_code=400, detail=str(e))
    except BatchAborted as e:
        # Must stay ahead of StorageUnavailable, which it subclasses
        logger.error(f"Batch aborted: {e}")
        body = to_response(e.result, error=str(e))
        return JSONResponse(status_code=503, content=body.model_dump())
    except StorageUnavailable as e:
        logger.error(f"Quota store unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    finally:
        release_user_lock(request.user_id)

    return to_response(result)


# Store for tracking background generation jobs
generation_jobs: dict = {}


@app.post("/generate/async", tags=["Generation"])
def generate_async(
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    auth: str = Depends(get_api_key),
    quota_store: QuotaStore = Depends(get_quota_store),
    factory: Callable = Depends(get_generator_factory),
):
    """
    Run a generation batch in the background.

    Returns immediately with a job ID. Use GET /generate/status/{job_id} to
    check progress and POST /generate/cancel/{job_id} to stop it between items.
    """
    descriptors = build_descriptors(request)
    orchestrator = build_orchestrator(request, quota_store, factory)
    acquire_user_lock(request.user_id)

    job_id = str(uuid.uuid4())
    cancel_event = threading.Event()
    generation_jobs[job_id] = {
        "status": "running",
        "user_id": request.user_id,
        "result": None,
        "error": None,
        "progress": {"current": 0, "total": len(descriptors)},
        "cancel": cancel_event,
    }

    def on_progress(index: int, total: int, outcome):
        generation_jobs[job_id]["progress"] = {"current": index + 1, "total": total}

    def run_generation_job():
        job = generation_jobs[job_id]
        try:
            result = orchestrator.run(request.user_id, descriptors, cancel_event, on_progress)
            job["result"] = result
            job["status"] = result.status.value
        except BatchAborted as e:
            job["result"] = e.result
            job["status"] = "aborted"
            job["error"] = str(e)
        except Exception as e:
            logger.error(f"Generation job {job_id} failed: {e}")
            job["status"] = "failed"
            job["error"] = str(e)
        finally:
            release_user_lock(request.user_id)

    background_tasks.add_task(run_generation_job)

    return {
        "job_id": job_id,
        "status": "started",
        "message": "Generation job started. Use GET /generate/status/{job_id} to check progress."
    }


@app.get("/generate/status/{job_id}", response_model=GenerateResponse, tags=["Generation"])
def get_generation_status(job_id: str):
    """
    Get the status of a background generation job.
    """
    if job_id not in generation_jobs:
        raise HTTPException(status_code=404, detail="Job not found")

    job = generation_jobs[job_id]
    if job["result"] is not None:
        response = to_response(job["result"], job_id=job_id, progress=job["progress"], error=job["error"])
        response.status = job["status"]
        return response
    return GenerateResponse(status=job["status"], job_id=job_id, progress=job["progress"], error=job["error"])


@app.post("/generate/cancel/{job_id}", tags=["Generation"])
def cancel_generation(job_id: str, auth: str = Depends(get_api_key)):
    """
    Request cancellation of a background job. The item in flight finishes;
    the remaining items are marked aborted.
    """
    if job_id not in generation_jobs:
        raise HTTPException(status_code=404, detail="Job not found")
    job = generation_jobs[job_id]
    job["cancel"].set()
    return {"job_id": job_id, "status": job["status"], "cancel_requested": True}


# =============================================================================
# Quota Endpoints
# =============================================================================

def quota_payload(record) -> dict:
    return {
        **record.to_dict(),
        "can_generate": can_generate(record),
        "subscription_active": has_active_subscription(record),
        "remaining": remaining_generations(record),
    }


@app.get("/quota", tags=["Quota"])
def list_quota_users(
    auth: str = Depends(get_api_key),
    quota_store: QuotaStore = Depends(get_quota_store),
):
    """
    List user ids that have a stored quota record.
    """
    try:
        return {"users": quota_store.list_users()}
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/quota/{user_id}", tags=["Quota"])
def get_quota(
    user_id: str,
    auth: str = Depends(get_api_key),
    quota_store: QuotaStore = Depends(get_quota_store),
):
    """
    Current usage, subscription and remaining allowance for a user. Requires API Key.
    """
    try:
        return quota_payload(quota_store.load(user_id))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.post("/quota/{user_id}/reset", tags=["Quota"])
def reset_quota(
    user_id: str,
    auth: str = Depends(get_api_key),
    quota_store: QuotaStore = Depends(get_quota_store),
):
    """
    Reset free usage for a user. Requires API Key.
    """
    try:
        return quota_payload(quota_store.reset(user_id))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


# =============================================================================
# Catalog Endpoints
# =============================================================================

@app.get("/presets", tags=["Catalog"])
def get_presets():
    """
    Pose and art-style presets available for generation.
    """
    try:
        return load_presets().to_dict()
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/providers", tags=["Catalog"])
def get_providers():
    """
    List available generators and their configuration status.
    """
    return {"providers": list_providers()}
