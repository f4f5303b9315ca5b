"""
In-process job handlers.

Each handler takes the same payload the remote task receives and returns the
same output shape, so the client can fall back without the caller noticing:

- ``llm-execution``  -> {"response", "model", "tokensUsed"}
- ``crop-image``     -> {"croppedUrl", "cropDimensions", "assemblyId"}
- ``extract-frame``  -> {"frameUrl", "timestamp", "assemblyId"}
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from nodeflow.errors import ExternalJobError
from nodeflow.llm.provider import build_user_content

if TYPE_CHECKING:
    from nodeflow.config import EngineConfig
    from nodeflow.llm.provider import LLMProvider
    from nodeflow.media.transloadit import MediaProcessor

logger = logging.getLogger(__name__)

LLM_JOB = "llm-execution"
CROP_IMAGE_JOB = "crop-image"
EXTRACT_FRAME_JOB = "extract-frame"

JOB_KINDS = (LLM_JOB, CROP_IMAGE_JOB, EXTRACT_FRAME_JOB)


def run_llm(llm: LLMProvider, payload: dict[str, Any]) -> dict[str, Any]:
    user_message = payload.get("userMessage")
    if not user_message:
        raise ExternalJobError("User message is required")

    images = []
    for url in payload.get("images") or []:
        if url.startswith("blob:"):
            logger.warning(f"Skipping browser-only blob: URL for node {payload.get('nodeId')}")
            continue
        images.append(url)

    response = llm.complete(
        messages=[{"role": "user", "content": build_user_content(user_message, images)}],
        system=payload.get("systemPrompt") or "",
        model=payload.get("model") or None,
    )
    return {
        "nodeId": payload.get("nodeId"),
        "runId": payload.get("runId"),
        "response": response.content,
        "model": response.model,
        "tokensUsed": response.total_tokens,
    }


def run_crop(media: MediaProcessor, payload: dict[str, Any]) -> dict[str, Any]:
    image_url = payload.get("imageUrl")
    if not image_url:
        raise ExternalJobError("Image URL is required")

    dims = {k: payload.get(k) for k in ("x", "y", "width", "height")}
    result = media.crop(image_url, dims["x"], dims["y"], dims["width"], dims["height"])
    return {
        "nodeId": payload.get("nodeId"),
        "runId": payload.get("runId"),
        "croppedUrl": result.url,
        "cropDimensions": dims,
        "assemblyId": result.assembly_id,
    }


def run_extract_frame(media: MediaProcessor, payload: dict[str, Any]) -> dict[str, Any]:
    video_url = payload.get("videoUrl")
    if not video_url:
        raise ExternalJobError("Video URL is required")

    timestamp = payload.get("timestamp") or 0
    result = media.extract_frame(video_url, timestamp)
    return {
        "nodeId": payload.get("nodeId"),
        "runId": payload.get("runId"),
        "frameUrl": result.url,
        "timestamp": timestamp,
        "assemblyId": result.assembly_id,
    }


class _Lazy:
    """Provider reference built on first use."""

    def __init__(self, instance: Any, factory: Callable[[], Any]):
        self._instance = instance
        self._factory = factory

    def get(self) -> Any:
        if self._instance is None:
            self._instance = self._factory()
        return self._instance


def build_local_handlers(
    llm: LLMProvider | None = None,
    media: MediaProcessor | None = None,
    config: EngineConfig | None = None,
) -> dict[str, Callable[[dict[str, Any]], dict[str, Any]]]:
    """
    Map each job kind to its in-process implementation.

    Providers not passed in are created from ``config`` the first time a job
    needs them.
    """

    def make_llm() -> LLMProvider:
        from nodeflow.config import EngineConfig
        from nodeflow.llm.litellm import LiteLLMProvider

        cfg = config or EngineConfig()
        return LiteLLMProvider(model=cfg.default_model, api_key=cfg.llm_api_key)

    def make_media() -> MediaProcessor:
        from nodeflow.config import EngineConfig
        from nodeflow.media.transloadit import TransloaditProcessor

        cfg = config or EngineConfig()
        return TransloaditProcessor(cfg.transloadit_key or "", cfg.transloadit_secret or "")

    llm_ref = _Lazy(llm, make_llm)
    media_ref = _Lazy(media, make_media)

    return {
        LLM_JOB: lambda payload: run_llm(llm_ref.get(), payload),
        CROP_IMAGE_JOB: lambda payload: run_crop(media_ref.get(), payload),
        EXTRACT_FRAME_JOB: lambda payload: run_extract_frame(media_ref.get(), payload),
    }
