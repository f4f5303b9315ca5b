"""
Node Executors - One executor per node kind, looked up through a registry.

Data nodes (text, uploadImage, uploadVideo) return a value straight from
``node.data``. Compute nodes (llm, cropImage, extractFrame) build a job
payload from their resolved inputs and hand it to the job client, which runs
it on the backend or in-process.

Executors raise; they never record anything. The orchestrator turns the
return value or exception into the node's outcome.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from nodeflow.config import DEFAULT_MODEL
from nodeflow.errors import ExternalJobError, MissingInput, UnknownNodeKind
from nodeflow.graph.node import NodeKind, NodeSpec
from nodeflow.jobs.client import JobClient
from nodeflow.jobs.tasks import CROP_IMAGE_JOB, EXTRACT_FRAME_JOB, LLM_JOB


@dataclass
class NodeContext:
    """Everything a node executor may look at."""

    node: NodeSpec
    inputs: dict[str, Any] = field(default_factory=dict)
    run_id: str = ""
    job_client: JobClient | None = None
    default_model: str = DEFAULT_MODEL

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def data(self) -> dict[str, Any]:
        return self.node.data

    def input_or_data(self, handle: str, data_key: str, default: Any = None) -> Any:
        """Connected input first, then the node's own configuration, then ``default``."""
        value = self.inputs.get(handle)
        if value is None or value == "":
            value = self.data.get(data_key)
        if value is None or value == "":
            return default
        return value

    async def run_job(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self.job_client is None:
            raise ExternalJobError(f"No job client configured for {kind}")
        return await self.job_client.run_job(kind, payload)


class NodeExecutor(ABC):
    """Executes one node kind."""

    @abstractmethod
    async def execute(self, ctx: NodeContext) -> Any:
        """Return the node's output value, or raise."""
        pass


# ---------------------------------------------------------------------------
# Data nodes
# ---------------------------------------------------------------------------


class TextNodeExecutor(NodeExecutor):
    async def execute(self, ctx: NodeContext) -> str:
        return ctx.data.get("text") or ""


def _require_server_url(url: str | None, missing_message: str) -> str:
    if not url:
        raise MissingInput(missing_message)
    if url.startswith("blob:"):
        raise MissingInput(f"{missing_message}: blob: URLs only exist in the browser")
    return url


class UploadImageExecutor(NodeExecutor):
    async def execute(self, ctx: NodeContext) -> str:
        return _require_server_url(ctx.data.get("imageUrl"), "No image uploaded")


class UploadVideoExecutor(NodeExecutor):
    async def execute(self, ctx: NodeContext) -> str:
        return _require_server_url(ctx.data.get("videoUrl"), "No video uploaded")


# ---------------------------------------------------------------------------
# Compute nodes
# ---------------------------------------------------------------------------


def _job_field(output: dict[str, Any], name: str, kind: str) -> Any:
    if not isinstance(output, dict) or output.get(name) is None:
        raise ExternalJobError(f"{kind} job returned no {name}")
    return output[name]


class LLMExecutor(NodeExecutor):
    """Multimodal LLM call: user message, optional system prompt and images."""

    async def execute(self, ctx: NodeContext) -> str:
        user_message = ctx.input_or_data("user_message", "userMessage")
        if not user_message:
            raise MissingInput("User message is required")

        images = ctx.inputs.get("images") or []
        if isinstance(images, str):
            images = [images]

        payload = {
            "model": ctx.data.get("model") or ctx.default_model,
            "systemPrompt": ctx.input_or_data("system_prompt", "systemPrompt", ""),
            "userMessage": str(user_message),
            "images": list(images),
            "nodeId": ctx.node_id,
            "runId": ctx.run_id,
        }
        output = await ctx.run_job(LLM_JOB, payload)
        return _job_field(output, "response", LLM_JOB)


_CROP_FIELDS = (
    ("x_percent", "xPercent", 0.0),
    ("y_percent", "yPercent", 0.0),
    ("width_percent", "widthPercent", 100.0),
    ("height_percent", "heightPercent", 100.0),
)


def _percent_value(raw: Any, handle: str) -> float:
    try:
        value = float(str(raw).strip().rstrip("%"))
    except ValueError as e:
        raise MissingInput(f"Invalid {handle}: {raw!r} is not a number") from e
    if not math.isfinite(value):
        raise MissingInput(f"Invalid {handle}: {raw!r} is not a number")
    return min(max(value, 0.0), 100.0)


def crop_rectangle(ctx: NodeContext) -> tuple[float, float, float, float]:
    """Crop rectangle in percent, kept inside the image."""
    x, y, width, height = (
        _percent_value(ctx.input_or_data(handle, key, default), handle)
        for handle, key, default in _CROP_FIELDS
    )
    width = min(width, 100.0 - x)
    height = min(height, 100.0 - y)
    return x, y, width, height


class CropImageExecutor(NodeExecutor):
    async def execute(self, ctx: NodeContext) -> str:
        image_url = _require_server_url(ctx.inputs.get("image_url"), "Image URL is required")
        x, y, width, height = crop_rectangle(ctx)
        payload = {
            "imageUrl": image_url,
            "x": x,
            "y": y,
            "width": width,
            "height": height,
            "nodeId": ctx.node_id,
            "runId": ctx.run_id,
        }
        output = await ctx.run_job(CROP_IMAGE_JOB, payload)
        return _job_field(output, "croppedUrl", CROP_IMAGE_JOB)


def parse_timestamp(value: Any) -> float:
    """
    Parse a frame timestamp into seconds.

    Accepts ``"h:m:s"``, ``"m:s"`` and plain seconds. Percentages resolve to 0
    because the video duration is not known here. Anything unparseable is 0.
    """
    text = str(value if value is not None else "").strip()
    if not text or "%" in text:
        return 0.0
    try:
        if ":" in text:
            parts = [float(p) for p in text.split(":")]
            if len(parts) == 3:
                seconds = parts[0] * 3600 + parts[1] * 60 + parts[2]
            elif len(parts) == 2:
                seconds = parts[0] * 60 + parts[1]
            else:
                return 0.0
        else:
            seconds = float(text)
    except ValueError:
        return 0.0
    if not math.isfinite(seconds) or seconds < 0:
        return 0.0
    return seconds


class ExtractFrameExecutor(NodeExecutor):
    async def execute(self, ctx: NodeContext) -> str:
        video_url = _require_server_url(ctx.inputs.get("video_url"), "Video URL is required")
        payload = {
            "videoUrl": video_url,
            "timestamp": parse_timestamp(ctx.input_or_data("timestamp", "timestamp", "0")),
            "nodeId": ctx.node_id,
            "runId": ctx.run_id,
        }
        output = await ctx.run_job(EXTRACT_FRAME_JOB, payload)
        return _job_field(output, "frameUrl", EXTRACT_FRAME_JOB)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ExecutorRegistry:
    """Maps node kind -> executor."""

    def __init__(self, executors: Mapping[str, NodeExecutor] | None = None):
        self._executors: dict[str, NodeExecutor] = dict(executors or {})

    def register(self, kind: str, executor: NodeExecutor) -> None:
        self._executors[kind] = executor

    def get(self, kind: str) -> NodeExecutor:
        executor = self._executors.get(kind)
        if executor is None:
            raise UnknownNodeKind(f"Unknown node type: {kind}")
        return executor

    def __contains__(self, kind: object) -> bool:
        return kind in self._executors

    def kinds(self) -> list[str]:
        return list(self._executors)


def default_registry() -> ExecutorRegistry:
    """Registry with an executor for every built-in node kind."""
    return ExecutorRegistry(
        {
            NodeKind.TEXT: TextNodeExecutor(),
            NodeKind.UPLOAD_IMAGE: UploadImageExecutor(),
            NodeKind.UPLOAD_VIDEO: UploadVideoExecutor(),
            NodeKind.LLM: LLMExecutor(),
            NodeKind.CROP_IMAGE: CropImageExecutor(),
            NodeKind.EXTRACT_FRAME: ExtractFrameExecutor(),
        }
    )
