"""
Node Protocol - What a processing step is and which ports it exposes.

A node is a typed step in the workflow graph. Its ``type`` selects an entry in
the node catalog, which declares the node's input and output handles:

- Each handle has a semantic type (text, image, video, any)
- Input handles may be required, may accept several edges (fan-in), and may
  restrict which node kinds are allowed to feed them

The catalog is the execution contract only. Labels are kept so error messages
can name ports the way the editor shows them.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class NodeKind(StrEnum):
    """Node types, spelled the way the editor stores them."""

    TEXT = "text"
    UPLOAD_IMAGE = "uploadImage"
    UPLOAD_VIDEO = "uploadVideo"
    LLM = "llm"
    CROP_IMAGE = "cropImage"
    EXTRACT_FRAME = "extractFrame"


class HandleType(StrEnum):
    """Semantic type carried by a handle."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    ANY = "any"


class NodeStatus(StrEnum):
    """Editor-facing status stored in ``node.data["status"]``."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class HandleSpec:
    """A named, typed port on a node."""

    id: str
    type: HandleType
    label: str = ""
    required: bool = False
    fan_in: bool = False  # accepts several edges, collected into an ordered list
    allowed_source_kinds: tuple[NodeKind, ...] | None = None  # None = any kind

    def accepts(self, source_type: HandleType) -> bool:
        """Type compatibility: ``any`` accepts everything, otherwise exact match."""
        return self.type == HandleType.ANY or self.type == source_type


@dataclass(frozen=True)
class NodeKindSpec:
    """Execution contract for one node kind."""

    kind: NodeKind
    label: str
    inputs: tuple[HandleSpec, ...] = ()
    outputs: tuple[HandleSpec, ...] = field(default=())

    def get_input(self, handle_id: str | None) -> HandleSpec | None:
        for handle in self.inputs:
            if handle.id == handle_id:
                return handle
        return None

    def get_output(self, handle_id: str | None) -> HandleSpec | None:
        for handle in self.outputs:
            if handle.id == handle_id:
                return handle
        return None

    @property
    def required_inputs(self) -> list[str]:
        return [h.id for h in self.inputs if h.required]


NODE_CATALOG: dict[str, NodeKindSpec] = {
    NodeKind.TEXT: NodeKindSpec(
        kind=NodeKind.TEXT,
        label="Prompt",
        outputs=(HandleSpec("output", HandleType.TEXT, "Text Output"),),
    ),
    NodeKind.UPLOAD_IMAGE: NodeKindSpec(
        kind=NodeKind.UPLOAD_IMAGE,
        label="Upload Image",
        outputs=(HandleSpec("output", HandleType.IMAGE, "Image URL"),),
    ),
    NodeKind.UPLOAD_VIDEO: NodeKindSpec(
        kind=NodeKind.UPLOAD_VIDEO,
        label="Upload Video",
        outputs=(HandleSpec("output", HandleType.VIDEO, "Video URL"),),
    ),
    NodeKind.LLM: NodeKindSpec(
        kind=NodeKind.LLM,
        label="Run LLM",
        inputs=(
            HandleSpec("system_prompt", HandleType.TEXT, "System Prompt"),
            HandleSpec("user_message", HandleType.TEXT, "User Message", required=True),
            HandleSpec("images", HandleType.IMAGE, "Images", fan_in=True),
        ),
        outputs=(HandleSpec("output", HandleType.TEXT, "Response"),),
    ),
    NodeKind.CROP_IMAGE: NodeKindSpec(
        kind=NodeKind.CROP_IMAGE,
        label="Crop Image",
        inputs=(
            HandleSpec("image_url", HandleType.IMAGE, "Image", required=True),
            HandleSpec("x_percent", HandleType.TEXT, "X %"),
            HandleSpec("y_percent", HandleType.TEXT, "Y %"),
            HandleSpec("width_percent", HandleType.TEXT, "Width %"),
            HandleSpec("height_percent", HandleType.TEXT, "Height %"),
        ),
        outputs=(HandleSpec("output", HandleType.IMAGE, "Cropped Image"),),
    ),
    NodeKind.EXTRACT_FRAME: NodeKindSpec(
        kind=NodeKind.EXTRACT_FRAME,
        label="Extract Frame",
        inputs=(
            HandleSpec(
                "video_url",
                HandleType.VIDEO,
                "Video",
                required=True,
                allowed_source_kinds=(NodeKind.UPLOAD_VIDEO,),
            ),
            HandleSpec("timestamp", HandleType.TEXT, "Timestamp"),
        ),
        outputs=(HandleSpec("output", HandleType.IMAGE, "Frame Image"),),
    ),
}


class NodeSpec(BaseModel):
    """
    A node as authored in the editor.

    Example:
        NodeSpec(id="t1", type="text", data={"text": "hello"})

    ``data`` holds kind-specific configuration (``text``, ``imageUrl``,
    ``model``, ``xPercent``...) plus the last persisted ``output``, ``status``
    and ``error``. Editor-only fields such as ``position`` are preserved.
    """

    id: str
    type: str = Field(description="Node kind, see NodeKind")
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @property
    def kind_spec(self) -> NodeKindSpec | None:
        return NODE_CATALOG.get(self.type)

    @property
    def label(self) -> str:
        spec = self.kind_spec
        return self.data.get("label") or (spec.label if spec else self.type)

    @property
    def has_output(self) -> bool:
        """True when a previous run left a persisted output on the node."""
        return self.data.get("output") is not None

    @property
    def output(self) -> Any:
        return self.data.get("output")
