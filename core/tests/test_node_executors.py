"""
Tests for the per-kind node executors and the executor registry.
"""

import pytest

from nodeflow.errors import ExternalJobError, MissingInput, UnknownNodeKind
from nodeflow.graph.node import NodeKind, NodeSpec
from nodeflow.graph.node_executors import (
    CropImageExecutor,
    ExecutorRegistry,
    ExtractFrameExecutor,
    LLMExecutor,
    NodeContext,
    TextNodeExecutor,
    UploadImageExecutor,
    UploadVideoExecutor,
    crop_rectangle,
    default_registry,
    parse_timestamp,
)
from nodeflow.jobs.client import JobClient, LocalJobStrategy


class RecordingHandlers:
    """Local job handlers that remember every payload."""

    def __init__(self, outputs: dict | None = None):
        self.payloads: dict[str, list[dict]] = {}
        self.outputs = outputs or {
            "llm-execution": {"response": "llm says hi"},
            "crop-image": {"croppedUrl": "https://cdn/cropped.png"},
            "extract-frame": {"frameUrl": "https://cdn/frame.png"},
        }

    def client(self) -> JobClient:
        def make(kind):
            def handler(payload):
                self.payloads.setdefault(kind, []).append(payload)
                return self.outputs[kind]

            return handler

        return JobClient(local=LocalJobStrategy({kind: make(kind) for kind in self.outputs}))


def _ctx(node: NodeSpec, inputs: dict | None = None, client: JobClient | None = None) -> NodeContext:
    return NodeContext(
        node=node,
        inputs=inputs or {},
        run_id="run_test",
        job_client=client,
        default_model="gemini/gemini-2.0-flash",
    )


# === DATA NODES ===


class TestDataNodes:
    @pytest.mark.asyncio
    async def test_text_returns_text(self):
        node = NodeSpec(id="t1", type="text", data={"text": "hello"})
        assert await TextNodeExecutor().execute(_ctx(node)) == "hello"

    @pytest.mark.asyncio
    async def test_empty_text_allowed(self):
        node = NodeSpec(id="t1", type="text")
        assert await TextNodeExecutor().execute(_ctx(node)) == ""

    @pytest.mark.asyncio
    async def test_upload_image_returns_url(self):
        node = NodeSpec(id="i1", type="uploadImage", data={"imageUrl": "https://x/a.png"})
        assert await UploadImageExecutor().execute(_ctx(node)) == "https://x/a.png"

    @pytest.mark.asyncio
    async def test_upload_image_missing(self):
        node = NodeSpec(id="i1", type="uploadImage")
        with pytest.raises(MissingInput, match="No image uploaded"):
            await UploadImageExecutor().execute(_ctx(node))

    @pytest.mark.asyncio
    async def test_upload_image_blob_url(self):
        node = NodeSpec(id="i1", type="uploadImage", data={"imageUrl": "blob:http://localhost/1"})
        with pytest.raises(MissingInput, match="blob:"):
            await UploadImageExecutor().execute(_ctx(node))

    @pytest.mark.asyncio
    async def test_upload_video_missing(self):
        node = NodeSpec(id="v1", type="uploadVideo", data={"videoUrl": ""})
        with pytest.raises(MissingInput, match="No video uploaded"):
            await UploadVideoExecutor().execute(_ctx(node))


# === LLM ===


class TestLLMExecutor:
    @pytest.mark.asyncio
    async def test_payload_built_from_inputs(self):
        handlers = RecordingHandlers()
        node = NodeSpec(id="llm1", type="llm", data={"model": "gemini/gemini-1.5-pro"})
        inputs = {
            "user_message": "describe",
            "system_prompt": "be brief",
            "images": ["https://x/1.png", "https://x/2.png"],
        }

        output = await LLMExecutor().execute(_ctx(node, inputs, handlers.client()))

        assert output == "llm says hi"
        assert handlers.payloads["llm-execution"] == [
            {
                "model": "gemini/gemini-1.5-pro",
                "systemPrompt": "be brief",
                "userMessage": "describe",
                "images": ["https://x/1.png", "https://x/2.png"],
                "nodeId": "llm1",
                "runId": "run_test",
            }
        ]

    @pytest.mark.asyncio
    async def test_falls_back_to_node_data_and_default_model(self):
        handlers = RecordingHandlers()
        node = NodeSpec(
            id="llm1", type="llm", data={"userMessage": "from data", "systemPrompt": "sys"}
        )
        await LLMExecutor().execute(_ctx(node, {}, handlers.client()))
        payload = handlers.payloads["llm-execution"][0]
        assert payload["userMessage"] == "from data"
        assert payload["systemPrompt"] == "sys"
        assert payload["model"] == "gemini/gemini-2.0-flash"
        assert payload["images"] == []

    @pytest.mark.asyncio
    async def test_missing_user_message(self):
        handlers = RecordingHandlers()
        node = NodeSpec(id="llm1", type="llm")
        with pytest.raises(MissingInput, match="User message is required"):
            await LLMExecutor().execute(_ctx(node, {}, handlers.client()))
        assert handlers.payloads == {}

    @pytest.mark.asyncio
    async def test_job_output_without_response(self):
        handlers = RecordingHandlers(outputs={"llm-execution": {"text": "wrong field"}})
        node = NodeSpec(id="llm1", type="llm")
        with pytest.raises(ExternalJobError, match="no response"):
            await LLMExecutor().execute(_ctx(node, {"user_message": "hi"}, handlers.client()))

    @pytest.mark.asyncio
    async def test_no_job_client(self):
        node = NodeSpec(id="llm1", type="llm")
        with pytest.raises(ExternalJobError, match="No job client"):
            await LLMExecutor().execute(_ctx(node, {"user_message": "hi"}))


# === CROP ===


class TestCropImageExecutor:
    @pytest.mark.asyncio
    async def test_inputs_override_data(self):
        handlers = RecordingHandlers()
        node = NodeSpec(
            id="c1",
            type="cropImage",
            data={"xPercent": 5, "yPercent": 5, "widthPercent": 50, "heightPercent": 50},
        )
        inputs = {"image_url": "https://x/a.png", "x_percent": "10", "width_percent": "30"}

        output = await CropImageExecutor().execute(_ctx(node, inputs, handlers.client()))

        assert output == "https://cdn/cropped.png"
        payload = handlers.payloads["crop-image"][0]
        assert payload["imageUrl"] == "https://x/a.png"
        assert (payload["x"], payload["y"], payload["width"], payload["height"]) == (
            10.0, 5.0, 30.0, 50.0,
        )
        assert payload["nodeId"] == "c1"
        assert payload["runId"] == "run_test"

    def test_defaults_are_whole_image(self):
        node = NodeSpec(id="c1", type="cropImage")
        assert crop_rectangle(_ctx(node)) == (0.0, 0.0, 100.0, 100.0)

    def test_rectangle_clamped_to_image(self):
        node = NodeSpec(
            id="c1",
            type="cropImage",
            data={"xPercent": 80, "yPercent": -10, "widthPercent": 50, "heightPercent": 150},
        )
        assert crop_rectangle(_ctx(node)) == (80.0, 0.0, 20.0, 100.0)

    def test_non_numeric_percent(self):
        node = NodeSpec(id="c1", type="cropImage")
        with pytest.raises(MissingInput, match="x_percent"):
            crop_rectangle(_ctx(node, {"x_percent": "left"}))

    @pytest.mark.asyncio
    async def test_requires_image(self):
        node = NodeSpec(id="c1", type="cropImage")
        with pytest.raises(MissingInput, match="Image URL is required"):
            await CropImageExecutor().execute(_ctx(node, {}, RecordingHandlers().client()))


# === EXTRACT FRAME ===


class TestExtractFrameExecutor:
    @pytest.mark.asyncio
    async def test_payload(self):
        handlers = RecordingHandlers()
        node = NodeSpec(id="f1", type="extractFrame", data={"timestamp": "1:30"})
        inputs = {"video_url": "https://x/v.mp4"}

        output = await ExtractFrameExecutor().execute(_ctx(node, inputs, handlers.client()))

        assert output == "https://cdn/frame.png"
        assert handlers.payloads["extract-frame"] == [
            {"videoUrl": "https://x/v.mp4", "timestamp": 90.0, "nodeId": "f1", "runId": "run_test"}
        ]

    @pytest.mark.asyncio
    async def test_requires_video(self):
        node = NodeSpec(id="f1", type="extractFrame")
        with pytest.raises(MissingInput, match="Video URL is required"):
            await ExtractFrameExecutor().execute(_ctx(node, {}, RecordingHandlers().client()))

    @pytest.mark.parametrize(
        "raw, seconds",
        [
            ("0", 0.0),
            ("12.5", 12.5),
            ("1:30", 90.0),
            ("1:02:03", 3723.0),
            ("50%", 0.0),
            ("", 0.0),
            (None, 0.0),
            ("soon", 0.0),
            ("1:2:3:4", 0.0),
            ("-5", 0.0),
            (7, 7.0),
        ],
    )
    def test_parse_timestamp(self, raw, seconds):
        assert parse_timestamp(raw) == seconds


# === REGISTRY ===


class TestExecutorRegistry:
    def test_default_registry_covers_every_kind(self):
        registry = default_registry()
        for kind in NodeKind:
            assert kind in registry
            assert registry.get(kind) is not None

    def test_unknown_kind(self):
        with pytest.raises(UnknownNodeKind, match="Unknown node type: mystery"):
            ExecutorRegistry().get("mystery")

    def test_register_custom_executor(self):
        registry = ExecutorRegistry()
        executor = TextNodeExecutor()
        registry.register("note", executor)
        assert registry.get("note") is executor
        assert registry.kinds() == ["note"]
