"""GenerationService 单元测试。"""

from __future__ import annotations

import asyncio
import os
from types import SimpleNamespace

import pytest

from config.settings import AppConfig, load_config
from modules.optimization.prompt_assembler import GenerationRequest, ImageSegment
from modules.pipelines import generation

REQUEST = GenerationRequest(
    mode=None,
    image_segments=(ImageSegment(b"first", "image/png"), ImageSegment(b"second", "image/jpeg")),
    text_segment="make it shine",
    aspect_ratio="1:1",
    image_size="1K",
)


def image_response(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


class DummyModels:
    """模拟 client.aio.models，记录调用参数。"""

    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def build_service(models: DummyModels) -> generation.GenerationService:
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return generation.GenerationService(AppConfig(gemini_key="key"), client=client)


def test_generate_sends_images_before_text():
    models = DummyModels(
        image_response(
            SimpleNamespace(inline_data=None, text="here you go"),
            SimpleNamespace(inline_data=SimpleNamespace(data=b"png-bytes", mime_type="image/png")),
        )
    )
    result = asyncio.run(build_service(models).generate(REQUEST, prompt_label="label"))

    assert result.image == b"png-bytes"
    assert result.prompt == "label"
    call = models.calls[0]
    assert call["model"] == "gemini-3-pro-image-preview"
    contents = call["contents"]
    assert [part.inline_data.data for part in contents[:2]] == [b"first", b"second"]
    assert contents[2].text == "make it shine"
    assert call["config"].image_config.aspect_ratio == "1:1"
    assert call["config"].image_config.image_size == "1K"


def test_missing_image_is_a_failure():
    models = DummyModels(image_response(SimpleNamespace(inline_data=None, text="sorry")))

    with pytest.raises(generation.GenerationError, match="No image data found"):
        asyncio.run(build_service(models).generate(REQUEST))


def test_provider_errors_keep_message():
    models = DummyModels(error=RuntimeError("Requested entity was not found."))

    with pytest.raises(generation.GenerationError) as excinfo:
        asyncio.run(build_service(models).generate(REQUEST))

    assert generation.is_credential_error(str(excinfo.value))


def test_missing_key_raises():
    service = generation.GenerationService(AppConfig())

    with pytest.raises(generation.GenerationError, match="API Key not found"):
        asyncio.run(service.generate(REQUEST))


def test_set_api_key_resets_client(monkeypatch):
    created = []

    class DummyClient:
        def __init__(self, api_key: str) -> None:
            created.append(api_key)

    monkeypatch.setattr(generation.genai, "Client", DummyClient)
    service = generation.GenerationService(AppConfig(gemini_key="old"))
    service._get_client()
    service.set_api_key(" new ")
    service._get_client()

    assert created == ["old", "new"]
    assert service.api_key == "new"


def test_generate_text_returns_stripped_text():
    models = DummyModels(SimpleNamespace(text="  refined prompt \n"))
    text = asyncio.run(build_service(models).generate_text("hi", "system"))

    assert text == "refined prompt"
    assert models.calls[0]["model"] == "gemini-2.5-flash"


def test_is_credential_error():
    assert generation.is_credential_error("400 Requested entity was not found.")
    assert not generation.is_credential_error("quota exceeded")
    assert not generation.is_credential_error(None)


@pytest.mark.integration
def test_generate_real_call():
    """调用真实 Gemini 接口，确认能返回图像。"""
    config = load_config()
    if not (config.gemini_key or os.getenv("GEMINI_API_KEY")):
        pytest.skip("未检测到 GEMINI_API_KEY，跳过真实调用测试。")

    request = GenerationRequest(
        mode=None,
        image_segments=(),
        text_segment="A minimal studio background with soft gradient lighting.",
        aspect_ratio="16:9",
        image_size="1K",
    )
    result = asyncio.run(generation.GenerationService(config).generate(request))

    assert result.image
