"""Gradio UI callback tests."""

from __future__ import annotations

import asyncio
from io import BytesIO
from pathlib import Path
from typing import List, Optional

import pytest
from PIL import Image

from config.settings import AppConfig
from modules.optimization.prompt_assembler import GenerationRequest
from modules.optimization.prompt_engineer import BASE_STRING
from modules.pipelines.batch import CREDENTIAL_INVALID_MESSAGE
from modules.pipelines.concurrency import ConcurrencyGate
from modules.pipelines.generation import GenerationError, ImageResult
from modules.services.credential_store import GEMINI_KEY, CredentialStore
from modules.services.history_service import HistoryItem, ProjectRecord
from modules.ui import callbacks
from modules.ui.state import EntityStatus, WorkspaceState


def png_bytes(color: str = "red", size=(16, 16)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class DummyGenerator:
    """Stub generation service capturing requests."""

    def __init__(self, failures: Optional[dict[int, str]] = None) -> None:
        self.api_key: Optional[str] = "key"
        self.failures = failures or {}
        self.requests: List[GenerationRequest] = []

    def set_api_key(self, api_key: Optional[str]) -> None:
        self.api_key = api_key

    async def generate(self, request: GenerationRequest, prompt_label: Optional[str] = None) -> ImageResult:
        index = len(self.requests)
        self.requests.append(request)
        if index in self.failures:
            raise GenerationError(self.failures[index])
        return ImageResult(image=png_bytes("green"), mime_type="image/png", prompt=prompt_label or "")

    async def generate_text(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        return "enhanced prompt"


class DummyRemover:
    def __init__(self) -> None:
        self.images = []

    async def remove_background(self, image):
        self.images.append(image)
        return "https://replicate.test/out.png"


class GatedGenerator(DummyGenerator):
    """Holds every request until the test releases it."""

    def arm(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, request: GenerationRequest, prompt_label: Optional[str] = None) -> ImageResult:
        self.started.set()
        await self.release.wait()
        return await super().generate(request, prompt_label)


class TextFailingGenerator(DummyGenerator):
    async def generate_text(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        raise GenerationError("quota exhausted")


class DummyPersistence:
    """In-memory adapter whose project creation waits for the test."""

    def __init__(self) -> None:
        self.release_create: Optional[asyncio.Event] = None
        self.records: List[HistoryItem] = []
        self.assigned: List[tuple] = []

    async def upload(self, image: bytes, user_id=None) -> str:
        return f"https://cdn.test/{len(self.records) + 1}.jpg"

    async def record_metadata(self, url, prompt, mode, section, project_id=None, user_id=None):
        item = HistoryItem(
            id=f"gen-{len(self.records) + 1}",
            url=url,
            prompt=prompt,
            timestamp=float(len(self.records) + 1),
            mode=mode,
            section=section,
            project_id=project_id,
        )
        self.records.append(item)
        return item

    async def create_project(self, name, mode, section, user_id=None):
        if self.release_create is not None:
            await self.release_create.wait()
        return ProjectRecord(id="proj-1", name=name, mode=mode, section=section, created_at=1.0)

    async def assign_project(self, record_ids, project_id) -> bool:
        self.assigned.append((list(record_ids), project_id))
        return True


@pytest.fixture
def subject_file(tmp_path) -> str:
    path = tmp_path / "subject.png"
    path.write_bytes(png_bytes())
    return str(path)


def build_callbacks(
    tmp_path: Path,
    *,
    generator: DummyGenerator | None = None,
    gate: ConcurrencyGate | None = None,
    state: WorkspaceState | None = None,
    config: AppConfig | None = None,
    remover: DummyRemover | None = None,
    persistence=None,
):
    config = config or AppConfig(gemini_key="key", export_dir=tmp_path / "exports")
    return callbacks.build_callbacks(
        config,
        generator=generator or DummyGenerator(),
        gate=gate or ConcurrencyGate(),
        persistence=persistence,
        credentials=CredentialStore(tmp_path / "credentials.json"),
        remover=remover,
        state=state,
    )


def generate_args(subject_files, batch_size=1, mode="OBJECT"):
    return (
        mode,
        subject_files,
        [],
        "on a marble podium",
        "RIGHT",
        True,
        False,
        False,
        "",
        1920,
        1080,
        batch_size,
    )


def test_partial_batch_with_invalid_credential(tmp_path, subject_file):
    state = WorkspaceState()
    generator = DummyGenerator(failures={2: "Requested entity was not found."})
    cb = build_callbacks(tmp_path, generator=generator, state=state)["on_generate"]

    gallery, message = asyncio.run(cb(*generate_args([subject_file], batch_size=3)))

    assert len(generator.requests) == 3
    assert len(gallery) == 2
    assert len(state.history) == 2
    assert all(item.url.startswith("data:image/png;base64,") for item in state.history)
    assert message == CREDENTIAL_INVALID_MESSAGE
    assert state.credential_valid is False


def test_generate_success_adds_history_to_active_project(tmp_path, subject_file):
    state = WorkspaceState()
    tab = state.open_tab("OBJECT", "LANDING_PAGES")
    cb = build_callbacks(tmp_path, state=state)["on_generate"]

    gallery, message = asyncio.run(cb(*generate_args([subject_file], batch_size=2)))

    assert "生成成功" in message
    assert len(gallery) == 2
    assert [item.project_id for item in state.history] == [tab.id, tab.id]
    assert [item.prompt for item in state.history] == ["on a marble podium"] * 2


def test_generate_requires_subject(tmp_path):
    generator = DummyGenerator()
    cb = build_callbacks(tmp_path, generator=generator)["on_generate"]

    gallery, message = asyncio.run(cb(*generate_args([])))

    assert gallery == []
    assert "请先上传主体图像" in message
    assert generator.requests == []


def test_generate_requires_key(tmp_path, subject_file):
    config = AppConfig(gemini_key=None, export_dir=tmp_path)
    cb = build_callbacks(tmp_path, config=config)["on_generate"]

    _, message = asyncio.run(cb(*generate_args([subject_file])))

    assert "API 密钥" in message


def test_generate_respects_concurrency_gate(tmp_path, subject_file):
    gate = ConcurrencyGate(limit=2)
    gate.acquire()
    gate.acquire()
    generator = DummyGenerator()
    cb = build_callbacks(tmp_path, generator=generator, gate=gate)["on_generate"]

    _, message = asyncio.run(cb(*generate_args([subject_file])))

    assert "最多 2 个" in message
    assert generator.requests == []
    assert gate.in_flight == 2


def test_generate_handles_invalid_color(tmp_path, subject_file):
    cb = build_callbacks(tmp_path)["on_generate"]
    args = list(generate_args([subject_file]))
    args[7] = True
    args[8] = "not-a-color"

    gallery, message = asyncio.run(cb(*args))

    assert gallery == []
    assert message.startswith("生成失败")


def test_references_flow_into_request(tmp_path, subject_file):
    ref_a = tmp_path / "a.png"
    ref_b = tmp_path / "b.png"
    ref_a.write_bytes(png_bytes("blue"))
    ref_b.write_bytes(png_bytes("yellow"))
    generator = DummyGenerator()
    cb_map = build_callbacks(tmp_path, generator=generator)

    rows, choices, _ = asyncio.run(cb_map["on_add_references"]([str(ref_a), str(ref_b)]))
    first_id, second_id = rows[0][1], rows[1][1]
    cb_map["on_describe_reference"](second_id, "copy the lighting")
    rows, _, _ = cb_map["on_move_reference"](second_id, "up")

    assert [row[1] for row in rows] == [second_id, first_id]
    assert len(choices) == 2

    asyncio.run(cb_map["on_generate"](*generate_args([subject_file])))
    text = generator.requests[0].text_segment
    assert 'Reference Image 1 Context: (User Requirement: "copy the lighting")' in text
    assert len(generator.requests[0].image_segments) == 3


def test_project_lifecycle_without_backend(tmp_path):
    state = WorkspaceState()
    cb_map = build_callbacks(tmp_path, state=state)

    choices, active, message = asyncio.run(cb_map["on_create_project"]("HUMAN", "LANDING_PAGES"))
    assert choices == [("项目 1 (人物)", active)]
    assert "已创建" in message

    asyncio.run(cb_map["on_create_project"]("OBJECT", "LANDING_PAGES"))
    choices, active_after_delete, message = asyncio.run(
        cb_map["on_delete_project"](state.active_tab_id)
    )
    assert active_after_delete == active
    assert "已删除" in message

    choices, active_after_close, _ = cb_map["on_close_project"](active)
    assert choices == []
    assert active_after_close is None


def test_convert_images(tmp_path):
    source = tmp_path / "photo.png"
    source.write_bytes(png_bytes(size=(400, 200)))
    cb = build_callbacks(tmp_path)["on_convert_images"]

    outputs, message = cb([str(source)], "webp", 80, 100, None)

    assert outputs == [str(tmp_path / "exports" / "photo.webp")]
    with Image.open(outputs[0]) as image:
        assert image.size == (100, 50)
    assert "已转换 1 张图像" in message


def test_save_keys_updates_store_and_service(tmp_path):
    generator = DummyGenerator()
    state = WorkspaceState(credential_valid=False)
    cb = build_callbacks(tmp_path, generator=generator, state=state)["on_save_keys"]

    message = cb("new-key", "r8-key")

    assert message == "API 密钥已保存"
    assert CredentialStore(tmp_path / "credentials.json").get(GEMINI_KEY) == "new-key"
    assert generator.api_key == "new-key"
    assert state.credential_valid is True


def test_remove_background_records_history(tmp_path, subject_file):
    state = WorkspaceState()
    remover = DummyRemover()
    cb = build_callbacks(tmp_path, state=state, remover=remover)["on_remove_background"]

    url, message = asyncio.run(cb(subject_file))

    assert url == "https://replicate.test/out.png"
    assert message == "背景已去除"
    assert state.history_for(section="REMOVE_BG")[0].url == url


def test_enhance_prompt_uses_engineer(tmp_path):
    cb = build_callbacks(tmp_path)["on_enhance_prompt"]

    prompt, message = asyncio.run(cb("coach", "", "", "MEDIUM", True, False))

    assert prompt == "enhanced prompt"
    assert "提示词已生成" in message


def test_refine_requires_instructions(tmp_path, subject_file):
    cb = build_callbacks(tmp_path)["on_refine"]

    gallery, message = asyncio.run(cb(subject_file, "  "))

    assert gallery == []
    assert "请填写调整说明" in message


def test_design_profile_requires_photo(tmp_path):
    cb = build_callbacks(tmp_path)["on_generate_design"]

    gallery, message = asyncio.run(cb("PROFILE", "", "Corporate", "#ffffff", "#000000", "", ""))

    assert gallery == []
    assert "请先上传个人照片" in message


def test_batch_results_stay_with_dispatching_project(tmp_path, subject_file):
    state = WorkspaceState()
    tab_a = state.open_tab("OBJECT", "LANDING_PAGES")
    tab_b = state.open_tab("HUMAN", "LANDING_PAGES")
    state.select_tab(tab_a.id)
    generator = GatedGenerator()
    cb = build_callbacks(tmp_path, generator=generator, state=state)["on_generate"]

    async def scenario():
        generator.arm()
        task = asyncio.create_task(cb(*generate_args([subject_file])))
        await generator.started.wait()
        state.select_tab(tab_b.id)
        generator.release.set()
        return await task

    gallery, _ = asyncio.run(scenario())

    assert len(gallery) == 1
    assert [item.project_id for item in state.history] == [tab_a.id]
    assert state.active_tab_id == tab_b.id


def test_invalid_credential_blocks_generation_until_new_key(tmp_path, subject_file):
    state = WorkspaceState(credential_valid=False)
    generator = DummyGenerator()
    cb_map = build_callbacks(tmp_path, generator=generator, state=state)

    gallery, message = asyncio.run(cb_map["on_generate"](*generate_args([subject_file])))
    _, refine_message = asyncio.run(cb_map["on_refine"](subject_file, "brighter"))

    assert gallery == []
    assert message == callbacks.INVALID_KEY_MESSAGE
    assert refine_message == callbacks.INVALID_KEY_MESSAGE
    assert generator.requests == []

    cb_map["on_save_keys"]("fresh-key", "")
    gallery, _ = asyncio.run(cb_map["on_generate"](*generate_args([subject_file])))

    assert len(gallery) == 1
    assert len(generator.requests) == 1


def test_generations_saved_while_project_pending_are_attached_on_confirm(tmp_path, subject_file):
    state = WorkspaceState()
    persistence = DummyPersistence()
    cb_map = build_callbacks(tmp_path, state=state, persistence=persistence)

    async def scenario():
        persistence.release_create = asyncio.Event()
        create = asyncio.create_task(cb_map["on_create_project"]("OBJECT", "LANDING_PAGES"))
        await asyncio.sleep(0)
        tab = state.active_tab
        assert tab.status is EntityStatus.PENDING
        await cb_map["on_generate"](*generate_args([subject_file], batch_size=2))
        persistence.release_create.set()
        await create
        return tab

    tab = asyncio.run(scenario())

    assert tab.id == "proj-1"
    assert [record.project_id for record in persistence.records] == [None, None]
    assert persistence.assigned == [(["gen-1", "gen-2"], "proj-1")]
    assert [item.project_id for item in state.history] == ["proj-1", "proj-1"]


def test_generation_on_confirmed_project_records_project_id(tmp_path, subject_file):
    state = WorkspaceState()
    persistence = DummyPersistence()
    cb_map = build_callbacks(tmp_path, state=state, persistence=persistence)

    asyncio.run(cb_map["on_create_project"]("OBJECT", "LANDING_PAGES"))
    asyncio.run(cb_map["on_generate"](*generate_args([subject_file])))

    assert [record.project_id for record in persistence.records] == ["proj-1"]
    assert persistence.assigned == []


def test_enhance_prompt_reports_fallback(tmp_path):
    cb = build_callbacks(tmp_path, generator=TextFailingGenerator())["on_enhance_prompt"]

    prompt, message = asyncio.run(cb("coach", "", "", "MEDIUM", False, False))

    assert prompt.startswith(BASE_STRING)
    assert "已使用默认提示词" in message
    assert "quota exhausted" in message
