"""Callback implementations for the Gradio interface."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.settings import AppConfig
from modules.optimization.prompt_assembler import (
    ColorPalette,
    GenerationAttributes,
    GenerationRequest,
    PromptInputs,
    assemble_request,
    build_design_asset_request,
    build_inpaint_request,
    build_refine_request,
    build_vertical_request,
)
from modules.optimization.prompt_engineer import EnhanceRequest, PromptEngineer
from modules.optimization.prompt_presets import AppSection, GeneratorMode, SubjectPosition
from modules.pipelines.background_removal import BackgroundRemovalClient
from modules.pipelines.batch import BatchOrchestrator, BatchOutcome, describe_outcome
from modules.pipelines.concurrency import ConcurrencyGate, shared_gate
from modules.pipelines.generation import GenerationService
from modules.pipelines.references import ImageUpload, ReferenceList, load_upload, normalize_uploads
from modules.services.credential_store import GEMINI_KEY, REPLICATE_KEY, CredentialStore
from modules.services.history_service import HistoryItem
from modules.services.persistence import PersistenceAdapter
from modules.ui.state import EntityStatus, ProjectTab, WorkspaceState, create_project, delete_project
from modules.utils.image_utils import (
    convert_image,
    decode_image_payload,
    export_extension,
    format_size,
    is_data_uri,
    open_image,
)

logger = logging.getLogger(__name__)

GATE_BUSY_MESSAGE = "同时生成数量已达上限（最多 {limit} 个），请等待任务完成。"
MISSING_KEY_MESSAGE = "生成失败：请先在设置中填写 Gemini API 密钥。"
INVALID_KEY_MESSAGE = "生成失败：API 密钥无效或已过期，请在设置中重新填写。"

GalleryItem = Tuple[Any, str]
ProjectChoice = Tuple[str, str]


def _file_path(file: Any) -> str:
    """Gradio hands over plain paths or tempfile wrappers depending on version."""
    return str(getattr(file, "name", file))


def _uploads(files: Optional[Sequence[Any]]) -> List[ImageUpload]:
    if not files:
        return []
    if isinstance(files, (str, Path)):
        files = [files]
    return [load_upload(_file_path(file)) for file in files]


def _read_image(file: Any) -> Optional[bytes]:
    if file is None or file == "":
        return None
    return Path(_file_path(file)).read_bytes()


def _gallery_item(url: str, caption: str) -> GalleryItem:
    if is_data_uri(url):
        return open_image(decode_image_payload(url)), caption
    return url, caption


def build_callbacks(
    config: AppConfig,
    generator: Optional[GenerationService] = None,
    gate: Optional[ConcurrencyGate] = None,
    persistence: Optional[PersistenceAdapter] = None,
    credentials: Optional[CredentialStore] = None,
    remover: Optional[BackgroundRemovalClient] = None,
    engineer: Optional[PromptEngineer] = None,
    state: Optional[WorkspaceState] = None,
) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions."""

    service = generator or GenerationService(config)
    batch_gate = gate or shared_gate(config.max_concurrent_generations)
    store = credentials or CredentialStore(config.credentials_path)
    workspace = state or WorkspaceState()
    orchestrator = BatchOrchestrator(service, batch_gate, persistence)
    prompt_engineer = engineer or PromptEngineer(service)
    references = ReferenceList()
    user_id = config.supabase_user_id

    def _gemini_key() -> Optional[str]:
        key = store.get(GEMINI_KEY) or config.gemini_key
        if key and getattr(service, "api_key", key) != key:
            service.set_api_key(key)
        return key

    def _remover() -> BackgroundRemovalClient:
        if remover is not None:
            return remover
        return BackgroundRemovalClient(
            api_token=store.get(REPLICATE_KEY) or config.replicate_key,
            base_url=config.replicate_base_url,
            model_version=config.remove_bg_version,
            poll_interval=config.remove_bg_poll_interval,
        )

    def _key_problem() -> Optional[str]:
        if not _gemini_key():
            return MISSING_KEY_MESSAGE
        if not workspace.credential_valid:
            return INVALID_KEY_MESSAGE
        return None

    def _persisted_project_id(tab: Optional[ProjectTab]) -> Optional[str]:
        if tab is None or tab.status is not EntityStatus.CONFIRMED:
            return None
        return tab.id

    def _project_choices(section: Optional[str] = None) -> List[ProjectChoice]:
        tabs = workspace.section_tabs(section) if section else workspace.tabs
        choices = []
        for tab in tabs:
            suffix = "（未同步）" if tab.status is EntityStatus.FAILED else ""
            choices.append((f"{tab.title}{suffix}", tab.id))
        return choices

    def _reference_rows() -> List[List[Any]]:
        return [
            [index, item.id, item.description]
            for index, item in enumerate(references, start=1)
        ]

    def _reference_choices() -> List[ProjectChoice]:
        return [(f"参考图 {index}", item.id) for index, item in enumerate(references, start=1)]

    async def _apply_outcome(
        outcome: BatchOutcome, mode: str, section: str, tab: Optional[ProjectTab]
    ) -> Tuple[List[GalleryItem], str]:
        # tab is the one active at dispatch; its id follows a confirm that landed meanwhile
        project_id = tab.id if tab is not None else None
        gallery: List[GalleryItem] = []
        unassigned: List[str] = []
        for success in outcome.successes:
            if success.record is not None:
                item = success.record
                if item.project_id is None and project_id is not None:
                    unassigned.append(item.id)
                    item = HistoryItem(
                        id=item.id,
                        url=item.url,
                        prompt=item.prompt,
                        timestamp=item.timestamp,
                        mode=item.mode,
                        section=item.section,
                        project_id=project_id,
                    )
                workspace.add_history_item(item)
            else:
                workspace.add_history(success.url, success.prompt, mode, section, project_id)
            gallery.append((open_image(success.image), success.prompt[:80]))

        if unassigned and tab is not None:
            if tab.status is EntityStatus.PENDING:
                workspace.defer_assignment(tab.id, unassigned)
            elif tab.status is EntityStatus.CONFIRMED and persistence is not None:
                await persistence.assign_project(unassigned, tab.id)

        if outcome.credential_invalid:
            workspace.credential_valid = False
        message = describe_outcome(outcome)
        if message is None:
            message = f"生成成功（{len(outcome.successes)} 张）"
        return gallery, message

    async def _run_single(
        request: GenerationRequest, prompt_label: str, mode: str, section: str
    ) -> Tuple[List[GalleryItem], str]:
        tab = workspace.active_tab
        outcome = await orchestrator.run(
            request,
            1,
            prompt_label=prompt_label,
            mode=mode,
            section=section,
            project_id=_persisted_project_id(tab),
            user_id=user_id,
        )
        return await _apply_outcome(outcome, mode, section, tab)

    # Generation -----------------------------------------------------------
    async def on_generate(
        mode: str,
        subject_files: Optional[Sequence[Any]],
        asset_files: Optional[Sequence[Any]],
        user_prompt: str,
        position: str,
        use_gradient: bool,
        use_blur: bool,
        use_main_color: bool,
        main_color: str,
        width: float,
        height: float,
        batch_size: float,
        palette_primary: str = "",
        palette_secondary: str = "",
        palette_accent: str = "",
    ) -> Tuple[List[GalleryItem], str]:
        if not subject_files:
            return [], "生成失败：请先上传主体图像。"
        problem = _key_problem()
        if problem:
            return [], problem
        if not batch_gate.can_start():
            return [], GATE_BUSY_MESSAGE.format(limit=batch_gate.limit)

        tab = workspace.active_tab
        try:
            subjects = await normalize_uploads(_uploads(subject_files))
            if not subjects:
                return [], "生成失败：主体图像无法读取。"
            assets = await normalize_uploads(_uploads(asset_files))
            palette = None
            if mode == GeneratorMode.INFOPRODUCT.value and palette_primary:
                palette = ColorPalette(
                    primary=palette_primary,
                    secondary=palette_secondary or palette_primary,
                    accent=palette_accent or palette_primary,
                )
            inputs = PromptInputs(
                mode=GeneratorMode(mode),
                subject_images=[item.image for item in subjects],
                reference_items=references.items(),
                asset_images=[item.image for item in assets],
                user_prompt=user_prompt or "",
                position=SubjectPosition(position),
                attributes=GenerationAttributes(
                    use_gradient=bool(use_gradient),
                    use_blur=bool(use_blur),
                    use_main_color=bool(use_main_color),
                    main_color=main_color or "",
                ),
                target_width=int(width),
                target_height=int(height),
                palette=palette,
            )
            request = assemble_request(inputs, image_size=config.image_size)
            outcome = await orchestrator.run(
                request,
                int(batch_size),
                prompt_label=(user_prompt or "").strip() or f"{mode} 背景",
                mode=mode,
                section=AppSection.LANDING_PAGES.value,
                project_id=_persisted_project_id(tab),
                user_id=user_id,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Generation failed")
            return [], f"生成失败：{exc}"

        return await _apply_outcome(outcome, mode, AppSection.LANDING_PAGES.value, tab)

    async def on_refine(
        image_file: Any, instructions: str, extra_files: Optional[Sequence[Any]] = None
    ) -> Tuple[List[GalleryItem], str]:
        image = _read_image(image_file)
        if image is None:
            return [], "调整失败：请先选择要调整的图像。"
        if not (instructions or "").strip():
            return [], "调整失败：请填写调整说明。"
        problem = _key_problem()
        if problem:
            return [], problem
        try:
            extras = [upload.data for upload in _uploads(extra_files)]
            request = build_refine_request(image, instructions, extras, config.image_size)
            return await _run_single(
                request, f"调整：{instructions.strip()}", "REFINE", AppSection.LANDING_PAGES.value
            )
        except Exception as exc:  # noqa: BLE001
            return [], f"调整失败：{exc}"

    async def on_reframe_vertical(
        image_file: Any, target_height: float, instructions: str = ""
    ) -> Tuple[List[GalleryItem], str]:
        image = _read_image(image_file)
        if image is None:
            return [], "生成失败：请先选择一张图像。"
        problem = _key_problem()
        if problem:
            return [], problem
        try:
            request = build_vertical_request(
                image, int(target_height), instructions or "", image_size=config.image_size
            )
            return await _run_single(
                request, "竖版文字排版背景", "VERTICAL", AppSection.LANDING_PAGES.value
            )
        except Exception as exc:  # noqa: BLE001
            return [], f"生成失败：{exc}"

    async def on_inpaint(
        image_file: Any, mask_file: Any, instructions: str = ""
    ) -> Tuple[List[GalleryItem], str]:
        image = _read_image(image_file)
        mask = _read_image(mask_file)
        if image is None or mask is None:
            return [], "编辑失败：请同时上传原图和蒙版。"
        problem = _key_problem()
        if problem:
            return [], problem
        try:
            request = build_inpaint_request(image, mask, instructions or "", config.image_size)
            return await _run_single(
                request,
                (instructions or "").strip() or "局部重绘",
                "INPAINT",
                AppSection.LANDING_PAGES.value,
            )
        except Exception as exc:  # noqa: BLE001
            return [], f"编辑失败：{exc}"

    async def on_generate_design(
        category: str,
        description: str,
        style: str,
        bg_color: str,
        primary_color: str,
        name: str,
        niche: str,
        image_file: Any = None,
        extra_prompt: str = "",
    ) -> Tuple[List[GalleryItem], str]:
        problem = _key_problem()
        if problem:
            return [], problem
        image = _read_image(image_file)
        key = (category or "").upper()
        inputs: Dict[str, Any] = {"bg_color": bg_color or "#ffffff"}
        if key == "MOCKUPS":
            inputs.update(device_type=description or "smartphone", angle=style or "front", screen_image=image)
        elif key == "ICONS":
            inputs.update(
                description=description,
                icon_style=style,
                icon_color=primary_color,
                reference_image=image,
            )
        elif key == "PRODUCTS":
            inputs.update(
                product_type=description or "product",
                brand_name=name,
                niche=niche,
                product_colors=[color for color in (primary_color, bg_color) if color],
                logo_image=image,
            )
        elif key == "LOGOS":
            inputs.update(
                logo_name=name,
                logo_style=style or "modern",
                logo_niche=niche or "general",
                logo_colors=[primary_color] if primary_color else [],
                include_icon=bool(description),
            )
        elif key == "PROFILE":
            inputs.update(
                style=style or "Corporate",
                profile_image=image,
                additional_prompt=extra_prompt,
                bg_type="solid",
            )
        try:
            request = build_design_asset_request(key, inputs, config.image_size)
            return await _run_single(
                request, f"{key}：{description or name or style}", key, AppSection.DESIGNS.value
            )
        except Exception as exc:  # noqa: BLE001
            return [], f"生成失败：{exc}"

    async def on_enhance_prompt(
        niche: str,
        environment: str,
        subject_description: str,
        framing: str,
        use_gradient: bool,
        use_blur: bool,
    ) -> Tuple[str, str]:
        if not (niche or "").strip():
            return "", "请先填写行业/细分领域。"
        problem = _key_problem()
        if problem:
            return "", problem
        request = EnhanceRequest(
            niche=niche.strip(),
            environment=environment or "",
            subject_description=subject_description or "",
            framing=framing or "MEDIUM",
            reference_count=len(references),
            attributes=GenerationAttributes(use_gradient=bool(use_gradient), use_blur=bool(use_blur)),
        )
        result = await prompt_engineer.enhance(request)
        if result.used_fallback:
            return result.prompt, f"模型调用失败（{result.fallback_reason}），已使用默认提示词，可在生成前继续编辑。"
        return result.prompt, "提示词已生成，可在生成前继续编辑。"

    # Tools ----------------------------------------------------------------
    async def on_remove_background(image_file: Any) -> Tuple[Optional[str], str]:
        image = _read_image(image_file)
        if image is None:
            return None, "处理失败：请先上传图像。"
        try:
            url = await _remover().remove_background(image)
        except Exception as exc:  # noqa: BLE001
            return None, f"处理失败：{exc}"
        if persistence is not None:
            await persistence.record_metadata(
                url, "去除背景", "REMOVE_BG", AppSection.REMOVE_BG.value, None, user_id
            )
        workspace.add_history(url, "去除背景", "REMOVE_BG", AppSection.REMOVE_BG.value)
        return url, "背景已去除"

    def on_convert_images(
        files: Optional[Sequence[Any]],
        fmt: str,
        quality: float,
        max_width: Optional[float] = None,
        max_height: Optional[float] = None,
    ) -> Tuple[List[str], str]:
        if not files:
            return [], "请先选择需要转换的图像。"
        export_dir = Path(config.export_dir)
        export_dir.mkdir(parents=True, exist_ok=True)
        outputs: List[str] = []
        failures: List[str] = []
        before = after = 0
        for upload in _uploads(files):
            try:
                data = convert_image(
                    upload.data,
                    fmt=fmt or "webp",
                    quality=int(quality),
                    max_width=int(max_width) if max_width else None,
                    max_height=int(max_height) if max_height else None,
                )
            except Exception as exc:  # noqa: BLE001
                failures.append(f"{upload.name}（{exc}）")
                continue
            target = export_dir / f"{Path(upload.name).stem}.{export_extension(fmt or 'webp')}"
            target.write_bytes(data)
            outputs.append(str(target))
            before += len(upload.data)
            after += len(data)

        message = f"已转换 {len(outputs)} 张图像：{format_size(before)} → {format_size(after)}"
        if failures:
            message += "；失败：" + "，".join(failures)
        return outputs, message

    def on_export_image(image_file: Any, fmt: str, quality: float) -> Tuple[Optional[str], str]:
        image = _read_image(image_file)
        if image is None:
            return None, "导出失败：没有可导出的图像。"
        try:
            data = convert_image(image, fmt=fmt or "png", quality=int(quality))
        except Exception as exc:  # noqa: BLE001
            return None, f"导出失败：{exc}"
        export_dir = Path(config.export_dir)
        export_dir.mkdir(parents=True, exist_ok=True)
        target = export_dir / f"design-{int(time.time() * 1000)}.{export_extension(fmt or 'png')}"
        target.write_bytes(data)
        return str(target), f"导出成功（{format_size(len(data))}）"

    def on_save_keys(gemini_key: str, replicate_key: str) -> str:
        try:
            store.set(GEMINI_KEY, gemini_key or "")
            store.set(REPLICATE_KEY, replicate_key or "")
        except Exception as exc:  # noqa: BLE001
            return f"保存失败：{exc}"
        if gemini_key:
            service.set_api_key(gemini_key)
            workspace.credential_valid = True
        return "API 密钥已保存"

    # Projects -------------------------------------------------------------
    async def on_create_project(
        mode: str, section: str
    ) -> Tuple[List[ProjectChoice], Optional[str], str]:
        tab = await create_project(workspace, persistence, mode, section, user_id)
        status = (
            f"已创建 {tab.title}"
            if tab.status is not EntityStatus.FAILED
            else f"{tab.title} 已在本地创建，但未能同步到云端。"
        )
        return _project_choices(section), workspace.active_tab_id, status

    def on_close_project(tab_id: str) -> Tuple[List[ProjectChoice], Optional[str], str]:
        tab = workspace.get_tab(tab_id)
        if tab is None:
            return _project_choices(), workspace.active_tab_id, "项目不存在"
        active = workspace.close_tab(tab_id)
        return _project_choices(tab.section), active, f"已关闭 {tab.title}"

    async def on_delete_project(tab_id: str) -> Tuple[List[ProjectChoice], Optional[str], str]:
        tab = workspace.get_tab(tab_id)
        if tab is None:
            return _project_choices(), workspace.active_tab_id, "项目不存在"
        ok = await delete_project(workspace, persistence, tab_id)
        status = f"已删除 {tab.title}" if ok else f"删除 {tab.title} 失败，已恢复。"
        return _project_choices(tab.section), workspace.active_tab_id, status

    def on_select_project(tab_id: Optional[str]) -> Tuple[List[GalleryItem], str]:
        try:
            tab: Optional[ProjectTab] = workspace.select_tab(tab_id)
        except KeyError as exc:
            return [], str(exc)
        if tab is None:
            return [], "未选择项目"
        items = workspace.history_for(project_id=tab.id)
        return [_gallery_item(item.url, item.prompt[:80]) for item in items], f"当前项目：{tab.title}"

    async def on_load_workspace() -> Tuple[List[ProjectChoice], Optional[str], str]:
        if persistence is None:
            return _project_choices(), workspace.active_tab_id, "未配置云端存储，记录仅保存在本次会话中。"
        projects = await persistence.list_projects(user_id)
        history = await persistence.list_by_user(user_id)
        workspace.load(
            [
                ProjectTab(
                    id=record.id,
                    title=record.name,
                    mode=record.mode,
                    section=record.section,
                    created_at=record.created_at,
                    status=EntityStatus.CONFIRMED,
                )
                for record in projects
            ],
            history,
        )
        return _project_choices(), workspace.active_tab_id, f"已加载 {len(projects)} 个项目"

    async def on_list_history(section: Optional[str] = None) -> Tuple[List[GalleryItem], str]:
        if persistence is not None:
            workspace.merge_history(await persistence.list_by_user(user_id))
        items = workspace.history_for(section=section or None)
        if not items:
            return [], "暂无历史记录"
        return [_gallery_item(item.url, item.prompt[:80]) for item in items], f"共 {len(items)} 条记录"

    # References -----------------------------------------------------------
    async def on_add_references(
        files: Optional[Sequence[Any]],
    ) -> Tuple[List[List[Any]], List[ProjectChoice], str]:
        uploads = _uploads(files)
        items = await normalize_uploads(uploads)
        references.extend(items)
        skipped = len(uploads) - len(items)
        status = f"已添加 {len(items)} 张参考图"
        if skipped:
            status += f"，{skipped} 个文件无法读取已跳过"
        return _reference_rows(), _reference_choices(), status

    def on_move_reference(
        item_id: str, direction: str
    ) -> Tuple[List[List[Any]], List[ProjectChoice], str]:
        try:
            if direction == "up":
                references.move_up(item_id)
            else:
                references.move_down(item_id)
        except KeyError as exc:
            return _reference_rows(), _reference_choices(), str(exc)
        return _reference_rows(), _reference_choices(), "顺序已更新"

    def on_remove_reference(item_id: str) -> Tuple[List[List[Any]], List[ProjectChoice], str]:
        try:
            references.remove(item_id)
        except KeyError as exc:
            return _reference_rows(), _reference_choices(), str(exc)
        return _reference_rows(), _reference_choices(), "参考图已移除"

    def on_describe_reference(item_id: str, text: str) -> Tuple[List[List[Any]], str]:
        try:
            references.update_description(item_id, text or "")
        except KeyError as exc:
            return _reference_rows(), str(exc)
        return _reference_rows(), "说明已更新"

    return {
        "on_generate": on_generate,
        "on_refine": on_refine,
        "on_reframe_vertical": on_reframe_vertical,
        "on_inpaint": on_inpaint,
        "on_generate_design": on_generate_design,
        "on_enhance_prompt": on_enhance_prompt,
        "on_remove_background": on_remove_background,
        "on_convert_images": on_convert_images,
        "on_export_image": on_export_image,
        "on_save_keys": on_save_keys,
        "on_create_project": on_create_project,
        "on_close_project": on_close_project,
        "on_delete_project": on_delete_project,
        "on_select_project": on_select_project,
        "on_load_workspace": on_load_workspace,
        "on_list_history": on_list_history,
        "on_add_references": on_add_references,
        "on_move_reference": on_move_reference,
        "on_remove_reference": on_remove_reference,
        "on_describe_reference": on_describe_reference,
    }
