"""Gradio layout composition for the design workspaces."""

from __future__ import annotations

from typing import Any, Optional

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from modules.optimization.prompt_engineer import FRAMING_OPTIONS
from modules.optimization.prompt_presets import AppSection, GeneratorMode, SubjectPosition
from modules.pipelines.concurrency import shared_gate
from modules.pipelines.generation import GenerationService
from modules.services.credential_store import GEMINI_KEY, REPLICATE_KEY, CredentialStore
from modules.services.persistence import create_persistence
from modules.ui.callbacks import build_callbacks

MODE_CHOICES = [
    ("人物", GeneratorMode.HUMAN.value),
    ("产品", GeneratorMode.OBJECT.value),
    ("编辑增强", GeneratorMode.ENHANCE.value),
    ("专家/知识产品", GeneratorMode.INFOPRODUCT.value),
]
POSITION_CHOICES = [
    ("左侧", SubjectPosition.LEFT.value),
    ("居中", SubjectPosition.CENTER.value),
    ("右侧", SubjectPosition.RIGHT.value),
]
DESIGN_CHOICES = [
    ("设备样机", "MOCKUPS"),
    ("3D 图标", "ICONS"),
    ("产品包装", "PRODUCTS"),
    ("Logo", "LOGOS"),
    ("头像照片", "PROFILE"),
]
SECTION_CHOICES = [
    ("落地页背景", AppSection.LANDING_PAGES.value),
    ("设计素材", AppSection.DESIGNS.value),
    ("去除背景", AppSection.REMOVE_BG.value),
]


def build_app(config: AppConfig) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio 未安装，请先执行依赖安装。")

    credentials = CredentialStore(config.credentials_path)
    callbacks_map = build_callbacks(
        config,
        generator=GenerationService(config),
        gate=shared_gate(config.max_concurrent_generations),
        persistence=create_persistence(config),
        credentials=credentials,
    )

    def _projects_update(result: tuple) -> tuple:
        choices, active, status = result
        return gr.update(choices=choices, value=active), status

    async def _create_project(mode: str) -> tuple:
        return _projects_update(
            await callbacks_map["on_create_project"](mode, AppSection.LANDING_PAGES.value)
        )

    def _close_project(tab_id: str) -> tuple:
        return _projects_update(callbacks_map["on_close_project"](tab_id))

    async def _delete_project(tab_id: str) -> tuple:
        return _projects_update(await callbacks_map["on_delete_project"](tab_id))

    async def _load_workspace() -> tuple:
        return _projects_update(await callbacks_map["on_load_workspace"]())

    def _references_update(result: tuple) -> tuple:
        rows, choices, status = result
        selected: Optional[str] = choices[-1][1] if choices else None
        return rows, gr.update(choices=choices, value=selected), status

    async def _add_references(files: Any) -> tuple:
        return _references_update(await callbacks_map["on_add_references"](files))

    def _move_up(item_id: str) -> tuple:
        return _references_update(callbacks_map["on_move_reference"](item_id, "up"))

    def _move_down(item_id: str) -> tuple:
        return _references_update(callbacks_map["on_move_reference"](item_id, "down"))

    def _remove_reference(item_id: str) -> tuple:
        return _references_update(callbacks_map["on_remove_reference"](item_id))

    with gr.Blocks(title="AI Design Builder") as demo:
        gr.Markdown("## AI 设计工作台")

        # 落地页背景
        with gr.Tab("落地页背景"):
            with gr.Row():
                project_select = gr.Dropdown(label="项目", choices=[], interactive=True)
                new_project_btn = gr.Button("新建项目")
                close_project_btn = gr.Button("关闭项目")
                delete_project_btn = gr.Button("删除项目", variant="stop")
            project_status = gr.Markdown("")

            with gr.Row():
                with gr.Column():
                    mode = gr.Radio(label="生成模式", choices=MODE_CHOICES, value=GeneratorMode.HUMAN.value)
                    subject_files = gr.File(
                        label="主体图像", file_count="multiple", file_types=["image"], type="filepath"
                    )
                    asset_files = gr.File(
                        label="素材/Logo（可选）", file_count="multiple", file_types=["image"], type="filepath"
                    )
                    with gr.Accordion("风格参考图", open=False):
                        reference_files = gr.File(
                            label="参考图", file_count="multiple", file_types=["image"], type="filepath"
                        )
                        add_refs_btn = gr.Button("添加参考图")
                        reference_table = gr.Dataframe(
                            headers=["顺序", "ID", "说明"], interactive=False, wrap=True
                        )
                        reference_select = gr.Dropdown(label="选择参考图", choices=[])
                        reference_text = gr.Textbox(label="参考说明（希望借鉴的元素）", lines=2)
                        with gr.Row():
                            describe_ref_btn = gr.Button("保存说明")
                            move_up_btn = gr.Button("上移")
                            move_down_btn = gr.Button("下移")
                            remove_ref_btn = gr.Button("移除")
                        reference_status = gr.Markdown("")

                    user_prompt = gr.Textbox(
                        label="场景描述",
                        lines=4,
                        placeholder="描述场景，可使用 @img1、@ref1、@asset1 引用图像",
                    )
                    with gr.Accordion("提示词助手", open=False):
                        niche = gr.Textbox(label="行业/细分领域")
                        environment = gr.Textbox(label="环境")
                        subject_description = gr.Textbox(label="主体描述")
                        framing = gr.Dropdown(
                            label="构图", choices=list(FRAMING_OPTIONS.keys()), value="MEDIUM"
                        )
                        enhance_btn = gr.Button("生成提示词")

                    position = gr.Radio(
                        label="主体位置", choices=POSITION_CHOICES, value=SubjectPosition.RIGHT.value
                    )
                    with gr.Row():
                        use_gradient = gr.Checkbox(label="渐变过渡", value=True)
                        use_blur = gr.Checkbox(label="背景虚化", value=False)
                        use_main_color = gr.Checkbox(label="指定主色", value=False)
                        main_color = gr.ColorPicker(label="主色", value="#1f2937")
                    with gr.Row():
                        palette_primary = gr.Textbox(label="主色调（专家模式）")
                        palette_secondary = gr.Textbox(label="辅助色")
                        palette_accent = gr.Textbox(label="强调色")
                    with gr.Row():
                        width = gr.Number(label="宽度", value=1920, precision=0)
                        height = gr.Number(label="高度", value=1080, precision=0)
                        batch_size = gr.Slider(label="生成数量", minimum=1, maximum=4, step=1, value=1)
                    generate_btn = gr.Button("生成背景", variant="primary")

                with gr.Column():
                    gallery = gr.Gallery(label="生成结果", columns=2, height="auto")
                    status = gr.Markdown("准备就绪。")
                    with gr.Accordion("调整结果", open=False):
                        source_image = gr.Image(label="待调整图像", type="filepath")
                        refine_text = gr.Textbox(label="调整说明", lines=2)
                        extra_files = gr.File(
                            label="附加图像（可选）", file_count="multiple", file_types=["image"], type="filepath"
                        )
                        refine_btn = gr.Button("应用调整")
                        vertical_height = gr.Number(label="竖版高度", value=1920, precision=0)
                        vertical_btn = gr.Button("生成竖版（文字排版）")
                        mask_image = gr.Image(label="蒙版（涂色区域将被编辑）", type="filepath")
                        inpaint_btn = gr.Button("局部编辑")
                        export_format = gr.Dropdown(
                            label="导出格式", choices=["png", "jpeg", "webp"], value="png"
                        )
                        export_quality = gr.Slider(label="导出质量", minimum=10, maximum=100, step=5, value=90)
                        export_btn = gr.Button("导出")
                        export_file = gr.File(label="导出文件")

            new_project_btn.click(fn=_create_project, inputs=[mode], outputs=[project_select, project_status])
            close_project_btn.click(fn=_close_project, inputs=[project_select], outputs=[project_select, project_status])
            delete_project_btn.click(fn=_delete_project, inputs=[project_select], outputs=[project_select, project_status])
            project_select.input(
                fn=callbacks_map["on_select_project"], inputs=[project_select], outputs=[gallery, project_status]
            )

            add_refs_btn.click(
                fn=_add_references,
                inputs=[reference_files],
                outputs=[reference_table, reference_select, reference_status],
            )
            move_up_btn.click(
                fn=_move_up, inputs=[reference_select], outputs=[reference_table, reference_select, reference_status]
            )
            move_down_btn.click(
                fn=_move_down, inputs=[reference_select], outputs=[reference_table, reference_select, reference_status]
            )
            remove_ref_btn.click(
                fn=_remove_reference,
                inputs=[reference_select],
                outputs=[reference_table, reference_select, reference_status],
            )
            describe_ref_btn.click(
                fn=callbacks_map["on_describe_reference"],
                inputs=[reference_select, reference_text],
                outputs=[reference_table, reference_status],
            )

            enhance_btn.click(
                fn=callbacks_map["on_enhance_prompt"],
                inputs=[niche, environment, subject_description, framing, use_gradient, use_blur],
                outputs=[user_prompt, status],
            )
            generate_btn.click(
                fn=callbacks_map["on_generate"],
                inputs=[
                    mode,
                    subject_files,
                    asset_files,
                    user_prompt,
                    position,
                    use_gradient,
                    use_blur,
                    use_main_color,
                    main_color,
                    width,
                    height,
                    batch_size,
                    palette_primary,
                    palette_secondary,
                    palette_accent,
                ],
                outputs=[gallery, status],
            )
            refine_btn.click(
                fn=callbacks_map["on_refine"],
                inputs=[source_image, refine_text, extra_files],
                outputs=[gallery, status],
            )
            vertical_btn.click(
                fn=callbacks_map["on_reframe_vertical"],
                inputs=[source_image, vertical_height, refine_text],
                outputs=[gallery, status],
            )
            inpaint_btn.click(
                fn=callbacks_map["on_inpaint"],
                inputs=[source_image, mask_image, refine_text],
                outputs=[gallery, status],
            )
            export_btn.click(
                fn=callbacks_map["on_export_image"],
                inputs=[source_image, export_format, export_quality],
                outputs=[export_file, status],
            )

        # 设计素材
        with gr.Tab("设计素材"):
            with gr.Row():
                with gr.Column():
                    design_category = gr.Radio(label="类别", choices=DESIGN_CHOICES, value="ICONS")
                    design_description = gr.Textbox(label="描述（图标主题 / 设备 / 产品类型）")
                    design_style = gr.Textbox(label="风格（如 Glassmorphism、Corporate、modern）")
                    design_name = gr.Textbox(label="名称（品牌 / Logo 文字）")
                    design_niche = gr.Textbox(label="行业")
                    with gr.Row():
                        design_bg = gr.ColorPicker(label="背景色", value="#ffffff")
                        design_color = gr.ColorPicker(label="主色", value="#2563eb")
                    design_image = gr.Image(label="参考/上传图像（可选，头像必填）", type="filepath")
                    design_extra = gr.Textbox(label="补充说明", lines=2)
                    design_btn = gr.Button("生成素材", variant="primary")
                with gr.Column():
                    design_gallery = gr.Gallery(label="生成结果", columns=2, height="auto")
                    design_status = gr.Markdown("准备就绪。")
            design_btn.click(
                fn=callbacks_map["on_generate_design"],
                inputs=[
                    design_category,
                    design_description,
                    design_style,
                    design_bg,
                    design_color,
                    design_name,
                    design_niche,
                    design_image,
                    design_extra,
                ],
                outputs=[design_gallery, design_status],
            )

        # 去除背景
        with gr.Tab("去除背景"):
            with gr.Row():
                remove_input = gr.Image(label="原图", type="filepath")
                remove_output = gr.Image(label="去背景结果")
            remove_btn = gr.Button("去除背景", variant="primary")
            remove_status = gr.Markdown("")
            remove_btn.click(
                fn=callbacks_map["on_remove_background"],
                inputs=[remove_input],
                outputs=[remove_output, remove_status],
            )

        # WebP 转换
        with gr.Tab("WebP 转换"):
            convert_files = gr.File(
                label="图像", file_count="multiple", file_types=["image"], type="filepath"
            )
            with gr.Row():
                convert_format = gr.Dropdown(label="格式", choices=["webp", "png", "jpeg"], value="webp")
                convert_quality = gr.Slider(label="质量", minimum=10, maximum=100, step=5, value=80)
                convert_width = gr.Number(label="最大宽度（可选）", precision=0)
                convert_height = gr.Number(label="最大高度（可选）", precision=0)
            convert_btn = gr.Button("转换", variant="primary")
            converted_files = gr.File(label="转换结果", file_count="multiple")
            convert_status = gr.Markdown("")
            convert_btn.click(
                fn=callbacks_map["on_convert_images"],
                inputs=[convert_files, convert_format, convert_quality, convert_width, convert_height],
                outputs=[converted_files, convert_status],
            )

        # 历史记录
        with gr.Tab("历史记录"):
            history_section = gr.Dropdown(
                label="分区", choices=[("全部", "")] + SECTION_CHOICES, value=""
            )
            refresh_btn = gr.Button("刷新")
            history_gallery = gr.Gallery(label="历史记录", columns=4, height="auto")
            history_status = gr.Markdown("")
            refresh_btn.click(
                fn=callbacks_map["on_list_history"],
                inputs=[history_section],
                outputs=[history_gallery, history_status],
            )

        # 设置
        with gr.Tab("设置"):
            gemini_key = gr.Textbox(
                label="Gemini API 密钥",
                type="password",
                value=credentials.get(GEMINI_KEY) or "",
            )
            replicate_key = gr.Textbox(
                label="Replicate API 密钥",
                type="password",
                value=credentials.get(REPLICATE_KEY) or "",
            )
            save_keys_btn = gr.Button("保存")
            keys_status = gr.Markdown("")
            save_keys_btn.click(
                fn=callbacks_map["on_save_keys"],
                inputs=[gemini_key, replicate_key],
                outputs=[keys_status],
            )

        demo.load(fn=_load_workspace, outputs=[project_select, project_status])

    return demo
