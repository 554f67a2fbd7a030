"""One-off script for debugging a real landing-page background generation."""

import asyncio
import sys
from pathlib import Path

from config.settings import load_config
from modules.pipelines.concurrency import ConcurrencyGate
from modules.pipelines.generation import GenerationService
from modules.ui.callbacks import build_callbacks
from modules.utils.logging import setup_logging


async def run(subject_path: str) -> None:
    # 1. 准备真实配置与服务对象；不注入持久化，结果只保存在本地
    config = load_config()
    setup_logging(config)
    callbacks = build_callbacks(
        config,
        generator=GenerationService(config),
        gate=ConcurrencyGate(config.max_concurrent_generations),
        persistence=None,
    )

    # 2. 调用生成回调，执行真实请求
    gallery, status = await callbacks["on_generate"](
        "OBJECT",
        [subject_path],
        [],
        "minimal marble podium, soft morning light",
        "RIGHT",
        True,
        False,
        False,
        "",
        1920,
        1080,
        2,
    )

    print("状态:", status)
    for index, (image, _caption) in enumerate(gallery, start=1):
        out_path = Path(f"debug_generation_{index}.png")
        image.save(out_path)
        print("图像已保存:", out_path.resolve())
    if not gallery:
        print("未返回图像，请检查状态信息。")


def main() -> None:
    if len(sys.argv) < 2:
        print("用法: python scripts/manual_generation_debug.py <主体图像路径>")
        raise SystemExit(1)
    asyncio.run(run(sys.argv[1]))


if __name__ == "__main__":
    main()
