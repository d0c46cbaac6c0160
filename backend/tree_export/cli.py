"""
命令行入口

用法：
    tree-export export scene.yaml --background "#ffffff"
    tree-export check scene.yaml
    tree-export storage-info
    tree-export clear
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import RuntimeConfig, get_config
from .interfaces import TreeExportError
from .models import ProgressEvent, Scene
from .pipeline import ExportOrchestrator, check_slice_required, get_dom_size
from .storage import SliceStore, clear_all_export_data, monitor_storage_usage


def configure_logging(config: RuntimeConfig) -> None:
    """按配置设置日志级别与可选的文件输出"""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.logging.log_to_file:
        log_dir = config.get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "export.log", encoding="utf-8"))

    logging.basicConfig(
        level=config.logging.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.phase.value:>9}] {event.percentage:3d}% {event.message}")


def _load_scene(path: str) -> Scene | None:
    try:
        return Scene.from_file(path)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        print(f"场景文件无效: {path}: {e}", file=sys.stderr)
        return None


def _cmd_export(args: argparse.Namespace, config: RuntimeConfig) -> int:
    updates: dict = {}
    if args.merge_url:
        updates["merge_service"] = {"base_url": args.merge_url}
    if args.output_dir:
        updates["download"] = {"output_dir": Path(args.output_dir)}
    if updates:
        config = config.with_updates(**updates)

    scene = _load_scene(args.scene)
    if scene is None:
        return 1

    orchestrator = ExportOrchestrator(config=config)
    try:
        path = orchestrator.export_region(scene, args.background, _print_progress)
    except TreeExportError as e:
        print(f"导出失败: {e}", file=sys.stderr)
        return 1
    finally:
        orchestrator.wait_for_cleanup()

    print(path)
    return 0


def _cmd_check(args: argparse.Namespace, config: RuntimeConfig) -> int:
    scene = _load_scene(args.scene)
    if scene is None:
        return 1
    print(get_dom_size(scene).model_dump_json(indent=2))
    print(check_slice_required(scene, config).model_dump_json(indent=2))
    return 0


def _cmd_storage_info(args: argparse.Namespace, config: RuntimeConfig) -> int:
    report = monitor_storage_usage(SliceStore(config=config), config.storage.max_size_mb)
    print(report.model_dump_json(indent=2))
    return 0


def _cmd_clear(args: argparse.Namespace, config: RuntimeConfig) -> int:
    try:
        clear_all_export_data(SliceStore(config=config))
    except TreeExportError as e:
        print(f"清理失败: {e}", file=sys.stderr)
        return 1
    print("所有导出数据已清理")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tree-export",
        description="Export a wide family-tree scene to a single PNG.",
    )
    parser.add_argument("--config", default="", help="运行期配置YAML（默认：config/tree_export.yaml）")
    sub = parser.add_subparsers(dest="command", required=True)

    p_export = sub.add_parser("export", help="导出场景为图片")
    p_export.add_argument("scene", help="场景文件（YAML/JSON）")
    p_export.add_argument("--background", default=None, help="背景色，如 #f9fafb")
    p_export.add_argument("--merge-url", default="", help="合并服务地址（为空时本地合并）")
    p_export.add_argument("--output-dir", default="", help="下载目录")
    p_export.set_defaults(func=_cmd_export)

    p_check = sub.add_parser("check", help="检查是否需要切片导出")
    p_check.add_argument("scene")
    p_check.set_defaults(func=_cmd_check)

    p_info = sub.add_parser("storage-info", help="切片存储占用")
    p_info.set_defaults(func=_cmd_storage_info)

    p_clear = sub.add_parser("clear", help="清空切片存储")
    p_clear.set_defaults(func=_cmd_clear)

    args = parser.parse_args(argv)
    config = RuntimeConfig.from_yaml(args.config) if args.config else get_config()
    configure_logging(config)
    return args.func(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
