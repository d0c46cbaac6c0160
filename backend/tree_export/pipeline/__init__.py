"""
流水线模块 - 导出编排与执行

子模块：
- stages: 导出阶段与进度区间
- coordinator: 上传合并协调器
- orchestrator: 导出入口（快/慢路径）
- download: 结果保存
"""

from .coordinator import ProgressReporter, UploadMergeCoordinator
from .download import Downloader, build_filename
from .orchestrator import (
    ExportOrchestrator,
    check_slice_required,
    get_dom_size,
    needs_slicing,
)
from .stages import ExportStage, PipelineStage, build_slice_stages

__all__ = [
    "ExportStage",
    "PipelineStage",
    "build_slice_stages",
    "ProgressReporter",
    "UploadMergeCoordinator",
    "Downloader",
    "build_filename",
    "ExportOrchestrator",
    "check_slice_required",
    "get_dom_size",
    "needs_slicing",
]
