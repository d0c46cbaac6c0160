"""
流水线阶段定义

职责：
1. 定义导出各阶段名称（用于错误前缀）
2. 定义切片导出各阶段的进度区间
3. 阶段内进度到整体进度的换算

测试要点：
- test_stage_windows: 默认 30/40/30 区间
- test_stage_scale: 阶段内比例换算
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..config import ProgressConfig
from ..models import ExportPhase


class ExportStage(str, Enum):
    """导出阶段枚举"""
    MEASURE = "MEASURE"
    CAPTURE = "CAPTURE"
    RENDERING = "RENDERING"
    UPLOADING = "UPLOADING"
    MERGING = "MERGING"
    DOWNLOAD = "DOWNLOAD"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PipelineStage:
    """流水线阶段"""
    name: ExportStage
    phase: ExportPhase
    progress_start: int  # 进度起点（0-100）
    progress_end: int    # 进度终点

    def scale(self, fraction: float) -> int:
        """阶段内完成比例（0-1）换算为整体进度"""
        fraction = min(max(fraction, 0.0), 1.0)
        return self.progress_start + round((self.progress_end - self.progress_start) * fraction)


def build_slice_stages(progress: ProgressConfig) -> list[PipelineStage]:
    """切片导出各阶段配置（渲染 → 上传 → 合并）"""
    render_end = progress.render_weight
    upload_end = render_end + progress.upload_weight
    return [
        PipelineStage(ExportStage.RENDERING, ExportPhase.SLICING, 0, render_end),
        PipelineStage(ExportStage.UPLOADING, ExportPhase.UPLOADING, render_end, upload_end),
        PipelineStage(ExportStage.MERGING, ExportPhase.MERGING, upload_end, 100),
    ]
