"""
数据模型层 - 定义系统核心数据结构

所有模块通过这些模型交互，实现解耦：
- ExportJob: 导出任务标识
- SliceGeometry / SliceMetadata / SliceArtifact: 切片几何与产物
- ProgressEvent / MergeResult: 进度与结果
- Scene / OffscreenContainer / RenderHost: 待导出文档与离屏渲染
"""

from .job import ExportJob, generate_export_id
from .progress import (
    DomSize,
    ExportPhase,
    MergeProgress,
    MergeResult,
    ProgressEvent,
    SliceCheck,
    StorageReport,
    StorageUsage,
    UploadReceipt,
)
from .scene import (
    CaptureOptions,
    OffscreenContainer,
    RenderHost,
    RenderNode,
    Scene,
    SceneElement,
)
from .slice import SliceArtifact, SliceGeometry, SliceMetadata, SlicePlan

__all__ = [
    "ExportJob",
    "generate_export_id",
    "SliceGeometry",
    "SlicePlan",
    "SliceMetadata",
    "SliceArtifact",
    "ExportPhase",
    "ProgressEvent",
    "MergeProgress",
    "MergeResult",
    "UploadReceipt",
    "StorageUsage",
    "StorageReport",
    "SliceCheck",
    "DomSize",
    "Scene",
    "SceneElement",
    "RenderNode",
    "OffscreenContainer",
    "RenderHost",
    "CaptureOptions",
]
