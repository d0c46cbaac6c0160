"""
进度与结果模型

ProgressEvent 为临时对象，不持久化、不缓冲、不重放；
MergeResult / UploadReceipt 与合并服务的 JSON 字段（驼峰）互相映射。
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ExportPhase(str, Enum):
    """进度阶段"""
    SLICING = "slicing"
    UPLOADING = "uploading"
    MERGING = "merging"
    COMPLETED = "completed"


class UploadReceipt(BaseModel):
    """切片上传回执"""
    success: bool
    slice_id: str = Field(..., alias="sliceId")
    upload_time: int = Field(..., alias="uploadTime")

    model_config = {"populate_by_name": True}


class MergeResult(BaseModel):
    """合并结果（慢速路径的最终产物）"""
    success: bool
    download_url: str = Field(..., alias="downloadUrl")
    export_id: str = Field(..., alias="exportId")
    file_size: str = Field("", alias="fileSize")
    merge_time: int = Field(..., alias="mergeTime")

    model_config = {"populate_by_name": True}


class MergeProgress(BaseModel):
    """服务端合并进度（未加权，0-100）"""
    current: int = 0
    total: int = 100
    percentage: int = Field(0, ge=0, le=100)
    message: str = ""


class ProgressEvent(BaseModel):
    """导出进度事件"""
    phase: ExportPhase
    current: int = 0
    total: int = 0
    percentage: int = Field(0, ge=0, le=100, description="整体进度，单任务内单调不减")
    message: str = ""
    result: MergeResult | None = None


class StorageUsage(BaseModel):
    """存储使用情况"""
    count: int = 0
    total_size_mb: float = 0.0


class StorageReport(StorageUsage):
    """存储监控结果"""
    max_size_mb: float
    is_over_limit: bool
    usage_percentage: int
    recommendation: str


class SliceCheck(BaseModel):
    """是否需要切片导出的检查结果"""
    needs_slicing: bool
    width: int
    height: int
    estimated_slices: int | None = None
    estimated_size: str | None = None
    recommendation: str


class DomSize(BaseModel):
    """节点尺寸信息"""
    width: int
    height: int
    estimated_size: str
    aspect_ratio: float
