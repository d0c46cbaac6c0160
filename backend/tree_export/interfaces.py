"""
模块接口契约 - 定义外部协作方与各模块的抽象接口

设计原则：
1. 光栅引擎、合并服务、切片存储均通过接口注入
2. 每个接口定义清晰的输入输出类型
3. 便于单元测试和fake替换

使用方式：
    from tree_export.interfaces import IMergeService

    class MyMergeService(IMergeService):
        def upload_slice(self, export_id, slice_index, payload, metadata=None):
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from PIL import Image

    from .models import (
        CaptureOptions,
        MergeProgress,
        MergeResult,
        RenderNode,
        SliceArtifact,
        SliceMetadata,
        StorageUsage,
        UploadReceipt,
    )


# ============================================================================
# 光栅引擎接口
# ============================================================================

class IRasterEngine(ABC):
    """光栅引擎接口 - 把一个可渲染节点转换为图片"""

    @abstractmethod
    def capture(self, node: RenderNode, options: CaptureOptions) -> Image.Image:
        """
        渲染节点为图片

        Args:
            node: 可渲染节点（可以不在可见流中，例如离屏容器）
            options: 背景色、显式宽高、像素比等

        Returns:
            渲染结果（宽高为 options 指定尺寸乘以像素比）
        """
        ...


# ============================================================================
# 合并服务接口
# ============================================================================

class IMergeService(ABC):
    """合并服务接口 - 上传切片并在服务端拼接"""

    @abstractmethod
    def upload_slice(
        self,
        export_id: str,
        slice_index: int,
        payload: str,
        metadata: SliceMetadata | None = None,
    ) -> UploadReceipt:
        """
        上传单个切片

        Raises:
            TransportError: 网络或服务端错误
        """
        ...

    @abstractmethod
    def merge(
        self,
        export_id: str,
        slice_count: int,
        on_progress: Callable[[MergeProgress], None] | None = None,
    ) -> MergeResult:
        """
        请求服务端合并已上传的切片

        Args:
            export_id: 导出ID
            slice_count: 期望的切片数量
            on_progress: 合并进度回调（0-100）

        Returns:
            合并结果（含下载地址）
        """
        ...

    def discard(self, export_id: str) -> None:
        """
        放弃任务已上传但未合并的切片

        默认不做处理：远端服务自行清理被放弃的上传。
        """
        return None


# ============================================================================
# 切片存储接口
# ============================================================================

class ISliceStore(ABC):
    """切片存储接口 - 按 (导出ID, 切片序号) 持久化切片"""

    @abstractmethod
    def init(self) -> None:
        """打开存储（幂等）"""
        ...

    @abstractmethod
    def save(
        self,
        export_id: str,
        slice_index: int,
        payload: str,
        metadata: SliceMetadata,
    ) -> int:
        """存储切片，返回自增主键"""
        ...

    @abstractmethod
    def list_by_job(self, export_id: str) -> list[SliceArtifact]:
        """按切片序号升序返回任务的全部切片"""
        ...

    @abstractmethod
    def clear(self, export_id: str) -> None:
        """删除任务的全部切片"""
        ...

    @abstractmethod
    def clear_all(self) -> None:
        """清空存储"""
        ...

    @abstractmethod
    def usage(self) -> StorageUsage:
        """存储使用情况"""
        ...


# ============================================================================
# 异常定义
# ============================================================================

class TreeExportError(Exception):
    """基础异常（stage 非空时消息带 [STAGE] 前缀）"""

    def __init__(self, message: str, stage: str | None = None):
        self.detail = message
        self.stage = stage
        super().__init__(f"[{stage}] {message}" if stage else message)

    def with_stage(self, stage: str) -> TreeExportError:
        """返回标注了阶段的同类异常"""
        return type(self)(self.detail, stage=stage)


class InvalidInputError(TreeExportError):
    """输入无效（缺少节点或尺寸为0）"""
    pass


class CaptureError(TreeExportError):
    """光栅引擎渲染失败"""
    pass


class StorageError(TreeExportError):
    """本地存储打开/读写失败"""
    pass


class TransportError(TreeExportError):
    """上传或合并服务错误"""
    pass


class DownloadError(TreeExportError):
    """文件保存失败"""
    pass
