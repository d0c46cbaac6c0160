"""
导出编排器 - 导出入口

职责：
1. 测量节点完整内容范围并外扩（避免裁掉阴影/边框）
2. 决定快速路径（单次截图）或慢速路径（切片-存储-上传-合并）
3. 触发下载，慢速路径完成后延迟清理本地切片
4. 失败时带诊断信息重新抛出，不触发部分下载

测试要点：
- test_threshold_boundary: 阈值两侧分别走快/慢路径
- test_fast_path_download: 快速路径只截图一次并保存PNG
- test_slow_path_end_to_end: 慢速路径输出完整拼接图
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import RuntimeConfig, get_config
from ..interfaces import (
    CaptureError,
    IMergeService,
    InvalidInputError,
    IRasterEngine,
    ISliceStore,
    StorageError,
    TreeExportError,
)
from ..models import (
    CaptureOptions,
    DomSize,
    ExportJob,
    ExportPhase,
    ProgressEvent,
    RenderHost,
    RenderNode,
    SliceCheck,
    SliceGeometry,
    SliceMetadata,
)
from ..render import DOMSlicer, PillowRasterEngine, compute_geometry, encode_png_data_url
from ..storage import SliceStore
from ..transport import create_merge_service
from ..utils import DelayedTask
from .coordinator import ProgressSink, UploadMergeCoordinator
from .download import Downloader
from .stages import ExportStage

logger = logging.getLogger(__name__)


def needs_slicing(width: int, config: RuntimeConfig) -> bool:
    """外扩后的宽度超过单次截图上限时需要切片"""
    return width > config.slicing.max_width


def _estimate_mb(width: int, height: int) -> float:
    # RGBA 每像素4字节的粗略估算
    return round(width * height * 4 / 1024 / 1024, 2)


def padded_size(root: RenderNode, config: RuntimeConfig) -> tuple[int, int]:
    """导出区域尺寸：完整内容范围外扩 padding"""
    padding = config.capture.padding
    return root.scroll_width + padding, root.scroll_height + padding


def check_slice_required(root: RenderNode, config: RuntimeConfig | None = None) -> SliceCheck:
    """检查节点是否需要切片导出（与 export_region 使用同一外扩尺寸）"""
    config = config or get_config()
    width, height = padded_size(root, config)

    if needs_slicing(width, config):
        slicing = config.slicing
        estimated_slices = len(
            compute_geometry(width, height, slicing.slice_width, slicing.overlap_width)
        )
        return SliceCheck(
            needs_slicing=True,
            width=width,
            height=height,
            estimated_slices=estimated_slices,
            estimated_size=f"{_estimate_mb(width, height)}MB",
            recommendation=f"建议使用切片导出，预计生成 {estimated_slices} 个切片",
        )

    return SliceCheck(
        needs_slicing=False,
        width=width,
        height=height,
        recommendation="可以使用常规导出方式",
    )


def get_dom_size(root: RenderNode) -> DomSize:
    """节点尺寸信息"""
    width, height = root.scroll_width, root.scroll_height
    return DomSize(
        width=width,
        height=height,
        estimated_size=f"{_estimate_mb(width, height)}MB",
        aspect_ratio=round(width / height, 2) if height else 0.0,
    )


class ExportOrchestrator:
    """导出编排器"""

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        raster_engine: IRasterEngine | None = None,
        merge_service: IMergeService | None = None,
        store: ISliceStore | None = None,
        downloader: Downloader | None = None,
        host: RenderHost | None = None,
    ):
        self.config = config or get_config()
        self.raster_engine = raster_engine or PillowRasterEngine()
        self.merge_service = merge_service or create_merge_service(self.config)
        self.store = store or SliceStore(config=self.config)
        self.downloader = downloader or Downloader(config=self.config)
        self.host = host or RenderHost()
        self._cleanup_tasks: list[DelayedTask] = []

    def export_region(
        self,
        root: RenderNode | None,
        background_color: str | None = None,
        progress_sink: ProgressSink | None = None,
    ) -> Path:
        """
        导出节点为一张图片

        Args:
            root: 待导出节点
            background_color: 背景色，默认取配置
            progress_sink: 进度回调

        Returns:
            保存的文件路径

        Raises:
            TreeExportError: 消息以失败阶段为前缀
        """
        background = background_color or self.config.capture.default_background
        try:
            width, height = self._measure(root)
            logger.info(f"获取到节点尺寸（含外扩） - 宽度: {width}, 高度: {height}")

            if needs_slicing(width, self.config):
                return self._export_sliced(root, width, height, background, progress_sink)
            return self._export_direct(root, width, height, background, progress_sink)

        except TreeExportError as e:
            logger.error(f"导出失败: {e}")
            raise
        except Exception as e:
            logger.exception("导出失败")
            raise CaptureError(f"导出失败：{str(e) or '未知错误'}") from e

    def _measure(self, root: RenderNode | None) -> tuple[int, int]:
        if root is None:
            raise InvalidInputError("尺寸信息或DOM元素无效", stage=ExportStage.MEASURE)
        try:
            width, height = root.scroll_width, root.scroll_height
        except Exception as e:
            raise CaptureError(f"读取节点尺寸失败: {e}", stage=ExportStage.MEASURE) from e
        if width <= 0 or height <= 0:
            raise InvalidInputError(f"节点尺寸为0: {width}x{height}", stage=ExportStage.MEASURE)

        return padded_size(root, self.config)

    def _export_direct(
        self,
        root: RenderNode,
        width: int,
        height: int,
        background: str,
        progress_sink: ProgressSink | None,
    ) -> Path:
        """快速路径：一次截图"""
        logger.info("开始生成图片")
        try:
            image = self.raster_engine.capture(
                root,
                CaptureOptions(
                    background_color=background,
                    width=width,
                    height=height,
                    pixel_ratio=self.config.capture.pixel_ratio,
                ),
            )
        except Exception as e:
            raise CaptureError(
                f"图片生成失败：{str(e) or '未知错误'}", stage=ExportStage.CAPTURE
            ) from e
        logger.info("图片生成完毕")

        path = self.downloader.save_image(image)
        if progress_sink:
            progress_sink(
                ProgressEvent(
                    phase=ExportPhase.COMPLETED,
                    current=1,
                    total=1,
                    percentage=100,
                    message="导出完成！",
                )
            )
        return path

    def _export_sliced(
        self,
        root: RenderNode,
        width: int,
        height: int,
        background: str,
        progress_sink: ProgressSink | None,
    ) -> Path:
        """慢速路径：切片 -> 存储 -> 上传 -> 合并 -> 下载"""
        job = ExportJob(width=width, height=height, background_color=background)
        try:
            self.store.init()
        except StorageError as e:
            raise e.with_stage(ExportStage.RENDERING) from e

        slicer = DOMSlicer(
            root,
            self.raster_engine,
            host=self.host,
            config=self.config,
            width=width,
            height=height,
        )
        plan = slicer.plan()
        logger.info(f"[{job.export_id}] 将生成 {plan.slice_count} 个切片")

        def render(geometry: SliceGeometry) -> str:
            return encode_png_data_url(slicer.render_slice(geometry, background))

        def persist(geometry: SliceGeometry, payload: str) -> int:
            metadata = SliceMetadata.from_geometry(geometry, plan)
            return self.store.save(job.export_id, geometry.index, payload, metadata)

        coordinator = UploadMergeCoordinator(self.merge_service, self.store, config=self.config)
        result = coordinator.run(job.export_id, plan.slices, render, persist, progress_sink)

        download = self.config.download
        try:
            path = self.downloader.fetch(
                result.download_url, title=f"{download.title}-{download.merged_suffix}"
            )
        except TreeExportError:
            self._discard(job.export_id)
            raise

        self.schedule_cleanup(job.export_id)
        return path

    def schedule_cleanup(self, export_id: str) -> DelayedTask:
        """延迟清理任务切片"""
        task = DelayedTask(
            self.config.storage.cleanup_delay_sec,
            lambda: self._discard(export_id),
            name=f"cleanup-{export_id}",
        )
        task.start()
        # 已执行的任务不再保留
        self._cleanup_tasks = [t for t in self._cleanup_tasks if t.pending]
        if task.pending:
            self._cleanup_tasks.append(task)
        return task

    @property
    def pending_cleanups(self) -> int:
        """尚未执行的延迟清理数量"""
        return sum(1 for t in self._cleanup_tasks if t.pending)

    def cancel_cleanup(self) -> None:
        """取消所有尚未执行的延迟清理（切片保留在存储中）"""
        for task in self._cleanup_tasks:
            task.cancel()
        self._cleanup_tasks.clear()

    def wait_for_cleanup(self, timeout: float | None = None) -> None:
        """等待已安排的清理执行完毕"""
        for task in self._cleanup_tasks:
            task.join(timeout)
        self._cleanup_tasks.clear()

    def _discard(self, export_id: str) -> None:
        try:
            self.store.clear(export_id)
            logger.info(f"[{export_id}] 本地切片数据已清理")
        except StorageError as e:
            logger.warning(f"[{export_id}] 清理本地切片数据失败: {e}")
