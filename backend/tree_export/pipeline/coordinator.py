"""
上传合并协调器 - 把本地渲染的切片变成一张可下载的图片

职责：
1. 渲染阶段：按序号逐片渲染并持久化（串行，避免同时持有大量大图）
2. 上传阶段：按序号升序逐片上传已持久化的切片
3. 合并阶段：等待合并服务拼接，报告进度
4. 任一阶段失败：清理该任务的本地切片，带阶段前缀重新抛出

状态：RENDERING -> UPLOADING -> MERGING -> COMPLETED | FAILED

测试要点：
- test_render_progress_capped: 渲染阶段进度不超过渲染权重
- test_progress_monotonic: 整体进度单调不减，仅在 completed 时为100
- test_capture_failure_cleans_up: 渲染失败后无残留切片
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..config import RuntimeConfig, get_config
from ..interfaces import (
    CaptureError,
    IMergeService,
    ISliceStore,
    StorageError,
    TransportError,
    TreeExportError,
)
from ..models import (
    ExportPhase,
    MergeProgress,
    MergeResult,
    ProgressEvent,
    SliceArtifact,
    SliceGeometry,
)
from .stages import ExportStage, PipelineStage, build_slice_stages

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]
RenderFn = Callable[[SliceGeometry], str]
PersistFn = Callable[[SliceGeometry, str], int]

# 非本系统异常按阶段归类
_STAGE_ERRORS: dict[ExportStage, type[TreeExportError]] = {
    ExportStage.RENDERING: CaptureError,
    ExportStage.UPLOADING: TransportError,
    ExportStage.MERGING: TransportError,
}


class ProgressReporter:
    """进度上报：保证单任务内整体进度单调不减，completed 之前不到100"""

    def __init__(self, sink: ProgressSink | None = None):
        self.sink = sink
        self.last_percentage = 0

    def emit(
        self,
        phase: ExportPhase,
        current: int,
        total: int,
        percentage: int,
        message: str,
        result: MergeResult | None = None,
    ) -> None:
        if phase != ExportPhase.COMPLETED:
            percentage = min(percentage, 99)
        percentage = max(self.last_percentage, percentage)
        self.last_percentage = percentage
        if self.sink:
            self.sink(
                ProgressEvent(
                    phase=phase,
                    current=current,
                    total=total,
                    percentage=percentage,
                    message=message,
                    result=result,
                )
            )


class UploadMergeCoordinator:
    """上传合并协调器"""

    def __init__(
        self,
        merge_service: IMergeService,
        store: ISliceStore,
        config: RuntimeConfig | None = None,
    ):
        self.merge_service = merge_service
        self.store = store
        self.config = config or get_config()

    def run(
        self,
        export_id: str,
        geometries: Sequence[SliceGeometry],
        render_fn: RenderFn,
        persist_fn: PersistFn,
        progress_sink: ProgressSink | None = None,
    ) -> MergeResult:
        """执行 渲染 -> 上传 -> 合并"""
        reporter = ProgressReporter(progress_sink)
        stages = {s.name: s for s in build_slice_stages(self.config.progress)}

        stage = ExportStage.RENDERING
        try:
            self._render_all(export_id, geometries, render_fn, persist_fn,
                             stages[stage], reporter)

            stage = ExportStage.UPLOADING
            artifacts = self._load_artifacts(export_id, len(geometries))
            self._upload_all(export_id, artifacts, stages[stage], reporter)

            stage = ExportStage.MERGING
            result = self._merge(export_id, len(artifacts), stages[stage], reporter)

        except Exception as e:
            logger.error(f"[{export_id}] 阶段失败 {stage}: {e}")
            self._cleanup(export_id)
            raise self._stage_error(stage, e) from e

        logger.info(f"[{export_id}] 导出完成: {result.download_url}")
        reporter.emit(ExportPhase.COMPLETED, 100, 100, 100, "导出完成！", result=result)
        return result

    def _render_all(
        self,
        export_id: str,
        geometries: Sequence[SliceGeometry],
        render_fn: RenderFn,
        persist_fn: PersistFn,
        stage: PipelineStage,
        reporter: ProgressReporter,
    ) -> None:
        total = len(geometries)
        reporter.emit(stage.phase, 0, total, stage.progress_start,
                      f"准备生成 {total} 个切片...")

        for i, geometry in enumerate(sorted(geometries, key=lambda g: g.index)):
            logger.debug(f"[{export_id}] 开始渲染切片 {i + 1}/{total}")
            payload = render_fn(geometry)
            persist_fn(geometry, payload)
            reporter.emit(
                stage.phase,
                i + 1,
                total,
                stage.scale((i + 1) / total),
                f"正在生成切片 {i + 1}/{total}...",
            )

    def _load_artifacts(self, export_id: str, expected: int) -> list[SliceArtifact]:
        """读取已持久化切片并校验序号连续升序"""
        artifacts = self.store.list_by_job(export_id)
        indices = [a.slice_index for a in artifacts]
        if indices != list(range(expected)):
            raise StorageError(f"持久化切片与计划不符: 期望 {expected} 个，实际序号 {indices}")
        return artifacts

    def _upload_all(
        self,
        export_id: str,
        artifacts: list[SliceArtifact],
        stage: PipelineStage,
        reporter: ProgressReporter,
    ) -> None:
        total = len(artifacts)
        logger.info(f"[{export_id}] 开始向合并服务发送 {total} 个切片")
        reporter.emit(stage.phase, 0, total, stage.progress_start, "开始上传切片到服务器...")

        for i, artifact in enumerate(artifacts):
            self.merge_service.upload_slice(
                export_id, artifact.slice_index, artifact.data_url, artifact.metadata
            )
            reporter.emit(
                stage.phase,
                i + 1,
                total,
                stage.scale((i + 1) / total),
                f"正在上传切片 {i + 1}/{total}",
            )

    def _merge(
        self,
        export_id: str,
        slice_count: int,
        stage: PipelineStage,
        reporter: ProgressReporter,
    ) -> MergeResult:
        logger.info(f"[{export_id}] 开始合并处理")

        def on_progress(progress: MergeProgress) -> None:
            reporter.emit(
                stage.phase,
                progress.current,
                progress.total,
                stage.scale(progress.percentage / 100),
                progress.message or f"正在合并图片... {progress.percentage}%",
            )

        return self.merge_service.merge(export_id, slice_count, on_progress)

    def _cleanup(self, export_id: str) -> None:
        """清理失败任务的本地切片与已上传载荷（失败只记录日志）"""
        try:
            self.store.clear(export_id)
        except Exception as e:
            logger.warning(f"[{export_id}] 清理失败数据时出错: {e}")
        try:
            self.merge_service.discard(export_id)
        except Exception as e:
            logger.warning(f"[{export_id}] 丢弃已上传切片时出错: {e}")

    @staticmethod
    def _stage_error(stage: ExportStage, exc: Exception) -> TreeExportError:
        if isinstance(exc, TreeExportError):
            return exc.with_stage(stage)
        return _STAGE_ERRORS[stage](f"{type(exc).__name__}: {exc}", stage=stage)
