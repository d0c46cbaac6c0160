"""
本地合并服务 - 与HTTP合并服务相同契约的进程内实现

按切片序号从左到右拼接，重叠区域做线性渐变融合，输出PNG并返回
file:// 下载地址。用于离线导出，也作为协调器测试的替身。

依赖：
- PIL.Image: 拼接与融合
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from PIL import Image

from ..config import RuntimeConfig, get_config
from ..interfaces import IMergeService, TransportError
from ..models import MergeProgress, MergeResult, SliceMetadata, UploadReceipt
from ..render.raster import decode_data_url

logger = logging.getLogger(__name__)


def _seam_mask(width: int, height: int) -> Image.Image:
    """水平渐变遮罩：左侧保留已有像素，右侧过渡到新切片"""
    return Image.linear_gradient("L").rotate(90).resize((width, height))


def stitch_slices(slices: list[tuple[Image.Image, SliceMetadata]]) -> Image.Image:
    """
    拼接切片

    Args:
        slices: 按序号排列的 (图片, 元数据)

    Returns:
        完整图片（尺寸为元数据总尺寸乘以像素比）
    """
    if not slices:
        raise ValueError("No slices to stitch")

    first_image, first_meta = slices[0]
    ratio = first_image.width / first_meta.width
    canvas = Image.new(
        "RGB",
        (round(first_meta.total_width * ratio), round(first_meta.total_height * ratio)),
    )

    prev_right = 0
    for image, meta in slices:
        image = image.convert("RGB")
        x = round(meta.x * ratio)
        y = round(meta.y * ratio)
        overlap = max(0, min(prev_right - x, image.width))

        old_strip = canvas.crop((x, y, x + overlap, y + image.height)) if overlap else None
        canvas.paste(image, (x, y))
        if old_strip is not None:
            new_strip = image.crop((0, 0, overlap, image.height))
            blended = Image.composite(new_strip, old_strip, _seam_mask(overlap, image.height))
            canvas.paste(blended, (x, y))

        prev_right = x + image.width

    return canvas


class LocalMergeService(IMergeService):
    """本地合并服务"""

    def __init__(self, output_dir: Path | None = None, config: RuntimeConfig | None = None):
        self.output_dir = Path(output_dir or (config or get_config()).storage_dir / "merged")
        self._uploads: dict[str, dict[int, tuple[str, SliceMetadata]]] = {}

    def upload_slice(
        self,
        export_id: str,
        slice_index: int,
        payload: str,
        metadata: SliceMetadata | None = None,
    ) -> UploadReceipt:
        if metadata is None:
            raise TransportError(f"切片 {slice_index} 缺少元数据，无法定位拼接位置")

        uploaded = self._uploads.setdefault(export_id, {})
        if slice_index in uploaded:
            raise TransportError(f"切片 {slice_index} 重复上传")
        uploaded[slice_index] = (payload, metadata)

        return UploadReceipt(
            success=True,
            slice_id=f"{export_id}_slice_{slice_index}",
            upload_time=int(time.time() * 1000),
        )

    def discard(self, export_id: str) -> None:
        """释放任务已上传的切片载荷"""
        if self._uploads.pop(export_id, None) is not None:
            logger.debug(f"[{export_id}] 已丢弃未合并的上传切片")

    @property
    def pending_exports(self) -> tuple[str, ...]:
        """已有上传但尚未合并的导出ID"""
        return tuple(self._uploads)

    def merge(
        self,
        export_id: str,
        slice_count: int,
        on_progress: Callable[[MergeProgress], None] | None = None,
    ) -> MergeResult:
        uploaded = self._uploads.pop(export_id, {})
        if sorted(uploaded) != list(range(slice_count)):
            raise TransportError(
                f"切片不完整: 期望 {slice_count} 个，实际收到 {sorted(uploaded)}"
            )

        decoded: list[tuple[Image.Image, SliceMetadata]] = []
        try:
            for i in range(slice_count):
                payload, meta = uploaded[i]
                decoded.append((decode_data_url(payload), meta))
                if on_progress:
                    percentage = round((i + 1) / slice_count * 90)
                    on_progress(
                        MergeProgress(
                            current=percentage,
                            total=100,
                            percentage=percentage,
                            message=f"正在合并图片... {percentage}%",
                        )
                    )

            merged = stitch_slices(decoded)
            self.output_dir.mkdir(parents=True, exist_ok=True)
            output_path = self.output_dir / f"{export_id}.png"
            merged.save(output_path, format="PNG")
        except (OSError, ValueError) as e:
            raise TransportError(f"本地合并失败: {e}") from e

        if on_progress:
            on_progress(MergeProgress(current=100, total=100, percentage=100, message="合并完成"))

        size_mb = output_path.stat().st_size / 1024 / 1024
        logger.info(f"[{export_id}] 本地合并完成: {output_path}")
        return MergeResult(
            success=True,
            download_url=output_path.resolve().as_uri(),
            export_id=export_id,
            file_size=f"{size_mb:.1f}MB",
            merge_time=int(time.time() * 1000),
        )
