"""
DOM切片器 - 计算切片几何并逐片离屏渲染

职责：
1. 计算带重叠的横向切片（纯函数）
2. 为每个切片构建隔离的离屏容器并调用光栅引擎
3. 渲染结束（成功或失败）后必须卸载临时容器

测试要点：
- test_geometry_covers_width: 切片覆盖 [0, total_width) 无缝隙
- test_single_slice_when_narrow: 不超过切片宽度时只有一个切片
- test_container_detached_on_failure: 渲染失败时容器仍被卸载
"""

from __future__ import annotations

import logging

from PIL import Image

from ..config import RuntimeConfig, get_config
from ..interfaces import CaptureError, IRasterEngine
from ..models import (
    CaptureOptions,
    OffscreenContainer,
    RenderHost,
    RenderNode,
    SliceGeometry,
    SlicePlan,
)

logger = logging.getLogger(__name__)


def compute_geometry(
    total_width: int,
    total_height: int,
    slice_width: int,
    overlap_width: int,
) -> list[SliceGeometry]:
    """
    计算切片几何

    从偏移0开始，每片宽 min(slice_width, total_width - offset)，
    下一片偏移前进 slice_width - overlap_width；前进后的偏移
    达到或超过 total_width 时当前片为最后一片。

    Raises:
        ValueError: slice_width <= overlap_width（偏移无法前进）
    """
    if slice_width <= overlap_width:
        raise ValueError(
            f"slice_width({slice_width}) 必须大于 overlap_width({overlap_width})"
        )

    slices: list[SliceGeometry] = []
    current_x = 0
    index = 0
    while current_x < total_width:
        next_x = current_x + slice_width - overlap_width
        is_last = next_x >= total_width
        slices.append(
            SliceGeometry(
                index=index,
                x=current_x,
                y=0,
                width=min(slice_width, total_width - current_x),
                height=total_height,
                is_last_slice=is_last,
            )
        )
        if is_last:
            break
        current_x = next_x
        index += 1

    return slices


class DOMSlicer:
    """DOM切片器"""

    def __init__(
        self,
        source: RenderNode,
        raster_engine: IRasterEngine,
        host: RenderHost | None = None,
        config: RuntimeConfig | None = None,
        width: int | None = None,
        height: int | None = None,
    ):
        self.source = source
        self.raster_engine = raster_engine
        self.host = host or RenderHost()
        self.config = config or get_config()
        # 未指定时使用源节点的完整内容范围
        self.width = width if width is not None else source.scroll_width
        self.height = height if height is not None else source.scroll_height

    def plan(self) -> SlicePlan:
        """计算切片方案"""
        slicing = self.config.slicing
        slices = compute_geometry(
            self.width, self.height, slicing.slice_width, slicing.overlap_width
        )
        return SlicePlan(total_width=self.width, total_height=self.height, slices=slices)

    def render_slice(
        self,
        geometry: SliceGeometry,
        background_color: str | None = None,
    ) -> Image.Image:
        """
        渲染单个切片

        深拷贝源节点并按切片原点平移，放入显式宽高、溢出裁剪的
        离屏容器后交给光栅引擎。

        Raises:
            CaptureError: 光栅引擎失败
        """
        background = background_color or self.config.capture.default_background
        container = OffscreenContainer(
            child=self.source.clone(),
            offset_x=geometry.x,
            offset_y=geometry.y,
            width=geometry.width,
            height=geometry.height,
            background_color=background,
        )

        self.host.attach(container)
        try:
            return self.raster_engine.capture(
                container,
                CaptureOptions(
                    background_color=background,
                    width=geometry.width,
                    height=geometry.height,
                    pixel_ratio=self.config.capture.pixel_ratio,
                ),
            )
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"切片 {geometry.index} 渲染失败: {e}") from e
        finally:
            self.host.detach(container)
