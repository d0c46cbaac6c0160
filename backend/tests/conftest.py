"""
pytest 配置与公共 fixtures

使用方式：
    def test_something(runtime_config, store):
        store.init()
        assert store.usage().count == 0
"""

from __future__ import annotations

import tempfile
import time
from pathlib import Path
from typing import Callable, Generator

import pytest
from PIL import Image

from tree_export.config import DownloadConfig, RuntimeConfig, StorageConfig
from tree_export.interfaces import IMergeService, TransportError
from tree_export.models import (
    CaptureOptions,
    MergeProgress,
    MergeResult,
    ProgressEvent,
    RenderHost,
    RenderNode,
    Scene,
    SceneElement,
    SliceMetadata,
    UploadReceipt,
)
from tree_export.render import PillowRasterEngine
from tree_export.storage import SliceStore


# ============================================================================
# 配置 Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """临时目录"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def runtime_config(temp_dir: Path) -> RuntimeConfig:
    """运行期配置（存储与下载目录指向临时目录，清理立即执行）"""
    return RuntimeConfig(
        storage_dir=temp_dir / "storage",
        storage=StorageConfig(cleanup_delay_sec=0),
        download=DownloadConfig(output_dir=temp_dir / "downloads"),
    )


# ============================================================================
# 存储 Fixtures
# ============================================================================

@pytest.fixture
def store(runtime_config: RuntimeConfig) -> Generator[SliceStore, None, None]:
    """临时切片存储"""
    s = SliceStore(config=runtime_config)
    yield s
    s.close()


@pytest.fixture
def sample_metadata() -> SliceMetadata:
    """示例切片元数据"""
    return SliceMetadata(
        total_width=5000,
        total_height=300,
        slice_count=3,
        x=0,
        y=0,
        width=2000,
        height=300,
        is_last_slice=False,
    )


# ============================================================================
# 场景 Fixtures
# ============================================================================

def make_scene(width: int, height: int = 50) -> Scene:
    """按宽度生成一行等距节点的场景"""
    elements = [
        SceneElement(kind="rect", x=x, y=10, width=80, height=30, fill="#3b82f6")
        for x in range(0, max(width - 80, 1), 400)
    ]
    elements.append(
        SceneElement(kind="line", x=0, y=45, width=width, height=0, color="#111827")
    )
    return Scene(width=width, height=height, elements=elements)


@pytest.fixture
def scene_factory() -> Callable[..., Scene]:
    return make_scene


@pytest.fixture
def wide_scene() -> Scene:
    """外扩后超过阈值的场景（4901 + 100 = 5001）"""
    return make_scene(4901)


@pytest.fixture
def narrow_scene() -> Scene:
    """外扩后未超过阈值的场景（4899 + 100 = 4999）"""
    return make_scene(4899)


@pytest.fixture
def host() -> RenderHost:
    return RenderHost()


# ============================================================================
# 替身
# ============================================================================

class FakeRasterEngine(PillowRasterEngine):
    """记录调用次数，可在第 fail_on 次（从0计）调用时失败"""

    def __init__(self, fail_on: int | None = None):
        self.fail_on = fail_on
        self.calls: list[CaptureOptions] = []

    def capture(self, node: RenderNode, options: CaptureOptions) -> Image.Image:
        call_index = len(self.calls)
        self.calls.append(options)
        if call_index == self.fail_on:
            raise RuntimeError("raster engine exploded")
        return super().capture(node, options)


class FakeMergeService(IMergeService):
    """记录上传顺序，按预设进度合并"""

    def __init__(
        self,
        fail_upload_at: int | None = None,
        fail_merge: bool = False,
        merge_steps: tuple[int, ...] = (50, 100),
    ):
        self.fail_upload_at = fail_upload_at
        self.fail_merge = fail_merge
        self.merge_steps = merge_steps
        self.uploads: list[tuple[str, int, SliceMetadata | None]] = []
        self.merged: list[tuple[str, int]] = []
        self.discarded: list[str] = []

    def upload_slice(self, export_id, slice_index, payload, metadata=None) -> UploadReceipt:
        if slice_index == self.fail_upload_at:
            raise TransportError(f"upload rejected: {slice_index}")
        self.uploads.append((export_id, slice_index, metadata))
        return UploadReceipt(
            success=True,
            slice_id=f"{export_id}_slice_{slice_index}",
            upload_time=int(time.time() * 1000),
        )

    def discard(self, export_id) -> None:
        self.discarded.append(export_id)

    def merge(self, export_id, slice_count, on_progress=None) -> MergeResult:
        if self.fail_merge:
            raise TransportError("merge failed")
        for pct in self.merge_steps:
            if on_progress:
                on_progress(MergeProgress(current=pct, total=100, percentage=pct))
        self.merged.append((export_id, slice_count))
        return MergeResult(
            success=True,
            download_url=f"https://merge.example.com/downloads/{export_id}.png",
            export_id=export_id,
            file_size="1.0MB",
            merge_time=int(time.time() * 1000),
        )


class ProgressCollector:
    """收集进度事件"""

    def __init__(self):
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def percentages(self) -> list[int]:
        return [e.percentage for e in self.events]


@pytest.fixture
def raster_engine() -> FakeRasterEngine:
    return FakeRasterEngine()


@pytest.fixture
def merge_service() -> FakeMergeService:
    return FakeMergeService()


@pytest.fixture
def progress() -> ProgressCollector:
    return ProgressCollector()
