"""
导出编排器单元测试

每个模块完成后必须运行：pytest tests/unit/test_orchestrator.py -v
"""

import pytest
from PIL import Image

from conftest import FakeRasterEngine, ProgressCollector
from tree_export.interfaces import (
    CaptureError,
    InvalidInputError,
    StorageError,
    TransportError,
)
from tree_export.models import ExportPhase, Scene
from tree_export.pipeline import (
    Downloader,
    ExportOrchestrator,
    check_slice_required,
    get_dom_size,
    needs_slicing,
)
from tree_export.storage import SliceStore
from tree_export.transport import LocalMergeService


@pytest.fixture
def orchestrator_factory(runtime_config, store, host):
    def build(raster_engine=None, merge_service=None, config=None):
        config = config or runtime_config
        return ExportOrchestrator(
            config=config,
            raster_engine=raster_engine or FakeRasterEngine(),
            merge_service=merge_service or LocalMergeService(config=config),
            store=store,
            downloader=Downloader(config=config),
            host=host,
        )
    return build


class TestSliceDecision:
    """快/慢路径判定测试"""

    def test_threshold_boundary(self, runtime_config):
        """测试阈值两侧"""
        assert needs_slicing(4999, runtime_config) is False
        assert needs_slicing(5000, runtime_config) is False
        assert needs_slicing(5001, runtime_config) is True

    def test_check_slice_required(self, scene_factory, runtime_config):
        """测试检查结果基于外扩后的导出区域（9000x500 + 100）"""
        check = check_slice_required(scene_factory(9000, 500), runtime_config)
        assert check.needs_slicing is True
        assert (check.width, check.height) == (9100, 600)
        assert check.estimated_slices == 5
        assert check.estimated_size == "20.83MB"

    def test_check_not_required(self, narrow_scene, runtime_config):
        check = check_slice_required(narrow_scene, runtime_config)
        assert check.needs_slicing is False
        assert check.estimated_slices is None
        assert check.recommendation == "可以使用常规导出方式"

    @pytest.mark.parametrize("scroll_width", [4899, 4901, 4950])
    def test_check_agrees_with_export(self, scroll_width, scene_factory, runtime_config,
                                      orchestrator_factory):
        """测试检查结论与实际导出路径一致（切片数与渲染次数一致）"""
        scene = scene_factory(scroll_width)
        check = check_slice_required(scene, runtime_config)

        engine = FakeRasterEngine()
        orchestrator_factory(raster_engine=engine).export_region(scene)

        assert check.needs_slicing is (len(engine.calls) > 1)
        assert (check.estimated_slices or 1) == len(engine.calls)

    def test_get_dom_size(self, scene_factory):
        size = get_dom_size(scene_factory(1000, 500))
        assert (size.width, size.height) == (1000, 500)
        assert size.aspect_ratio == 2.0


class TestExportRegion:
    """导出流程测试"""

    def test_fast_path_download(self, orchestrator_factory, narrow_scene,
                                progress: ProgressCollector, runtime_config):
        """测试快速路径只截图一次并保存PNG（4899 + 外扩 = 4999）"""
        engine = FakeRasterEngine()
        orchestrator = orchestrator_factory(raster_engine=engine)

        path = orchestrator.export_region(narrow_scene, "#ffffff", progress)

        assert len(engine.calls) == 1
        assert (engine.calls[0].width, engine.calls[0].height) == (4999, 150)
        assert path.suffix == ".png"
        assert path.parent == runtime_config.download.output_dir
        assert path.name.startswith("家谱树导出-")
        with Image.open(path) as image:
            assert image.size == (4999, 150)
        assert [e.phase for e in progress.events] == [ExportPhase.COMPLETED]

    def test_slow_path_end_to_end(self, orchestrator_factory, wide_scene, store, host,
                                  progress: ProgressCollector, runtime_config):
        """测试慢速路径（4901 + 外扩 = 5001）：三个切片拼接为完整图片"""
        engine = FakeRasterEngine()
        orchestrator = orchestrator_factory(raster_engine=engine)

        path = orchestrator.export_region(wide_scene, "#ffffff", progress)
        orchestrator.wait_for_cleanup()

        assert len(engine.calls) == 3
        assert "合并版" in path.name
        with Image.open(path) as image:
            assert image.size == (5001, 150)
        assert progress.events[-1].phase == ExportPhase.COMPLETED
        assert progress.percentages == sorted(progress.percentages)
        assert progress.percentages.count(100) == 1
        # 延迟清理执行后无残留
        assert store.usage().count == 0
        assert host.attached == ()

    def test_slow_path_pixels_match_direct_render(self, orchestrator_factory, wide_scene,
                                                  runtime_config):
        """测试拼接结果与整图渲染一致"""
        orchestrator = orchestrator_factory()
        path = orchestrator.export_region(wide_scene, "#ffffff")

        expected = Image.new("RGB", (5001, 150), "#ffffff")
        wide_scene.paint(expected, (0, 0))
        with Image.open(path) as merged:
            merged = merged.convert("RGB")
            for x in (0, 1990, 1999, 3970, 5000):
                for y in (25, 45):
                    assert merged.getpixel((x, y)) == expected.getpixel((x, y))

    def test_capture_failure_on_second_slice(self, orchestrator_factory, wide_scene, store,
                                             host, progress: ProgressCollector,
                                             runtime_config):
        """测试第2个切片渲染失败：无结果、无残留、错误为渲染阶段"""
        orchestrator = orchestrator_factory(raster_engine=FakeRasterEngine(fail_on=1))

        with pytest.raises(CaptureError) as exc_info:
            orchestrator.export_region(wide_scene, "#ffffff", progress)

        assert "RENDERING" in str(exc_info.value)
        assert store.usage().count == 0
        assert host.attached == ()
        assert all(e.result is None for e in progress.events)
        assert not list(runtime_config.download.output_dir.glob("*.png"))

    def test_transport_failure(self, orchestrator_factory, wide_scene, store, runtime_config):
        class RejectingMergeService(LocalMergeService):
            def upload_slice(self, export_id, slice_index, payload, metadata=None):
                if slice_index == 1:
                    raise TransportError("service unavailable")
                return super().upload_slice(export_id, slice_index, payload, metadata)

        merge_service = RejectingMergeService(config=runtime_config)
        orchestrator = orchestrator_factory(merge_service=merge_service)

        with pytest.raises(TransportError, match=r"^\[UPLOADING\]"):
            orchestrator.export_region(wide_scene)
        assert store.usage().count == 0
        # 已上传的切片载荷随失败任务一并释放
        assert merge_service.pending_exports == ()

    def test_missing_root(self, orchestrator_factory):
        """测试节点缺失时在任何副作用之前拒绝"""
        engine = FakeRasterEngine()
        orchestrator = orchestrator_factory(raster_engine=engine)

        with pytest.raises(InvalidInputError, match="MEASURE"):
            orchestrator.export_region(None)
        assert engine.calls == []

    def test_zero_size(self, orchestrator_factory):
        with pytest.raises(InvalidInputError):
            orchestrator_factory().export_region(Scene())

    def test_fast_path_capture_failure(self, orchestrator_factory, narrow_scene):
        orchestrator = orchestrator_factory(raster_engine=FakeRasterEngine(fail_on=0))
        with pytest.raises(CaptureError, match=r"^\[CAPTURE\]"):
            orchestrator.export_region(narrow_scene)

    def test_storage_unavailable(self, runtime_config, wide_scene, temp_dir, host):
        """测试存储无法打开时中止且不渲染"""
        blocker = temp_dir / "blocker"
        blocker.write_text("")
        engine = FakeRasterEngine()
        orchestrator = ExportOrchestrator(
            config=runtime_config,
            raster_engine=engine,
            merge_service=LocalMergeService(config=runtime_config),
            store=SliceStore(db_path=blocker / "slices.db"),
            downloader=Downloader(config=runtime_config),
            host=host,
        )

        with pytest.raises(StorageError, match="RENDERING"):
            orchestrator.export_region(wide_scene)
        assert engine.calls == []

    def test_cleanup_delayed(self, runtime_config, orchestrator_factory, wide_scene, store):
        """测试延迟清理：完成后切片在清理执行前仍可读取"""
        config = runtime_config.with_updates(storage={"cleanup_delay_sec": 30})
        orchestrator = orchestrator_factory(config=config)

        orchestrator.export_region(wide_scene)

        assert store.usage().count == 3
        assert orchestrator.pending_cleanups == 1
        orchestrator.cancel_cleanup()
        assert orchestrator.pending_cleanups == 0
        assert store.usage().count == 3

    def test_finished_cleanups_not_retained(self, orchestrator_factory, wide_scene, store):
        """测试已执行的清理任务不在编排器中累积"""
        orchestrator = orchestrator_factory()

        for _ in range(3):
            orchestrator.export_region(wide_scene)

        assert orchestrator.pending_cleanups == 0
        assert store.usage().count == 0
