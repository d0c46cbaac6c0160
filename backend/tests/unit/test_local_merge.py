"""
本地合并服务单元测试

每个模块完成后必须运行：pytest tests/unit/test_local_merge.py -v
"""

from urllib.parse import urlparse
from urllib.request import url2pathname
from pathlib import Path

import pytest
from PIL import Image

from tree_export.interfaces import TransportError
from tree_export.models import MergeProgress, SliceMetadata, SlicePlan
from tree_export.render import compute_geometry, encode_png_data_url
from tree_export.transport import LocalMergeService, stitch_slices


def _sliced(total_width: int, height: int, color_at) -> tuple[SlicePlan, list[Image.Image]]:
    """按几何切出纯色条，color_at(x) 决定每列颜色"""
    slices = compute_geometry(total_width, height, 200, 20)
    plan = SlicePlan(total_width=total_width, total_height=height, slices=slices)
    images = []
    for g in slices:
        image = Image.new("RGB", (g.width, g.height))
        for x in range(g.width):
            for y in range(g.height):
                image.putpixel((x, y), color_at(g.x + x))
        images.append(image)
    return plan, images


class TestStitchSlices:
    """拼接测试"""

    def test_stitch_reconstructs_source(self):
        """测试重叠区域内容一致时拼接结果与原图一致"""
        color_at = lambda x: (x % 256, 0, 255 - x % 256)  # noqa: E731
        plan, images = _sliced(500, 4, color_at)
        pairs = [(img, SliceMetadata.from_geometry(g, plan)) for img, g in zip(images, plan.slices)]

        merged = stitch_slices(pairs)

        assert merged.size == (500, 4)
        for x in (0, 180, 190, 199, 360, 499):
            assert merged.getpixel((x, 2)) == color_at(x)

    def test_stitch_blends_seam(self):
        """测试重叠区域从左片渐变到右片"""
        plan = SlicePlan(total_width=380, total_height=2, slices=compute_geometry(380, 2, 200, 20))
        left = Image.new("RGB", (200, 2), (0, 0, 0))
        right = Image.new("RGB", (200, 2), (255, 255, 255))
        metas = [SliceMetadata.from_geometry(g, plan) for g in plan.slices]

        merged = stitch_slices([(left, metas[0]), (right, metas[1])])

        assert merged.getpixel((179, 0)) == (0, 0, 0)
        assert merged.getpixel((200, 0)) == (255, 255, 255)
        seam = [merged.getpixel((x, 0))[0] for x in range(180, 200)]
        assert seam == sorted(seam)
        assert seam[0] < 64 and seam[-1] > 192

    def test_stitch_empty(self):
        with pytest.raises(ValueError):
            stitch_slices([])


class TestLocalMergeService:
    """本地合并服务测试"""

    def test_upload_and_merge(self, temp_dir: Path):
        plan, images = _sliced(450, 3, lambda x: (200, 100, 50))
        service = LocalMergeService(output_dir=temp_dir)
        for img, g in zip(images, plan.slices):
            service.upload_slice("export_1", g.index, encode_png_data_url(img),
                                 SliceMetadata.from_geometry(g, plan))

        received: list[MergeProgress] = []
        result = service.merge("export_1", plan.slice_count, received.append)

        path = Path(url2pathname(urlparse(result.download_url).path))
        assert result.download_url.startswith("file://")
        assert path == (temp_dir / "export_1.png").resolve()
        with Image.open(path) as merged:
            assert merged.size == (450, 3)
        assert [p.percentage for p in received][-1] == 100
        assert [p.percentage for p in received] == sorted(p.percentage for p in received)
        assert result.file_size.endswith("MB")

    def test_upload_requires_metadata(self, temp_dir: Path):
        with pytest.raises(TransportError, match="缺少元数据"):
            LocalMergeService(output_dir=temp_dir).upload_slice("export_1", 0, "data:,")

    def test_duplicate_upload(self, temp_dir: Path, sample_metadata: SliceMetadata):
        service = LocalMergeService(output_dir=temp_dir)
        service.upload_slice("export_1", 0, "data:,", sample_metadata)
        with pytest.raises(TransportError, match="重复上传"):
            service.upload_slice("export_1", 0, "data:,", sample_metadata)

    def test_merge_incomplete(self, temp_dir: Path, sample_metadata: SliceMetadata):
        """测试切片缺失时合并失败"""
        service = LocalMergeService(output_dir=temp_dir)
        service.upload_slice("export_1", 0, "data:,", sample_metadata)
        with pytest.raises(TransportError, match="切片不完整"):
            service.merge("export_1", 3)

    def test_merge_invalid_payload(self, temp_dir: Path, sample_metadata: SliceMetadata):
        service = LocalMergeService(output_dir=temp_dir)
        service.upload_slice("export_1", 0, "garbage", sample_metadata)
        with pytest.raises(TransportError, match="本地合并失败"):
            service.merge("export_1", 1)

    def test_discard_releases_uploads(self, temp_dir: Path, sample_metadata: SliceMetadata):
        """测试放弃任务后已上传载荷被释放，其他任务不受影响"""
        service = LocalMergeService(output_dir=temp_dir)
        service.upload_slice("export_1", 0, "data:,", sample_metadata)
        service.upload_slice("export_2", 0, "data:,", sample_metadata)

        service.discard("export_1")
        service.discard("export_missing")

        assert service.pending_exports == ("export_2",)
        with pytest.raises(TransportError, match="切片不完整"):
            service.merge("export_1", 1)
