"""
光栅引擎 - 基于 Pillow 的默认实现

职责：
1. 把可渲染节点按显式宽高绘制为图片
2. 按像素比缩放输出
3. PNG data URL 编解码（切片的存储/上传载荷）

依赖：
- PIL.Image: 画布与缩放
"""

from __future__ import annotations

import base64
import io

from PIL import Image

from ..interfaces import IRasterEngine
from ..models import CaptureOptions, RenderNode

PNG_DATA_URL_PREFIX = "data:image/png;base64,"


class PillowRasterEngine(IRasterEngine):
    """Pillow 光栅引擎"""

    def capture(self, node: RenderNode, options: CaptureOptions) -> Image.Image:
        """渲染节点（超出 width/height 的内容被裁掉）"""
        canvas = Image.new("RGB", (options.width, options.height), options.background_color)
        node.paint(canvas, (0, 0))

        if options.pixel_ratio != 1 and not options.skip_auto_scale:
            size = (
                max(1, round(options.width * options.pixel_ratio)),
                max(1, round(options.height * options.pixel_ratio)),
            )
            canvas = canvas.resize(size, Image.Resampling.LANCZOS)
        return canvas


def encode_png_data_url(image: Image.Image) -> str:
    """图片编码为 PNG data URL"""
    return PNG_DATA_URL_PREFIX + base64.b64encode(png_bytes(image)).decode("ascii")


def decode_data_url(data_url: str) -> Image.Image:
    """data URL 解码为图片"""
    if not data_url or not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("无效的图片数据格式")
    _, encoded = data_url.split(",", 1)
    image = Image.open(io.BytesIO(base64.b64decode(encoded)))
    image.load()
    return image


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
