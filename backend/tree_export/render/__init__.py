"""
渲染模块 - 场景光栅化与切片

子模块：
- raster: Pillow 光栅引擎、PNG data URL 编解码
- slicer: 切片几何计算与离屏切片渲染
"""

from .raster import PillowRasterEngine, decode_data_url, encode_png_data_url, png_bytes
from .slicer import DOMSlicer, compute_geometry

__all__ = [
    "PillowRasterEngine",
    "encode_png_data_url",
    "decode_data_url",
    "png_bytes",
    "DOMSlicer",
    "compute_geometry",
]
