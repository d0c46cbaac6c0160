"""
传输模块 - 合并服务实现

子模块：
- merge_client: HTTP合并服务客户端
- local_merge: 进程内合并（Pillow拼接）
"""

from ..config import RuntimeConfig
from ..interfaces import IMergeService
from .local_merge import LocalMergeService, stitch_slices
from .merge_client import HttpMergeService


def create_merge_service(config: RuntimeConfig) -> IMergeService:
    """按配置选择合并服务（未配置地址时使用本地合并）"""
    if config.merge_service.base_url:
        return HttpMergeService(config=config)
    return LocalMergeService(config=config)


__all__ = [
    "HttpMergeService",
    "LocalMergeService",
    "stitch_slices",
    "create_merge_service",
]
