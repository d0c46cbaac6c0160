"""
配置层 - 加载运行期配置

职责：
- 加载 config/tree_export.yaml（运行期参数）
- 提供类型安全、不可变的配置访问接口
"""

from .runtime_config import (
    CaptureConfig,
    DownloadConfig,
    LoggingConfig,
    MergeServiceConfig,
    ProgressConfig,
    RuntimeConfig,
    SlicingConfig,
    StorageConfig,
    get_config,
    reload_config,
)

__all__ = [
    "RuntimeConfig",
    "SlicingConfig",
    "CaptureConfig",
    "ProgressConfig",
    "StorageConfig",
    "MergeServiceConfig",
    "DownloadConfig",
    "LoggingConfig",
    "get_config",
    "reload_config",
]
