"""
存储模块 - 切片本地持久化
"""

from .slice_store import (
    SliceStore,
    clear_all_export_data,
    get_storage_info,
    monitor_storage_usage,
)

__all__ = [
    "SliceStore",
    "get_storage_info",
    "clear_all_export_data",
    "monitor_storage_usage",
]
