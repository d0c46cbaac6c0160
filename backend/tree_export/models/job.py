"""
导出任务模型 - 一次导出尝试的标识

任务没有显式删除记录：切片被清理后任务即结束
"""

from __future__ import annotations

import random
import string
import time
from datetime import datetime

from pydantic import BaseModel, Field

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_export_id() -> str:
    """生成唯一导出ID（时间戳 + 9位随机base36）"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"export_{int(time.time() * 1000)}_{suffix}"


class ExportJob(BaseModel):
    """导出任务"""
    export_id: str = Field(default_factory=generate_export_id)
    width: int = Field(..., gt=0, description="导出区域宽度（含外扩）")
    height: int = Field(..., gt=0, description="导出区域高度（含外扩）")
    background_color: str
    created_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}
