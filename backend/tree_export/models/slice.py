"""
切片模型 - 切片几何、持久化元数据与切片产物

对应持久化记录：
    { id, exportId, sliceIndex, dataUrl, metadata: {...}, timestamp }
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SliceGeometry(BaseModel):
    """单个切片在源区域中的位置（计算后不可变）"""
    index: int = Field(..., ge=0, description="切片序号，决定从左到右的位置")
    x: int = Field(..., ge=0)
    y: int = Field(0, ge=0)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    is_last_slice: bool = False

    model_config = {"frozen": True}

    @property
    def right(self) -> int:
        return self.x + self.width


class SlicePlan(BaseModel):
    """切片方案"""
    total_width: int
    total_height: int
    slices: list[SliceGeometry] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def slice_count(self) -> int:
        return len(self.slices)


class SliceMetadata(BaseModel):
    """切片元数据（随切片存储，读取时无需重新计算几何）"""
    total_width: int = Field(..., alias="totalWidth")
    total_height: int = Field(..., alias="totalHeight")
    slice_count: int = Field(..., alias="sliceCount")
    x: int
    y: int
    width: int
    height: int
    is_last_slice: bool = Field(..., alias="isLastSlice")

    model_config = {"frozen": True, "populate_by_name": True}

    @classmethod
    def from_geometry(cls, geometry: SliceGeometry, plan: SlicePlan) -> SliceMetadata:
        return cls(
            total_width=plan.total_width,
            total_height=plan.total_height,
            slice_count=plan.slice_count,
            x=geometry.x,
            y=geometry.y,
            width=geometry.width,
            height=geometry.height,
            is_last_slice=geometry.is_last_slice,
        )


class SliceArtifact(BaseModel):
    """切片产物（保存后不再修改）"""
    id: int
    export_id: str
    slice_index: int
    data_url: str = Field(..., description="PNG data URL")
    metadata: SliceMetadata
    timestamp: int = Field(..., description="创建时间（毫秒）")

    model_config = {"frozen": True}

    @property
    def size_bytes(self) -> int:
        return len(self.data_url)
