"""
场景模型 - 待导出文档的无浏览器表示

Scene 是由定位元素组成的虚拟画布，知道自身完整内容范围
（scroll_width / scroll_height），可以深拷贝，并能以任意偏移绘制到
Pillow 画布上。OffscreenContainer 对应离屏裁剪容器，RenderHost 对应
document.body：容器渲染前挂载，渲染后必须卸载。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

import yaml
from PIL import Image, ImageDraw
from pydantic import BaseModel, Field


@runtime_checkable
class RenderNode(Protocol):
    """可渲染节点协议"""

    @property
    def scroll_width(self) -> int: ...

    @property
    def scroll_height(self) -> int: ...

    def clone(self) -> RenderNode: ...

    def paint(self, canvas: Image.Image, origin: tuple[int, int]) -> None:
        """以 origin 为左上角把节点绘制到画布上"""
        ...


class CaptureOptions(BaseModel):
    """光栅引擎参数"""
    background_color: str
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    pixel_ratio: float = Field(1.0, gt=0)
    skip_auto_scale: bool = False


class SceneElement(BaseModel):
    """场景元素（矩形/连线/文字）"""
    kind: Literal["rect", "line", "text"] = "rect"
    x: float
    y: float
    width: float = 0
    height: float = 0
    fill: str | None = None
    outline: str | None = None
    stroke_width: int = 1
    text: str = ""
    color: str = "#000000"

    model_config = {"frozen": True}

    @property
    def right(self) -> float:
        # 连线可以向左/向上延伸
        return max(self.x, self.x + self.width)

    @property
    def bottom(self) -> float:
        return max(self.y, self.y + self.height)

    def paint(self, draw: ImageDraw.ImageDraw, dx: int, dy: int) -> None:
        x0, y0 = self.x + dx, self.y + dy
        if self.kind == "rect":
            draw.rectangle(
                [x0, y0, x0 + self.width, y0 + self.height],
                fill=self.fill,
                outline=self.outline,
                width=self.stroke_width,
            )
        elif self.kind == "line":
            draw.line(
                [x0, y0, x0 + self.width, y0 + self.height],
                fill=self.color,
                width=self.stroke_width,
            )
        else:
            draw.text((x0, y0), self.text, fill=self.color)


class Scene(BaseModel):
    """待导出的场景（相当于树的根DOM节点）"""
    width: int = Field(0, ge=0, description="声明宽度，内容超出时以内容为准")
    height: int = Field(0, ge=0)
    elements: list[SceneElement] = Field(default_factory=list)

    @property
    def scroll_width(self) -> int:
        extent = max((e.right for e in self.elements), default=0)
        return max(self.width, math.ceil(extent))

    @property
    def scroll_height(self) -> int:
        extent = max((e.bottom for e in self.elements), default=0)
        return max(self.height, math.ceil(extent))

    def clone(self) -> Scene:
        return self.model_copy(deep=True)

    def paint(self, canvas: Image.Image, origin: tuple[int, int]) -> None:
        draw = ImageDraw.Draw(canvas)
        dx, dy = origin
        for element in self.elements:
            element.paint(draw, dx, dy)

    @classmethod
    def from_file(cls, path: str | Path) -> Scene:
        """从 YAML/JSON 文件加载场景"""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)


@dataclass
class OffscreenContainer:
    """离屏裁剪容器：显式宽高、背景色、溢出裁剪，子节点按切片原点平移"""
    child: RenderNode
    offset_x: int
    offset_y: int
    width: int
    height: int
    background_color: str

    @property
    def scroll_width(self) -> int:
        return self.width

    @property
    def scroll_height(self) -> int:
        return self.height

    def clone(self) -> OffscreenContainer:
        return OffscreenContainer(
            child=self.child.clone(),
            offset_x=self.offset_x,
            offset_y=self.offset_y,
            width=self.width,
            height=self.height,
            background_color=self.background_color,
        )

    def paint(self, canvas: Image.Image, origin: tuple[int, int]) -> None:
        # 子节点先画到独立表面，超出容器的部分自然被裁掉
        surface = Image.new(canvas.mode, (self.width, self.height), self.background_color)
        self.child.paint(surface, (-self.offset_x, -self.offset_y))
        canvas.paste(surface, origin)


@dataclass
class RenderHost:
    """离屏渲染宿主"""
    _attached: list[RenderNode] = field(default_factory=list)

    def attach(self, node: RenderNode) -> None:
        self._attached.append(node)

    def detach(self, node: RenderNode) -> None:
        self._attached.remove(node)

    @property
    def attached(self) -> tuple[RenderNode, ...]:
        return tuple(self._attached)
