"""
下载器 - 把导出结果保存为本地文件

职责：
1. 生成带时间戳的文件名：<标题>-<本地时间>.<扩展名>
2. 快速路径：保存图片（固定PNG）
3. 慢速路径：按下载地址（file:// 或 http(s)://）取回合并结果
4. 先写 .part 临时文件，完成后改名；失败时删除临时文件，不留半成品
"""

from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx
from PIL import Image

from ..config import RuntimeConfig, get_config
from ..interfaces import DownloadError
from .stages import ExportStage

logger = logging.getLogger(__name__)

FILE_FORMAT = "png"

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')


def build_filename(title: str, ext: str, now: datetime | None = None) -> str:
    """生成带本地时间戳的文件名（替换文件系统不允许的字符）"""
    timestamp = (now or datetime.now()).strftime("%x %X")
    return f"{_UNSAFE_CHARS.sub('-', f'{title}-{timestamp}')}.{ext}"


class Downloader:
    """下载器"""

    def __init__(
        self,
        output_dir: Path | None = None,
        config: RuntimeConfig | None = None,
        client: httpx.Client | None = None,
    ):
        self.config = config or get_config()
        self.output_dir = Path(output_dir or self.config.download.output_dir)
        self._client = client

    def save_image(self, image: Image.Image, title: str | None = None) -> Path:
        """保存图片（固定PNG格式）"""
        filename = build_filename(title or self.config.download.title, FILE_FORMAT)
        return self._write(filename, lambda f: image.save(f, format="PNG"))

    def fetch(self, url: str, title: str | None = None) -> Path:
        """按下载地址取回文件"""
        parsed = urlparse(url)
        ext = Path(parsed.path).suffix.lstrip(".").lower() or FILE_FORMAT
        filename = build_filename(title or self.config.download.title, ext)

        if parsed.scheme == "file":
            source = Path(url2pathname(parsed.path))

            def writer(f: BinaryIO) -> None:
                with open(source, "rb") as src:
                    shutil.copyfileobj(src, f)

        elif parsed.scheme in ("http", "https"):

            def writer(f: BinaryIO) -> None:
                self._stream_to(url, f)

        else:
            raise DownloadError(f"不支持的下载地址: {url}", stage=ExportStage.DOWNLOAD)

        return self._write(filename, writer)

    def _stream_to(self, url: str, f: BinaryIO) -> None:
        client = self._client or httpx.Client(
            timeout=self.config.merge_service.timeout_sec, follow_redirects=True
        )
        try:
            with client.stream("GET", url) as resp:
                resp.raise_for_status()
                for chunk in resp.iter_bytes():
                    f.write(chunk)
        finally:
            if client is not self._client:
                client.close()

    def _write(self, filename: str, writer: Callable[[BinaryIO], None]) -> Path:
        target = self.output_dir / filename
        tmp = target.with_name(target.name + ".part")
        logger.info(f"开始下载流程: {target.name}")
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as f:
                writer(f)
            tmp.replace(target)
        except Exception as e:
            tmp.unlink(missing_ok=True)
            raise DownloadError(
                f"下载失败：{str(e) or '请重试'}", stage=ExportStage.DOWNLOAD
            ) from e

        logger.info(f"下载完成: {target}")
        return target
