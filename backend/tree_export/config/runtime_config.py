"""
运行期配置 - 读取 config/tree_export.yaml

职责：
- 加载切片阈值/进度权重/存储/合并服务/下载等运行参数
- 提供环境变量覆盖机制（TREE_EXPORT_ 前缀）
- 配置为不可变值：更新时生成新实例，不修改共享状态
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings


class SlicingConfig(BaseModel):
    """切片配置"""

    max_width: int = Field(5000, gt=0, description="超过此宽度开始切片")
    slice_width: int = Field(2000, gt=0, description="每个切片的宽度")
    overlap_width: int = Field(20, ge=0, description="相邻切片重叠宽度")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_overlap(self) -> SlicingConfig:
        # 切片宽度不大于重叠宽度时偏移无法前进
        if self.slice_width <= self.overlap_width:
            raise ValueError(
                f"slice_width({self.slice_width}) 必须大于 overlap_width({self.overlap_width})"
            )
        return self


class CaptureConfig(BaseModel):
    """截图配置"""

    padding: int = Field(100, ge=0, description="测量尺寸外扩（宽高各加）")
    pixel_ratio: float = Field(1.0, gt=0)
    default_background: str = "#f9fafb"

    model_config = {"frozen": True}


class ProgressConfig(BaseModel):
    """进度权重（百分比），合并阶段取剩余部分"""

    render_weight: int = Field(30, ge=0, le=100)
    upload_weight: int = Field(40, ge=0, le=100)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_total(self) -> ProgressConfig:
        if self.render_weight + self.upload_weight > 100:
            raise ValueError("render_weight + upload_weight 不能超过 100")
        return self

    @property
    def merge_weight(self) -> int:
        return 100 - self.render_weight - self.upload_weight


class StorageConfig(BaseModel):
    """切片存储配置"""

    db_path: Path | None = None
    cleanup_delay_sec: float = Field(5.0, ge=0, description="导出完成后延迟清理切片")
    max_size_mb: float = Field(100.0, gt=0, description="存储监控容量上限")

    model_config = {"frozen": True}


class MergeServiceConfig(BaseModel):
    """合并服务配置（base_url 为空时使用本地合并）"""

    base_url: str = ""
    timeout_sec: float = 30.0

    model_config = {"frozen": True}


class DownloadConfig(BaseModel):
    """下载配置"""

    output_dir: Path = Path("downloads")
    title: str = "家谱树导出"
    merged_suffix: str = "合并版"

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """日志配置"""

    log_level: str = "INFO"
    log_to_file: bool = False

    model_config = {"frozen": True}


class RuntimeConfig(BaseSettings):
    """运行期配置（支持环境变量覆盖，不可变）"""

    storage_dir: Path = Path("storage")

    slicing: SlicingConfig = Field(default_factory=SlicingConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    merge_service: MergeServiceConfig = Field(default_factory=MergeServiceConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "TREE_EXPORT_",
        "env_nested_delimiter": "__",
        "frozen": True,
    }

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> RuntimeConfig:
        """从YAML文件加载配置"""
        path = Path(yaml_path)
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        runtime_opts = data.get("runtime_options", {})
        base_dir = path.parent

        storage = cls._extract(runtime_opts, "storage")
        download = cls._extract(runtime_opts, "download")
        # 相对路径以配置文件所在目录为基准
        if storage.get("db_path"):
            storage["db_path"] = cls._resolve(base_dir, storage["db_path"])
        if download.get("output_dir"):
            download["output_dir"] = cls._resolve(base_dir, download["output_dir"])

        kwargs: dict[str, Any] = {
            "slicing": SlicingConfig(**cls._extract(runtime_opts, "slicing")),
            "capture": CaptureConfig(**cls._extract(runtime_opts, "capture")),
            "progress": ProgressConfig(**cls._extract(runtime_opts, "progress")),
            "storage": StorageConfig(**storage),
            "merge_service": MergeServiceConfig(**cls._extract(runtime_opts, "merge_service")),
            "download": DownloadConfig(**download),
            "logging": LoggingConfig(**cls._extract(runtime_opts, "logging")),
        }
        if runtime_opts.get("storage_dir"):
            kwargs["storage_dir"] = cls._resolve(base_dir, runtime_opts["storage_dir"])

        return cls(**kwargs)

    @staticmethod
    def _extract(data: dict[str, Any], key: str) -> dict[str, Any]:
        """提取并展平配置"""
        section = data.get(key, {}) or {}
        result = {}
        for k, v in section.items():
            if isinstance(v, dict) and "default" in v:
                result[k] = v["default"]
            elif not isinstance(v, dict):
                result[k] = v
        return result

    @staticmethod
    def _resolve(base_dir: Path, value: str | Path) -> Path:
        p = Path(value)
        return p if p.is_absolute() else (base_dir / p).resolve()

    def with_updates(self, **changes: Any) -> RuntimeConfig:
        """
        生成更新后的新配置（重新校验，原实例不变）

        子配置可传 dict 做局部合并：
            config.with_updates(slicing={"slice_width": 1000})
        """
        data = self.model_dump()
        for key, value in changes.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return type(self)(**data)

    def get_db_path(self) -> Path:
        """切片数据库路径"""
        return self.storage.db_path or self.storage_dir / "slices.db"

    def get_log_dir(self) -> Path:
        return self.storage_dir / "logs"

    def ensure_dirs(self) -> None:
        """确保必要目录存在"""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.get_db_path().parent.mkdir(parents=True, exist_ok=True)
        self.download.output_dir.mkdir(parents=True, exist_ok=True)


# 默认配置缓存（不可变值，reload 时整体替换）
_config: RuntimeConfig | None = None

DEFAULT_CONFIG_PATH = Path("config/tree_export.yaml")


def get_config() -> RuntimeConfig:
    """获取默认配置（惰性加载）"""
    global _config
    if _config is None:
        _config = RuntimeConfig.from_yaml(DEFAULT_CONFIG_PATH)
    return _config


def reload_config(yaml_path: str | Path | None = None) -> RuntimeConfig:
    """重新加载配置"""
    global _config
    _config = RuntimeConfig.from_yaml(yaml_path or DEFAULT_CONFIG_PATH)
    return _config
