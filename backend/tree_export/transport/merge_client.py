"""
合并服务HTTP客户端

接口：
    POST {base_url}/exports/{export_id}/slices
        {"sliceIndex", "dataUrl", "metadata"} -> {"success", "sliceId", "uploadTime"}
    POST {base_url}/exports/{export_id}/merge
        {"sliceCount"} -> NDJSON 流：若干进度行 {"current","total","percentage","message"}，
        最后一行 {"success","downloadUrl","exportId","fileSize","mergeTime"}

不做重试：任何失败对本次导出都是终止性的。
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from ..config import RuntimeConfig, get_config
from ..interfaces import IMergeService, TransportError
from ..models import MergeProgress, MergeResult, SliceMetadata, UploadReceipt

logger = logging.getLogger(__name__)


class HttpMergeService(IMergeService):
    """合并服务HTTP客户端"""

    def __init__(
        self,
        base_url: str | None = None,
        config: RuntimeConfig | None = None,
        client: httpx.Client | None = None,
    ):
        config = config or get_config()
        base_url = base_url or config.merge_service.base_url
        if not base_url:
            raise ValueError("合并服务地址未配置")
        self.client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=config.merge_service.timeout_sec,
        )

    def close(self) -> None:
        self.client.close()

    def upload_slice(
        self,
        export_id: str,
        slice_index: int,
        payload: str,
        metadata: SliceMetadata | None = None,
    ) -> UploadReceipt:
        body: dict[str, Any] = {"sliceIndex": slice_index, "dataUrl": payload}
        if metadata is not None:
            body["metadata"] = metadata.model_dump(by_alias=True)

        try:
            resp = self.client.post(f"/exports/{export_id}/slices", json=body)
            resp.raise_for_status()
            receipt = UploadReceipt.model_validate(resp.json())
        except httpx.HTTPError as e:
            raise TransportError(f"切片 {slice_index} 上传失败: {e}") from e
        except (ValueError, ValidationError) as e:
            raise TransportError(f"切片 {slice_index} 上传响应无效: {e}") from e

        if not receipt.success:
            raise TransportError(f"合并服务拒绝切片 {slice_index}")
        logger.debug(f"[{export_id}] 切片 {slice_index} 上传完成: {receipt.slice_id}")
        return receipt

    def merge(
        self,
        export_id: str,
        slice_count: int,
        on_progress: Callable[[MergeProgress], None] | None = None,
    ) -> MergeResult:
        result: MergeResult | None = None
        try:
            with self.client.stream(
                "POST", f"/exports/{export_id}/merge", json={"sliceCount": slice_count}
            ) as resp:
                resp.raise_for_status()
                for line in resp.iter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if "success" in data:
                        result = MergeResult.model_validate(data)
                        break
                    if on_progress:
                        on_progress(MergeProgress.model_validate(data))
        except httpx.HTTPError as e:
            raise TransportError(f"合并请求失败: {e}") from e
        except (ValueError, ValidationError) as e:
            raise TransportError(f"合并响应无效: {e}") from e

        if result is None:
            raise TransportError("合并响应缺少最终结果")
        if not result.success:
            raise TransportError(f"服务端合并失败: {export_id}")
        return result
