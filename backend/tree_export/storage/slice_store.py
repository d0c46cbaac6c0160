"""
切片存储 - SQLite 持久化切片数据

职责：
1. 按 (导出ID, 切片序号) 存储切片，主键自增
2. 按导出ID读取（切片序号升序）/清理
3. 统计存储占用与容量监控

测试要点：
- test_save_and_list_ordered: 读取按切片序号升序
- test_clear_job: 清理后该任务无残留
- test_usage_size: 占用统计与载荷大小一致
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from ..config import RuntimeConfig, get_config
from ..interfaces import ISliceStore, StorageError
from ..models import SliceArtifact, SliceMetadata, StorageReport, StorageUsage

logger = logging.getLogger(__name__)


class SliceStore(ISliceStore):
    """SQLite 切片存储"""

    TABLE = "slices"

    def __init__(self, db_path: Path | None = None, config: RuntimeConfig | None = None):
        if db_path is None:
            db_path = (config or get_config()).get_db_path()
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        # 延迟清理定时器在其他线程访问同一连接
        self._lock = threading.RLock()

    def init(self) -> None:
        """打开数据库并建表（幂等）"""
        with self._lock:
            if self._conn is not None:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                    isolation_level=None,  # Autocommit
                )
                conn.row_factory = sqlite3.Row
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {self.TABLE} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        export_id TEXT NOT NULL,
                        slice_index INTEGER NOT NULL,
                        data_url TEXT NOT NULL,
                        metadata TEXT NOT NULL,
                        timestamp INTEGER NOT NULL
                    )
                """)
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_slices_export ON {self.TABLE}(export_id)"
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_slices_index ON {self.TABLE}(slice_index)"
                )
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"打开切片数据库失败: {self.db_path}: {e}") from e
            self._conn = conn
            logger.debug(f"切片数据库已打开: {self.db_path}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """事务上下文（首次访问时自动 init）"""
        with self._lock:
            if self._conn is None:
                self.init()
            cursor = self._conn.cursor()
            try:
                cursor.execute("BEGIN")
                yield cursor
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    cursor.execute("ROLLBACK")
                raise StorageError(f"切片数据库操作失败: {e}") from e
            except Exception:
                if self._conn.in_transaction:
                    cursor.execute("ROLLBACK")
                raise

    def save(
        self,
        export_id: str,
        slice_index: int,
        payload: str,
        metadata: SliceMetadata,
    ) -> int:
        """存储切片数据"""
        with self._transaction() as cursor:
            cursor.execute(
                f"""
                INSERT INTO {self.TABLE} (export_id, slice_index, data_url, metadata, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    export_id,
                    slice_index,
                    payload,
                    json.dumps(metadata.model_dump(by_alias=True)),
                    int(time.time() * 1000),
                ),
            )
            return cursor.lastrowid

    def list_by_job(self, export_id: str) -> list[SliceArtifact]:
        """获取导出任务的所有切片"""
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT * FROM {self.TABLE} WHERE export_id = ? ORDER BY slice_index, id",
                (export_id,),
            )
            rows = cursor.fetchall()

        return [
            SliceArtifact(
                id=row["id"],
                export_id=row["export_id"],
                slice_index=row["slice_index"],
                data_url=row["data_url"],
                metadata=SliceMetadata.model_validate(json.loads(row["metadata"])),
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    def clear(self, export_id: str) -> None:
        """清理指定导出任务的切片"""
        with self._transaction() as cursor:
            cursor.execute(f"DELETE FROM {self.TABLE} WHERE export_id = ?", (export_id,))
            deleted = cursor.rowcount
        logger.debug(f"[{export_id}] 已删除 {deleted} 个切片")

    def clear_all(self) -> None:
        """清空所有数据"""
        with self._transaction() as cursor:
            cursor.execute(f"DELETE FROM {self.TABLE}")
        logger.info("所有导出数据已清理")

    def usage(self) -> StorageUsage:
        """获取存储使用情况"""
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT COUNT(*) AS count, COALESCE(SUM(LENGTH(data_url)), 0) AS size "
                f"FROM {self.TABLE}"
            )
            row = cursor.fetchone()

        return StorageUsage(
            count=row["count"],
            total_size_mb=round(row["size"] / 1024 / 1024, 2),
        )


def get_storage_info(store: ISliceStore) -> StorageUsage:
    """获取存储使用情况（失败时返回空统计）"""
    try:
        store.init()
        return store.usage()
    except StorageError as e:
        logger.error(f"获取存储信息失败: {e}")
        return StorageUsage()


def clear_all_export_data(store: ISliceStore) -> None:
    """清理所有本地存储的切片数据"""
    try:
        store.init()
        store.clear_all()
    except StorageError as e:
        logger.error(f"清理数据失败: {e}")
        raise


def monitor_storage_usage(store: ISliceStore, max_size_mb: float = 100) -> StorageReport:
    """监控存储空间使用情况"""
    usage = get_storage_info(store)
    return StorageReport(
        count=usage.count,
        total_size_mb=usage.total_size_mb,
        max_size_mb=max_size_mb,
        is_over_limit=usage.total_size_mb > max_size_mb,
        usage_percentage=round(usage.total_size_mb / max_size_mb * 100),
        recommendation=(
            "建议清理部分数据" if usage.total_size_mb > max_size_mb * 0.8 else "存储空间充足"
        ),
    )
