import json
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import DocumentStore, SortSpec
from chat_core.domain.exceptions import StorageError
from chat_core.infrastructure.logging.logger import logger


_SAFE_ID = re.compile(r"^[\w.\-]{1,128}$")


class JsonDocumentStore(DocumentStore):
    """以目录保存集合、以 JSON 文件保存单个文档的存储实现。

    布局::

        <root>/conversations/<id>.json
        <root>/messages/<id>.json

    所有操作在同一把可重入锁内完成，文档通过临时文件 + os.replace 写入，
    因此单文档的读改写是原子的。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    @property
    def root(self) -> Path:
        return self._root

    def create(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(document)
        doc_id = doc.setdefault("id", uuid4().hex)
        if not _SAFE_ID.match(str(doc_id)):
            raise StorageError(code="STORE_WRITE_ERROR", message=f"Invalid document id: {doc_id!r}")
        with self._lock:
            path = self._doc_path(collection, doc_id)
            if path.exists():
                raise StorageError(code="STORE_WRITE_ERROR", message=f"Duplicate document id: {doc_id}")
            self._write_doc(path, doc)
        return doc

    def find_one(self, collection: str, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            for _, doc in self._candidates(collection, filter):
                if _matches(doc, filter):
                    return doc
        return None

    def find_many(
        self,
        collection: str,
        filter: Dict[str, Any],
        sort: Optional[SortSpec] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            items = [doc for _, doc in self._candidates(collection, filter) if _matches(doc, filter)]
        # 多键排序：从最后一个键开始做稳定排序
        for key, direction in reversed(list(sort or [])):
            items.sort(
                key=lambda d: (_get_path(d, key) is not None, _get_path(d, key) or ""),
                reverse=direction < 0,
            )
        return items

    def update_one(
        self,
        collection: str,
        filter: Dict[str, Any],
        patch: Dict[str, Any],
        return_updated: bool = True,
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            for path, doc in self._candidates(collection, filter):
                if not _matches(doc, filter):
                    continue
                before = json.loads(json.dumps(doc))
                for key, value in patch.items():
                    if key == "id":
                        continue
                    _set_path(doc, key, value)
                self._write_doc(path, doc)
                return doc if return_updated else before
        return None

    def delete_one(self, collection: str, filter: Dict[str, Any]) -> bool:
        with self._lock:
            for path, doc in self._candidates(collection, filter):
                if _matches(doc, filter):
                    self._remove(path)
                    return True
        return False

    def delete_many(self, collection: str, filter: Dict[str, Any]) -> int:
        removed = 0
        with self._lock:
            for path, doc in list(self._candidates(collection, filter)):
                if _matches(doc, filter):
                    self._remove(path)
                    removed += 1
        return removed

    # ---- 辅助方法 ----

    def _collection_dir(self, collection: str) -> Path:
        cdir = self._root / collection
        cdir.mkdir(parents=True, exist_ok=True)
        return cdir

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        return self._collection_dir(collection) / f"{doc_id}.json"

    def _candidates(self, collection: str, filter: Dict[str, Any]) -> Iterator[tuple[Path, Dict[str, Any]]]:
        """按 id 精确查找时只读一个文件，否则扫描整个集合目录。"""

        doc_id = filter.get("id")
        if isinstance(doc_id, str):
            if not _SAFE_ID.match(doc_id):
                return
            path = self._doc_path(collection, doc_id)
            if path.exists():
                doc = self._read_doc(path)
                if doc is not None:
                    yield path, doc
            return
        for path in sorted(self._collection_dir(collection).glob("*.json")):
            doc = self._read_doc(path)
            if doc is not None:
                yield path, doc

    def _read_doc(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning("Skipped unreadable document", extra={"extra": {"path": str(path)}})
            return None
        except OSError as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e))

    def _write_doc(self, path: Path, doc: Dict[str, Any]) -> None:
        tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(doc, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))

    def _remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e))


def _get_path(doc: Dict[str, Any], key: str) -> Any:
    current: Any = doc
    for part in key.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _set_path(doc: Dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def _matches(doc: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    for key, expected in filter.items():
        value = _get_path(doc, key)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True
