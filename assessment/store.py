"""
Document store used to persist submission records.

Keys are slash-separated paths such as "responses/<candidate>/round2/<qid>".
A collection is every document directly below a prefix.
"""

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional


def merge_documents(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge update into a copy of base. Nested maps merge, everything else is replaced."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def split_key(key: str) -> list:
    parts = [p for p in key.strip("/").split("/")]
    if not parts or any(p in ("", ".", "..") for p in parts):
        raise ValueError(f"Invalid document key: '{key}'")
    return parts


class DocumentStore:
    """get / query / set(merge) over keyed JSON-like documents."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def query(self, collection: str) -> Dict[str, Dict[str, Any]]:
        """Return {document id: document} for every document directly under collection."""
        raise NotImplementedError

    def set(self, key: str, data: Dict[str, Any], merge: bool = False):
        raise NotImplementedError


class MemoryStore(DocumentStore):
    """In-process store. Documents are copied on the way in and out."""

    def __init__(self):
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.writes = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        key = "/".join(split_key(key))
        with self._lock:
            doc = self.documents.get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def query(self, collection: str) -> Dict[str, Dict[str, Any]]:
        prefix = "/".join(split_key(collection)) + "/"
        with self._lock:
            return {
                key[len(prefix):]: copy.deepcopy(doc)
                for key, doc in self.documents.items()
                if key.startswith(prefix) and "/" not in key[len(prefix):]
            }

    def set(self, key: str, data: Dict[str, Any], merge: bool = False):
        key = "/".join(split_key(key))
        with self._lock:
            existing = self.documents.get(key)
            if merge and existing is not None:
                self.documents[key] = merge_documents(existing, data)
            else:
                self.documents[key] = copy.deepcopy(data)
            self.writes += 1


class JsonFileStore(DocumentStore):
    """
    One JSON file per document under a root directory.

    "responses/u1/round2/q1" is stored at <root>/responses/u1/round2/q1.json.
    Writes go through a temporary file and os.replace.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        parts = split_key(key)
        return self.root.joinpath(*parts[:-1], parts[-1] + ".json")

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(self._path(key))

    def query(self, collection: str) -> Dict[str, Dict[str, Any]]:
        directory = self.root.joinpath(*split_key(collection))
        if not directory.is_dir():
            return {}
        with self._lock:
            return {
                path.stem: self._read(path)
                for path in sorted(directory.glob("*.json"))
            }

    def set(self, key: str, data: Dict[str, Any], merge: bool = False):
        path = self._path(key)
        with self._lock:
            existing = self._read(path) if merge else None
            document = merge_documents(existing, data) if existing is not None else data

            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(document, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
