"""Shared fixtures: an in-memory stand-in for an Open WebUI instance."""

import copy
import zipfile
from itertools import count
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from owuiarchive.archive.writer import ArchiveWriter
from owuiarchive.core.errors import APIError
from owuiarchive.schemas.selection import Category, Selection


class FakeResourceClient:
    """Implements the resource client contract against dictionaries.

    Mutating calls are recorded in ``mutations`` as ``(operation, category,
    key)`` tuples. ``fail`` holds ``(operation, category)`` pairs or
    ``(operation, category, key)`` triples that raise ``APIError`` instead.
    """

    def __init__(self, base_url: str = "http://target.local"):
        self.base_url = base_url
        self.version = "0.6.5"
        self.store: Dict[Category, Dict[str, Dict[str, Any]]] = {c: {} for c in Category}
        self.contents: Dict[str, bytes] = {}
        self.mutations: List[Tuple[str, Category, str]] = []
        self.fail = set()
        self._ids = count(1)

    # Seeding

    def add(self, category: Category, payload: Dict[str, Any]) -> Dict[str, Any]:
        key = payload["command"] if category == Category.PROMPT else payload["id"]
        self.store[category][key] = copy.deepcopy(payload)
        return payload

    def add_file(self, file_id: str, filename: str, content: bytes) -> Dict[str, Any]:
        self.contents[file_id] = content
        return self.add(Category.FILE, {
            "id": file_id,
            "filename": filename,
            "meta": {"name": filename, "size": len(content), "content_type": "text/plain"},
        })

    def add_knowledge(self, kb_id: str, name: str, file_ids: List[str], description: str = "") -> Dict[str, Any]:
        return self.add(Category.KNOWLEDGE, {
            "id": kb_id,
            "name": name,
            "description": description,
            "data": {"file_ids": list(file_ids)},
            "access_control": None,
        })

    # Helpers

    def _check(self, operation: str, category: Category, key: str = "") -> None:
        if (operation, category) in self.fail or (operation, category, key) in self.fail:
            raise APIError(500, f"{operation} {category.value} {key} failed")

    def _new_id(self, category: Category) -> str:
        return f"{category.value}-{next(self._ids)}"

    def _knowledge_view(self, kb: Dict[str, Any]) -> Dict[str, Any]:
        view = copy.deepcopy(kb)
        file_ids = (view.get("data") or {}).get("file_ids") or []
        view["files"] = [copy.deepcopy(self.store[Category.FILE][fid]) for fid in file_ids
                         if fid in self.store[Category.FILE]]
        return view

    def items(self, category: Category) -> List[Dict[str, Any]]:
        return list(self.store[category].values())

    def find(self, category: Category, **fields) -> List[Dict[str, Any]]:
        return [item for item in self.store[category].values()
                if all(item.get(k) == v for k, v in fields.items())]

    def knowledge_file_names(self, kb_id: str) -> List[str]:
        return sorted(f["meta"]["name"] for f in self._knowledge_view(self.store[Category.KNOWLEDGE][kb_id])["files"])

    def snapshot(self):
        return copy.deepcopy(self.store), dict(self.contents)

    # Resource client contract

    def get_version(self) -> str:
        return self.version

    def list_resources(self, category: Category) -> List[Dict[str, Any]]:
        self._check("list", category)
        if category == Category.KNOWLEDGE:
            return [self._knowledge_view(kb) for kb in self.store[category].values()]
        return [copy.deepcopy(item) for item in self.store[category].values()]

    def get_resource(self, category: Category, resource_id: str) -> Optional[Dict[str, Any]]:
        self._check("get", category, resource_id)
        item = self.store[category].get(resource_id)
        if item is None:
            return None
        if category == Category.KNOWLEDGE:
            return self._knowledge_view(item)
        return copy.deepcopy(item)

    def create_resource(self, category: Category, form: Dict[str, Any]) -> str:
        key = form.get("command") or form.get("name") or form.get("id") or ""
        self._check("create", category, key)
        payload = copy.deepcopy(form)
        if category == Category.PROMPT:
            new_id = payload["command"]
        elif category in (Category.MODEL, Category.TOOL, Category.CHAT, Category.FEEDBACK) and payload.get("id"):
            new_id = payload["id"]
        else:
            new_id = self._new_id(category)
            payload["id"] = new_id
        payload.pop("password", None)
        if category == Category.KNOWLEDGE:
            payload["data"] = {"file_ids": []}
        self.store[category][new_id] = payload
        self.mutations.append(("create", category, new_id))
        return new_id

    def update_resource(self, category: Category, resource_id: str, form: Dict[str, Any]) -> None:
        self._check("update", category, resource_id)
        if resource_id not in self.store[category]:
            raise APIError(404, f"{category.value} not found: {resource_id}")
        self.store[category][resource_id].update(copy.deepcopy(form))
        self.mutations.append(("update", category, resource_id))

    def link_file(self, knowledge_id: str, file_id: str) -> None:
        self._check("link", Category.KNOWLEDGE, knowledge_id)
        kb = self.store[Category.KNOWLEDGE][knowledge_id]
        kb.setdefault("data", {}).setdefault("file_ids", []).append(file_id)
        self.mutations.append(("link", Category.KNOWLEDGE, knowledge_id))

    def unlink_file(self, knowledge_id: str, file_id: str) -> None:
        self._check("unlink", Category.KNOWLEDGE, knowledge_id)
        kb = self.store[Category.KNOWLEDGE][knowledge_id]
        kb["data"]["file_ids"].remove(file_id)
        self.mutations.append(("unlink", Category.KNOWLEDGE, knowledge_id))

    def upload_file(self, filename: str, content: bytes) -> str:
        self._check("upload", Category.FILE, filename)
        file_id = self._new_id(Category.FILE)
        self.add_file(file_id, filename, content)
        self.mutations.append(("upload", Category.FILE, filename))
        return file_id

    def download_file(self, file_id: str) -> Tuple[Dict[str, Any], bytes]:
        self._check("download", Category.FILE, file_id)
        metadata = self.get_resource(Category.FILE, file_id)
        if metadata is None:
            raise APIError(404, f"file not found: {file_id}")
        return metadata, self.contents[file_id]


def populate(client: FakeResourceClient) -> FakeResourceClient:
    """One resource of every category, with a model referencing a collection and a file."""
    client.add_file("f1", "alpha.txt", b"alpha")
    client.add_file("f2", "beta.md", b"# beta")
    client.add_file("f3", "gamma.pdf", b"%PDF-1.4 gamma")
    client.add_knowledge("kb1", "Docs", ["f1", "f2"], description="Team docs")
    client.add(Category.MODEL, {
        "id": "helper-model",
        "name": "Helper",
        "base_model_id": "llama3",
        "params": {"temperature": 0.2},
        "meta": {
            "description": "Answers from the docs",
            "knowledge": [
                {"type": "collection", "id": "kb1", "name": "Docs", "description": "Team docs",
                 "data": {"file_ids": ["f1", "f2"]}},
                {"type": "file", "id": "f3", "name": "gamma.pdf"},
            ],
        },
        "access_control": None,
    })
    client.add(Category.TOOL, {"id": "weather", "name": "Weather", "content": "def run(): pass", "meta": {}})
    client.add(Category.PROMPT, {"command": "/summarize", "title": "Summarize", "content": "Summarize {{text}}"})
    client.add(Category.USER, {"id": "u1", "name": "Alice", "email": "Alice@Example.com", "role": "user"})
    client.add(Category.GROUP, {"id": "g1", "name": "Staff", "description": "", "user_ids": ["u1"]})
    client.add(Category.CHAT, {"id": "c1", "title": "Hello", "chat": {"messages": []}})
    client.add(Category.FEEDBACK, {"id": "fb1", "type": "rating", "data": {"rating": 1}})
    return client


@pytest.fixture
def source():
    return populate(FakeResourceClient("http://source.local"))


@pytest.fixture
def target():
    return FakeResourceClient()


@pytest.fixture
def unified_backup(source, tmp_path) -> Path:
    path = tmp_path / "backup.zip"
    ArchiveWriter(source).write(Selection.all(), path)
    return path


def write_zip(path: Path, members: Dict[str, Any]) -> Path:
    """Write a ZIP from a name -> str/bytes mapping."""
    with zipfile.ZipFile(path, "w") as zipf:
        for name, data in members.items():
            zipf.writestr(name, data)
    return path
