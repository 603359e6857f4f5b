"""
HTTP client for the Open WebUI API.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from owuiarchive.core.errors import APIError
from owuiarchive.schemas.selection import Category

logger = logging.getLogger(__name__)

LIST_PATHS = {
    Category.KNOWLEDGE: "/api/v1/knowledge/list",
    Category.MODEL: "/api/v1/models/export",
    Category.TOOL: "/api/v1/tools/export",
    Category.PROMPT: "/api/v1/prompts/",
    Category.FILE: "/api/v1/files/",
    Category.CHAT: "/api/v1/chats/all",
    Category.GROUP: "/api/v1/groups/",
    Category.FEEDBACK: "/api/v1/evaluations/feedbacks/all/export",
}

GET_PATHS = {
    Category.KNOWLEDGE: "/api/v1/knowledge/{id}",
    Category.MODEL: "/api/v1/models/model?id={id}",
    Category.TOOL: "/api/v1/tools/id/{id}",
    Category.PROMPT: "/api/v1/prompts/command/{id}",
    Category.FILE: "/api/v1/files/{id}",
    Category.CHAT: "/api/v1/chats/{id}",
    Category.USER: "/api/v1/users/{id}",
    Category.GROUP: "/api/v1/groups/id/{id}",
    Category.FEEDBACK: "/api/v1/evaluations/feedback/{id}",
}

CREATE_PATHS = {
    Category.KNOWLEDGE: "/api/v1/knowledge/create",
    Category.MODEL: "/api/v1/models/create",
    Category.TOOL: "/api/v1/tools/create",
    Category.PROMPT: "/api/v1/prompts/create",
    Category.CHAT: "/api/v1/chats/import",
    Category.USER: "/api/v1/auths/add",
    Category.GROUP: "/api/v1/groups/create",
    Category.FEEDBACK: "/api/v1/evaluations/feedback",
}

UPDATE_PATHS = {
    Category.KNOWLEDGE: "/api/v1/knowledge/{id}/update",
    Category.MODEL: "/api/v1/models/model/update?id={id}",
    Category.TOOL: "/api/v1/tools/id/{id}/update",
    Category.PROMPT: "/api/v1/prompts/command/{id}/update",
    Category.CHAT: "/api/v1/chats/{id}",
    Category.USER: "/api/v1/users/{id}/update",
    Category.GROUP: "/api/v1/groups/id/{id}/update",
    Category.FEEDBACK: "/api/v1/evaluations/feedback/{id}",
}


class OpenWebUIClient:
    """Synchronous client for the resource endpoints of an Open WebUI instance.

    Every call blocks until the server answers. Non-2xx responses raise
    ``APIError`` carrying the status code and response body; transport
    failures raise ``APIError`` with status code 0.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Root URL of the Open WebUI instance
            api_key: Bearer token used for every request
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise APIError(0, f"failed to execute request: {e}") from e

        if not 200 <= response.status_code < 300:
            raise APIError(response.status_code, response.text)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise APIError(response.status_code, f"failed to decode response: {e}") from e

    @staticmethod
    def _path_id(category: Category, resource_id: str) -> str:
        if category == Category.PROMPT:
            return resource_id[1:] if resource_id.startswith("/") else resource_id
        return resource_id

    # Generic resource contract

    def list_resources(self, category: Category) -> List[Dict[str, Any]]:
        """Fetch every resource of a category as raw JSON objects."""
        if category == Category.USER:
            return self._list_users()
        data = self._json("GET", LIST_PATHS[category])
        if isinstance(data, dict):
            # Some endpoints wrap the list
            data = data.get("items") or data.get("data") or []
        return list(data or [])

    def _list_users(self) -> List[Dict[str, Any]]:
        users: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = self._json("GET", f"/api/v1/users/?page={page}")
            if isinstance(data, list):
                users.extend(data)
                break
            batch = data.get("users") or []
            if not batch:
                break
            users.extend(batch)
            if len(users) >= data.get("total", 0):
                break
            page += 1
        return users

    def get_resource(self, category: Category, resource_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a single resource, or None if the server does not know it."""
        path = GET_PATHS[category].format(id=self._path_id(category, resource_id))
        try:
            data = self._json("GET", path)
        except APIError as e:
            if e.status_code == 404:
                return None
            raise
        if isinstance(data, list):
            return data[0] if data else None
        return data

    def create_resource(self, category: Category, form: Dict[str, Any]) -> str:
        """Create a resource and return the identifier the server assigned.

        Files have no create form; they are created with ``upload_file``.
        """
        if category not in CREATE_PATHS:
            raise APIError(405, f"{category.value} resources cannot be created from a form")

        data = self._json("POST", CREATE_PATHS[category], json=form)
        if category == Category.PROMPT:
            return (data or {}).get("command") or form["command"]
        if isinstance(data, dict) and data.get("id"):
            return data["id"]
        if form.get("id"):
            return form["id"]
        raise APIError(200, f"create {category.value} returned no id")

    def update_resource(self, category: Category, resource_id: str, form: Dict[str, Any]) -> None:
        if category not in UPDATE_PATHS:
            raise APIError(405, f"{category.value} resources cannot be updated in place")
        path = UPDATE_PATHS[category].format(id=self._path_id(category, resource_id))
        self._request("POST", path, json=form)

    def link_file(self, knowledge_id: str, file_id: str) -> None:
        """Attach an uploaded file to a knowledge base."""
        self._request("POST", f"/api/v1/knowledge/{knowledge_id}/file/add", json={"file_id": file_id})

    def unlink_file(self, knowledge_id: str, file_id: str) -> None:
        self._request("POST", f"/api/v1/knowledge/{knowledge_id}/file/remove", json={"file_id": file_id})

    # Files

    def upload_file(self, filename: str, content: bytes) -> str:
        """Upload file bytes and return the new file id.

        The file is processed synchronously so it can be linked to a
        knowledge base right after the call returns.
        """
        path = "/api/v1/files/?process=true&process_in_background=false"
        data = self._json("POST", path, files={"file": (filename, content)})
        file_id = (data or {}).get("id")
        if not file_id:
            raise APIError(200, f"upload of {filename} returned no id")
        logger.debug(f"Uploaded {filename} ({len(content)} bytes) as {file_id}")
        return file_id

    def download_file(self, file_id: str) -> Tuple[Dict[str, Any], bytes]:
        """Fetch a file's metadata and raw content."""
        metadata = self.get_resource(Category.FILE, file_id)
        if metadata is None:
            raise APIError(404, f"file not found: {file_id}")
        response = self._request("GET", f"/api/v1/files/{file_id}/content")
        return metadata, response.content

    def get_version(self) -> str:
        """Server version string, empty if the instance does not report one."""
        try:
            data = self._json("GET", "/api/version")
        except APIError as e:
            logger.debug(f"Could not read server version: {e}")
            return ""
        return (data or {}).get("version", "")
