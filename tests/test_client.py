"""Unit tests for the Open WebUI HTTP client."""

import unittest
from unittest import mock

import requests

from owuiarchive.client.openwebui import OpenWebUIClient
from owuiarchive.core.errors import APIError
from owuiarchive.schemas.selection import Category


def fake_response(status_code=200, json_data=None, content=b"", text=""):
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    response.content = content
    response.text = text
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    return response


class TestOpenWebUIClient(unittest.TestCase):
    """Test cases for OpenWebUIClient against a mocked session."""

    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.session.headers = {}
        self.client = OpenWebUIClient("http://owui.local/", api_key="sk-test", timeout=5, session=self.session)

    def called_url(self, index=-1):
        args, _ = self.session.request.call_args_list[index]
        return args[1]

    def test_bearer_token_and_base_url(self):
        self.assertEqual(self.session.headers["Authorization"], "Bearer sk-test")
        self.assertEqual(self.client.base_url, "http://owui.local")

    def test_list_unwraps_items(self):
        self.session.request.return_value = fake_response(json_data={"items": [{"id": "kb1"}]})
        self.assertEqual(self.client.list_resources(Category.KNOWLEDGE), [{"id": "kb1"}])
        self.assertEqual(self.called_url(), "http://owui.local/api/v1/knowledge/list")

    def test_users_are_paginated(self):
        self.session.request.side_effect = [
            fake_response(json_data={"users": [{"id": "u1"}], "total": 2}),
            fake_response(json_data={"users": [{"id": "u2"}], "total": 2}),
        ]
        users = self.client.list_resources(Category.USER)
        self.assertEqual([u["id"] for u in users], ["u1", "u2"])
        self.assertEqual(self.called_url(), "http://owui.local/api/v1/users/?page=2")

    def test_get_missing_resource_returns_none(self):
        self.session.request.return_value = fake_response(status_code=404, text="not found")
        self.assertIsNone(self.client.get_resource(Category.TOOL, "weather"))

    def test_server_error_raises(self):
        self.session.request.return_value = fake_response(status_code=500, text="boom")
        with self.assertRaises(APIError) as ctx:
            self.client.get_resource(Category.TOOL, "weather")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIn("boom", str(ctx.exception))

    def test_transport_error_has_status_zero(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(APIError) as ctx:
            self.client.list_resources(Category.TOOL)
        self.assertEqual(ctx.exception.status_code, 0)

    def test_prompt_command_slash_is_stripped_from_path(self):
        self.session.request.return_value = fake_response(json_data={"command": "/summarize"})
        self.client.get_resource(Category.PROMPT, "/summarize")
        self.assertEqual(self.called_url(), "http://owui.local/api/v1/prompts/command/summarize")

    def test_create_returns_server_id(self):
        self.session.request.return_value = fake_response(json_data={"id": "kb-new"})
        new_id = self.client.create_resource(Category.KNOWLEDGE, {"name": "Docs"})
        self.assertEqual(new_id, "kb-new")
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["json"], {"name": "Docs"})

    def test_create_prompt_returns_command(self):
        self.session.request.return_value = fake_response(json_data={"command": "/summarize"})
        self.assertEqual(self.client.create_resource(Category.PROMPT, {"command": "/summarize"}), "/summarize")

    def test_upload_sends_multipart(self):
        self.session.request.return_value = fake_response(json_data={"id": "file-9"})
        self.assertEqual(self.client.upload_file("a.txt", b"A"), "file-9")
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["files"], {"file": ("a.txt", b"A")})
        self.assertIn("process=true", self.called_url())

    def test_download_returns_metadata_and_bytes(self):
        self.session.request.side_effect = [
            fake_response(json_data={"id": "f1", "meta": {"name": "a.txt"}}),
            fake_response(content=b"payload"),
        ]
        metadata, content = self.client.download_file("f1")
        self.assertEqual(metadata["meta"]["name"], "a.txt")
        self.assertEqual(content, b"payload")
        self.assertEqual(self.called_url(), "http://owui.local/api/v1/files/f1/content")

    def test_file_create_is_rejected(self):
        with self.assertRaises(APIError) as ctx:
            self.client.create_resource(Category.FILE, {"filename": "a.txt"})
        self.assertEqual(ctx.exception.status_code, 405)
        self.session.request.assert_not_called()

    def test_file_update_is_rejected(self):
        with self.assertRaises(APIError):
            self.client.update_resource(Category.FILE, "f1", {})
        self.session.request.assert_not_called()

    def test_version_is_optional(self):
        self.session.request.return_value = fake_response(status_code=404, text="")
        self.assertEqual(self.client.get_version(), "")


if __name__ == "__main__":
    unittest.main()
