import json
from pathlib import Path
from unittest.mock import patch, MagicMock

import httpx
import pytest

from api_doc_index.parser.swagger import (
    RefreshError,
    basic_auth_header,
    component_schemas,
    fetch_openapi,
    find_operation,
    generate_example,
    group_operations,
    load_openapi_file,
    normalize_docs_url,
    resolve_ref,
    sanitize_description,
    sanitize_name,
)

FIXTURES = Path(__file__).parent / "fixtures"


def _load_doc() -> dict:
    return json.loads((FIXTURES / "hr-openapi.json").read_text(encoding="utf-8"))


def _response(status_code=200, payload=None, json_error=False) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    resp.reason_phrase = "OK" if resp.is_success else "Unauthorized"
    if json_error:
        resp.json.side_effect = ValueError("Expecting value")
    else:
        resp.json.return_value = payload
    return resp


class TestNormalizeDocsUrl:
    def test_doc_html_with_fragment(self):
        url = "http://10.4.208.83:18814/doc.html#/default/PurchaseContractArchiveApi/archive"
        assert normalize_docs_url(url) == "http://10.4.208.83:18814/v3/api-docs"

    def test_swagger_ui(self):
        url = "https://api.example.com/hr/swagger-ui/index.html"
        assert normalize_docs_url(url) == "https://api.example.com/hr/v3/api-docs"

    def test_api_docs_left_alone(self):
        url = "https://api.example.com/v3/api-docs?group=hr"
        assert normalize_docs_url(url) == url

    def test_swagger_json_left_alone(self):
        url = "https://api.example.com/swagger.json"
        assert normalize_docs_url(url) == url

    def test_other_url_falls_back_to_origin(self):
        assert normalize_docs_url("http://host:8080/some/page") == "http://host:8080/v3/api-docs"


class TestFetchOpenapi:
    @patch("api_doc_index.parser.swagger.httpx.get")
    def test_returns_document(self, mock_get):
        mock_get.return_value = _response(payload={"openapi": "3.0.1", "paths": {}})

        doc = fetch_openapi("http://host/v3/api-docs")

        assert doc["openapi"] == "3.0.1"
        headers = mock_get.call_args[1]["headers"]
        assert headers["Accept"] == "application/json"
        assert "Authorization" not in headers

    @patch("api_doc_index.parser.swagger.httpx.get")
    def test_sends_basic_auth(self, mock_get):
        mock_get.return_value = _response(payload={"paths": {}})

        fetch_openapi("http://host/v3/api-docs", "admin", "secret")

        headers = mock_get.call_args[1]["headers"]
        assert headers["Authorization"] == "Basic YWRtaW46c2VjcmV0"

    @patch("api_doc_index.parser.swagger.httpx.get")
    def test_non_2xx_is_error(self, mock_get):
        mock_get.return_value = _response(status_code=401)

        with pytest.raises(RefreshError, match="Status: 401"):
            fetch_openapi("http://host/v3/api-docs")

    @patch("api_doc_index.parser.swagger.httpx.get")
    def test_transport_error(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(RefreshError, match="connection refused"):
            fetch_openapi("http://host/v3/api-docs")

    @patch("api_doc_index.parser.swagger.httpx.get")
    def test_invalid_json(self, mock_get):
        mock_get.return_value = _response(json_error=True)

        with pytest.raises(RefreshError, match="Invalid JSON"):
            fetch_openapi("http://host/v3/api-docs")

    @patch("api_doc_index.parser.swagger.httpx.get")
    def test_non_object_json(self, mock_get):
        mock_get.return_value = _response(payload=["not", "a", "document"])

        with pytest.raises(RefreshError):
            fetch_openapi("http://host/v3/api-docs")


class TestLoadOpenapiFile:
    def test_load_json_fixture(self):
        doc = load_openapi_file(FIXTURES / "hr-openapi.json")
        assert "/hr/group/save" in doc["paths"]

    def test_load_yaml(self, tmp_path):
        f = tmp_path / "api.yaml"
        f.write_text("openapi: 3.0.1\npaths: {}\n", encoding="utf-8")
        assert load_openapi_file(f)["openapi"] == "3.0.1"

    def test_scalar_document_rejected(self, tmp_path):
        f = tmp_path / "api.yaml"
        f.write_text("just text", encoding="utf-8")
        with pytest.raises(RefreshError):
            load_openapi_file(f)


class TestExampleGeneration:
    def test_object_with_integer_and_email(self):
        schema = {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "email": {"type": "string", "format": "email"},
            },
        }
        example = generate_example(schema, {})
        assert example == {"id": "0", "email": "user@example.com"}

    def test_leaf_uses_description(self):
        assert generate_example({"type": "string", "description": "用户名"}, {}) == "用户名"
        assert generate_example({"type": "boolean"}, {}) == "true"

    def test_enum(self):
        schema = {"type": "string", "description": "状态", "enum": ["ACTIVE", "DISABLED"]}
        assert generate_example(schema, {}) == "状态(ACTIVE)"

    def test_explicit_example_wins(self):
        assert generate_example({"type": "integer", "example": 42}, {}) == 42

    def test_array_of_refs(self):
        schemas = component_schemas(_load_doc())
        example = generate_example({"type": "array", "items": {"$ref": "#/components/schemas/UserVo"}}, schemas)
        assert example == [{"id": "0", "email": "user@example.com", "createdAt": "2024-01-01T00:00:00Z"}]

    def test_cyclic_ref_terminates(self):
        schemas = {
            "Node": {
                "type": "object",
                "properties": {"name": {"type": "string"}, "parent": {"$ref": "#/components/schemas/Node"}},
            }
        }
        example = generate_example({"$ref": "#/components/schemas/Node"}, schemas)
        assert example == {"name": "string", "parent": {}}

    def test_all_of_is_merged(self):
        schemas = {"Base": {"type": "object", "properties": {"id": {"type": "integer"}}}}
        schema = {"allOf": [{"$ref": "#/components/schemas/Base"}], "properties": {"name": {"type": "string"}}}
        assert generate_example(schema, schemas) == {"id": "0", "name": "string"}

    def test_unresolvable_ref_returned_unchanged(self):
        schema = {"$ref": "#/components/schemas/Missing"}
        assert resolve_ref(schema, {}) is schema


class TestGrouping:
    def test_group_keys_in_document_order(self):
        groups = group_operations(_load_doc())
        assert list(groups) == [
            "hr分组服务-HrGroupApi",
            "用户服务-UserApi",
            "default-default",
            "default-LegacyApi",
        ]

    def test_operations_grouped_by_first_tag(self):
        groups = group_operations(_load_doc())
        group = groups["hr分组服务-HrGroupApi"]
        assert group.tag_name == "HrGroupApi"
        assert group.description == "hr分组服务"
        assert [op.spec["operationId"] for op in group.operations] == ["saveGroup", "listGroups"]

    def test_path_level_parameters_ignored(self):
        groups = group_operations(_load_doc())
        methods = [op.method for op in groups["用户服务-UserApi"].operations]
        assert methods == ["get", "delete"]

    def test_sanitizers(self):
        assert sanitize_name("Hr Group/Api") == "Hr_Group_Api"
        assert sanitize_description("HR 分组-服务") == "HR_分组_服务"

    def test_find_operation(self):
        operation = find_operation(_load_doc(), "deleteUser")
        assert operation.path == "/user/{id}"
        assert operation.method == "delete"
        assert find_operation(_load_doc(), "nope") is None


def test_basic_auth_header():
    assert basic_auth_header("user", "pass") == "Basic dXNlcjpwYXNz"
