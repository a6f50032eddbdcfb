import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from api_doc_index.generator.refresh import write_groups
from api_doc_index.index.cache import DocCache
from api_doc_index.index.lookup import (
    REFRESH_HINT_EN,
    ApiLookup,
    LookupParams,
    keyword_matches,
    validate_service_name,
)
from api_doc_index.index.matcher import MAX_AGGREGATE_METHODS, ServiceMatcher
from api_doc_index.parser.base import ApiMethod, ServiceInfo
from api_doc_index.parser.markdown import load_services

FIXTURES = Path(__file__).parent / "fixtures"


def _load_doc() -> dict:
    return json.loads((FIXTURES / "hr-openapi.json").read_text(encoding="utf-8"))


@pytest.fixture
def api_dir(tmp_path):
    target = tmp_path / "api"
    write_groups(_load_doc(), target)
    return target


@pytest.fixture
def lookup(api_dir):
    return ApiLookup(api_dir, DocCache())


class TestValidateServiceName:
    @pytest.fixture
    def matcher(self):
        return ServiceMatcher()

    def test_valid_names(self, matcher):
        assert validate_service_name("user", matcher) is None
        assert validate_service_name("hr分组服务-HrGroupApi", matcher) is None
        assert validate_service_name("user|用户", matcher) is None

    def test_empty(self, matcher):
        assert "cannot be empty" in validate_service_name("  ", matcher)

    def test_too_short(self, matcher):
        assert "at least 2 characters" in validate_service_name("u", matcher)

    @pytest.mark.parametrize("name", ["r|", "||", "user||group", "user|g", "|user"])
    def test_short_or_empty_alternative(self, matcher, name):
        assert "at least 2 characters" in validate_service_name(name, matcher)

    def test_forbidden_characters(self, matcher):
        assert "invalid characters: ?" in validate_service_name("user?", matcher)

    def test_whitespace_rejected(self, matcher):
        assert validate_service_name("user service", matcher) is not None

    def test_pattern_literals_accepted(self, matcher):
        assert validate_service_name(r"\s+api", matcher) is None
        assert validate_service_name("api", matcher) is None


def test_keyword_matching():
    assert keyword_matches("Save Group", "save")
    assert keyword_matches("保存分组", "保存")
    assert not keyword_matches("保存分组", "删除")


class TestLookup:
    def test_single_group_file_returns_all_methods(self, tmp_path):
        api_dir = tmp_path / "api"
        write_groups(_load_doc(), api_dir, tag="HrGroupApi")
        assert [p.name for p in api_dir.iterdir()] == ["hr分组服务-HrGroupApi.md"]

        result = ApiLookup(api_dir, DocCache()).lookup(LookupParams(service_name="group"))

        assert result.is_error is False
        payload = json.loads(result.llm_content)
        assert payload["service_name"] == "group"
        assert payload["service_display_name"] == "hr分组服务-HrGroupApi"
        assert [m["description"] for m in payload["methods"]] == ["保存分组", "查询分组列表"]
        assert "Note:" not in result.llm_content

    def test_abbreviation(self, lookup):
        result = lookup.lookup(LookupParams(service_name="usr"))
        assert json.loads(result.llm_content)["service_name"] == "user"

    def test_chinese_name(self, lookup):
        result = lookup.lookup(LookupParams(service_name="分组"))
        assert json.loads(result.llm_content)["service_name"] == "group"

    def test_method_fields_serialized(self, lookup):
        result = lookup.lookup(LookupParams(service_name="group", operation_keyword="保存"))
        (method,) = json.loads(result.llm_content)["methods"]
        assert method["http_method"] == "POST"
        assert method["path"] == "/hr/group/save"
        assert method["request_params"]["groupName"] == {"type": "string", "description": "分组名称"}
        assert method["response_schema"]["code"] == "状态码"

    def test_unknown_service_lists_available(self, lookup):
        result = lookup.lookup(LookupParams(service_name="zzz_no_such_service"))

        assert result.is_error is False
        assert "Available services:" in result.llm_content
        assert "- group (hr分组服务-HrGroupApi)" in result.llm_content
        assert "- user (用户服务-UserApi)" in result.llm_content

    def test_no_methods_for_keyword(self, lookup):
        result = lookup.lookup(LookupParams(service_name="user", operation_keyword="保存"))

        assert result.is_error is False
        assert "No methods found" in result.llm_content
        assert "获取用户详情" in result.llm_content
        assert "[DELETE] /user/{id}: 删除用户" in result.llm_content

    def test_keyword_filter_case_insensitive(self, lookup):
        result = lookup.lookup(LookupParams(service_name="default", operation_keyword="HEALTH"))
        (method,) = json.loads(result.llm_content)["methods"]
        assert method["path"] == "/health"

    def test_endpoint_path_filter(self, lookup):
        result = lookup.lookup(LookupParams(service_name="group", endpoint_path="/list"))
        (method,) = json.loads(result.llm_content)["methods"]
        assert method["description"] == "查询分组列表"

    def test_invalid_name_is_error(self, lookup):
        result = lookup.lookup(LookupParams(service_name="a"))
        assert result.is_error is True
        assert "Invalid parameters" in result.llm_content

    def test_single_letter_alternative_is_error(self, lookup):
        result = lookup.lookup(LookupParams(service_name="r|"))
        assert result.is_error is True
        assert "hr分组服务-HrGroupApi" not in result.llm_content

    def test_missing_directory(self, tmp_path):
        result = ApiLookup(tmp_path / "missing", DocCache()).lookup(LookupParams(service_name="user"))
        assert result.is_error is False
        assert REFRESH_HINT_EN in result.llm_content

    def test_empty_directory(self, tmp_path):
        result = ApiLookup(tmp_path, DocCache()).lookup(LookupParams(service_name="user"))
        assert "No API documentation files found" in result.llm_content
        assert REFRESH_HINT_EN in result.llm_content

    def test_pattern_aggregates_services(self, lookup):
        result = lookup.lookup(LookupParams(service_name="api"))
        payload = json.loads(result.llm_content)
        descriptions = [m["description"] for m in payload["methods"]]
        # files are read in sorted order: default-LegacyApi, hr分组服务-HrGroupApi, 用户服务-UserApi
        assert descriptions == ["Ping the legacy backend", "保存分组", "查询分组列表", "获取用户详情", "删除用户"]


class TestCaching:
    def test_directory_parsed_once(self, api_dir):
        lookup = ApiLookup(api_dir, DocCache())
        with patch("api_doc_index.index.lookup.load_services", wraps=load_services) as spy:
            lookup.lookup(LookupParams(service_name="group"))
            lookup.lookup(LookupParams(service_name="user"))
        assert spy.call_count == 1

    def test_reparsed_after_file_changes(self, api_dir):
        lookup = ApiLookup(api_dir, DocCache())
        with patch("api_doc_index.index.lookup.load_services", wraps=load_services) as spy:
            lookup.lookup(LookupParams(service_name="group"))
            f = api_dir / "用户服务-UserApi.md"
            stat = f.stat()
            os.utime(f, ns=(stat.st_atime_ns, stat.st_mtime_ns + 10_000_000_000))
            lookup.lookup(LookupParams(service_name="group"))
        assert spy.call_count == 2

    def test_cache_shared_between_lookups(self, api_dir):
        cache = DocCache()
        ApiLookup(api_dir, cache).services()
        with patch("api_doc_index.index.lookup.load_services") as mock_load:
            services = ApiLookup(api_dir, cache).services()
        mock_load.assert_not_called()
        assert len(services) == 4


def test_aggregate_truncation_note(tmp_path):
    (tmp_path / "placeholder-Api.md").write_text("", encoding="utf-8")
    method = ApiMethod(description="查询", http_method="GET", path="/x")
    services = [
        ServiceInfo(service_name=f"s{i}", service_display_name=f"服务{i}-S{i}Api", methods=[method] * 7000)
        for i in range(3)
    ]
    cache = DocCache()
    cache.set(tmp_path, services)

    result = ApiLookup(tmp_path, cache).lookup(LookupParams(service_name="api"))

    body, note = result.llm_content.split("\n\n注意: ")
    assert len(json.loads(body)["methods"]) == MAX_AGGREGATE_METHODS
    assert "21000" in note
    assert f"only the first {MAX_AGGREGATE_METHODS} are included" in note
