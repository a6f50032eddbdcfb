"""Service lookup over the generated API documentation.

Every outcome, including invalid input and "nothing found", is returned as
a bilingual ToolResult with a concrete next step.
"""

import json
import logging
import re
from pathlib import Path

from pydantic import BaseModel

from api_doc_index.index.cache import DocCache
from api_doc_index.index.matcher import MAX_AGGREGATE_METHODS, MatchResult, ServiceMatcher
from api_doc_index.parser.base import ApiMethod, ServiceInfo, ToolResult
from api_doc_index.parser.markdown import list_doc_files, load_services

logger = logging.getLogger(__name__)

REFRESH_HINT_ZH = "请先运行 `api-doc-index refresh` 命令生成API文档。"
REFRESH_HINT_EN = "Run `api-doc-index refresh` first to generate API documentation."

FORBIDDEN_CHARS = set('<>:"?*')
CJK_CHARS = r"\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
CJK_RE = re.compile(rf"[{CJK_CHARS}]")
SERVICE_NAME_RE = re.compile(rf"^[A-Za-z0-9_\-|{CJK_CHARS}]+$")


class LookupParams(BaseModel):
    service_name: str
    operation_keyword: str | None = None
    endpoint_path: str | None = None


def validate_service_name(service_name: str, matcher: ServiceMatcher) -> str | None:
    """Return an error message for an unusable service name, None when valid."""
    name = (service_name or "").strip()
    if not name:
        return "The 'service_name' parameter cannot be empty."
    if len(name) < 2:
        return "The 'service_name' parameter should be at least 2 characters long."
    if matcher.find_pattern(name):
        return None
    bad = sorted(FORBIDDEN_CHARS & set(name))
    if bad:
        return f"The 'service_name' parameter contains invalid characters: {' '.join(bad)}"
    if not SERVICE_NAME_RE.match(name):
        return (
            "The 'service_name' parameter may only contain letters, digits, '-', '_', "
            "Chinese characters and '|' between alternatives."
        )
    if any(len(term.strip()) < 2 for term in name.split("|")):
        return "Each '|'-separated term of 'service_name' should be at least 2 characters long."
    return None


def keyword_matches(description: str, keyword: str) -> bool:
    if CJK_RE.search(keyword):
        return keyword in description
    return keyword.lower() in description.lower()


def _info(llm_content: str, return_display: str) -> ToolResult:
    return ToolResult(llm_content=llm_content, return_display=return_display)


class ApiLookup:
    """Answers ``(service_name, operation_keyword?)`` queries against one API directory."""

    def __init__(self, api_dir: Path, cache: DocCache, matcher: ServiceMatcher | None = None):
        self.api_dir = Path(api_dir)
        self.cache = cache
        self.matcher = matcher or ServiceMatcher()

    def services(self) -> list[ServiceInfo]:
        """Parsed services, re-read only when the directory changed."""
        services = self.cache.get(self.api_dir)
        if services is None:
            logger.debug("Parsing API documentation in %s", self.api_dir)
            services = load_services(self.api_dir)
            self.cache.set(self.api_dir, services)
        return services

    def lookup(self, params: LookupParams) -> ToolResult:
        problem = validate_service_name(params.service_name, self.matcher)
        if problem:
            return ToolResult(
                llm_content=f"参数无效: {problem}\nInvalid parameters: {problem}",
                return_display=problem,
                is_error=True,
            )

        if not self.api_dir.is_dir():
            return _info(
                f"未找到API文档目录 {self.api_dir}。{REFRESH_HINT_ZH}\n"
                f"No API documentation directory found at {self.api_dir}. {REFRESH_HINT_EN}",
                "API documentation directory not found",
            )

        try:
            has_files = bool(list_doc_files(self.api_dir))
            services = self.services() if has_files else []
        except OSError as e:
            logger.exception("Failed to read API documentation in %s", self.api_dir)
            return ToolResult(
                llm_content=f"查询API信息时出错: {e}\nError querying API information: {e}",
                return_display=f"Error: {e}",
                is_error=True,
            )

        if not services:
            return _info(
                f"在 {self.api_dir} 中未找到API文档文件。{REFRESH_HINT_ZH}\n"
                f"No API documentation files found in {self.api_dir}. {REFRESH_HINT_EN}",
                "No API documentation files found",
            )

        name = params.service_name.strip()
        pattern = self.matcher.find_pattern(name)
        if pattern:
            match = self.matcher.aggregate(name, pattern, services)
        else:
            match = self.matcher.find_best(name, services)
        if match is None:
            return self._service_not_found(name, services)

        methods = self._filter_methods(match.service.methods, params)
        if not methods:
            return self._methods_not_found(match.service, params)
        return self._format(match, methods)

    @staticmethod
    def _filter_methods(methods: list[ApiMethod], params: LookupParams) -> list[ApiMethod]:
        if params.operation_keyword and params.operation_keyword.strip():
            keyword = params.operation_keyword.strip()
            methods = [m for m in methods if keyword_matches(m.description, keyword)]
        if params.endpoint_path and params.endpoint_path.strip():
            path = params.endpoint_path.strip().lower()
            methods = [m for m in methods if path in m.path.lower()]
        return methods

    def _service_not_found(self, name: str, services: list[ServiceInfo]) -> ToolResult:
        suggestions = self.matcher.find_similar_services(name, services)
        available = "\n".join(
            f"- {s.service_name} ({s.service_display_name})" for s in services
        )
        lines = [f'未找到与 "{name}" 匹配的服务。']
        if suggestions:
            lines.append("您是否要找: " + ", ".join(s.service_name for s in suggestions))
        lines.append(f'No service found matching "{name}".')
        if suggestions:
            lines.append("Did you mean: " + ", ".join(s.service_name for s in suggestions))
        lines.append("可用服务 / Available services:")
        lines.append(available)
        lines.append("请使用上述服务名之一重试。Retry with one of the service names above.")
        return _info("\n".join(lines), f'No service found matching "{name}"')

    @staticmethod
    def _methods_not_found(service: ServiceInfo, params: LookupParams) -> ToolResult:
        criteria = params.operation_keyword or params.endpoint_path or ""
        available = "\n".join(
            f"- [{m.http_method}] {m.path}: {m.description}" for m in service.methods
        )
        content = (
            f'在服务 "{service.service_display_name}" 中未找到与 "{criteria}" 匹配的接口。\n'
            f'No methods found matching "{criteria}" in service "{service.service_display_name}".\n'
            f"可用接口 / Available methods:\n{available}\n"
            "请换一个关键字重试，或省略 operation_keyword 查看全部接口。"
            "Retry with another keyword, or omit operation_keyword to list every method."
        )
        return _info(content, f'No methods matching "{criteria}" in {service.service_display_name}')

    @staticmethod
    def _format(match: MatchResult, methods: list[ApiMethod]) -> ToolResult:
        payload = {
            "service_name": match.service.service_name,
            "service_display_name": match.service.service_display_name,
            "methods": [m.model_dump() for m in methods],
        }
        content = json.dumps(payload, indent=2, ensure_ascii=False)
        if match.truncated:
            content += (
                f"\n\n注意: 共匹配 {match.total_methods} 个接口，仅返回前 {MAX_AGGREGATE_METHODS} 个。"
                f"\nNote: {match.total_methods} methods matched; only the first "
                f"{MAX_AGGREGATE_METHODS} are included."
            )
        return ToolResult(
            llm_content=content,
            return_display=(
                f"Found {len(methods)} method(s) in service {match.service.service_display_name}"
            ),
        )
