"""Refresh the Markdown API documentation from an OpenAPI document.

One file per tag group is written to the API directory. Every entry point
returns a ToolResult; upstream and file system failures never escape.
"""

import logging
from pathlib import Path
from typing import Callable
from urllib.parse import urlsplit

from pydantic import BaseModel

from api_doc_index.generator.markdown import render_group, render_operation
from api_doc_index.parser.base import ToolResult
from api_doc_index.parser.swagger import (
    DEFAULT_TIMEOUT,
    OperationGroup,
    RefreshError,
    component_schemas,
    fetch_openapi,
    find_operation,
    group_operations,
    normalize_docs_url,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class RefreshParams(BaseModel):
    url: str
    username: str | None = None
    password: str | None = None


def validate_refresh_params(params: RefreshParams) -> str | None:
    """Return an error message for invalid parameters, None when valid."""
    if not params.url or not params.url.strip():
        return "The 'url' parameter cannot be empty."

    try:
        parts = urlsplit(params.url.strip())
    except ValueError:
        parts = None
    if parts is None or parts.scheme not in ("http", "https") or not parts.netloc:
        return f"The 'url' parameter is not a valid URL: {params.url}"

    if params.username and not params.password:
        return "If 'username' is provided, 'password' must also be provided."
    if params.password and not params.username:
        return "If 'password' is provided, 'username' must also be provided."
    return None


def _notify(on_progress: ProgressCallback | None, message: str) -> None:
    logger.info(message)
    if on_progress:
        on_progress(message)


def _error(message_zh: str, message_en: str) -> ToolResult:
    return ToolResult(
        llm_content=f"错误: {message_zh}\nError: {message_en}",
        return_display=f"Error: {message_en}",
        is_error=True,
    )


def match_group_key(groups: dict[str, OperationGroup], tag: str) -> str | None:
    """Find the group a ``--tag`` value refers to (tag name, description or full key)."""
    wanted = tag.lower()
    for key, group in groups.items():
        description, _, name = key.partition("-")
        if wanted in (name.lower(), description.lower(), key.lower(), group.tag_name.lower()):
            return key
    return None


def _write_group(group: OperationGroup, schemas: dict, api_dir: Path) -> Path:
    total = len(group.operations)
    content = render_group(group, schemas)
    if total > 10:
        logger.debug("Rendered %d endpoints for %s", total, group.key)
    file_path = api_dir / f"{group.key}.md"
    file_path.write_text(content, encoding="utf-8")
    return file_path


def write_groups(
    doc: dict,
    api_dir: Path,
    tag: str | None = None,
    on_progress: ProgressCallback | None = None,
) -> ToolResult:
    """Render an OpenAPI document into per-tag Markdown files under api_dir."""
    groups = group_operations(doc)
    schemas = component_schemas(doc)

    if tag:
        key = match_group_key(groups, tag)
        if key is None:
            available = ", ".join(groups)
            message = f"No matching tag found for '{tag}'. Available tags: {available}"
            _notify(on_progress, message)
            return ToolResult(
                llm_content=f"未找到与 '{tag}' 匹配的标签。可用标签: {available}\n{message}",
                return_display=message,
                is_error=True,
            )
        groups = {key: groups[key]}

    try:
        api_dir.mkdir(parents=True, exist_ok=True)
        if tag:
            existing = api_dir / f"{key}.md"
            if existing.exists():
                existing.unlink()
                _notify(on_progress, f"Deleted existing API documentation file for tag '{key}'")

        total = len(groups)
        _notify(on_progress, f"Starting to process {total} API tag files...")
        saved = []
        for index, (group_key, group) in enumerate(groups.items(), start=1):
            count = len(group.operations)
            _notify(on_progress, f"Processing ({index}/{total}): {group_key}.md ({count} endpoints)...")
            file_path = _write_group(group, schemas, api_dir)
            saved.append(f'Saved {count} endpoints for tag "{group_key}" to {file_path}')
    except OSError as e:
        logger.exception("Failed to write API documentation to %s", api_dir)
        return _error(f"写入API文档失败: {e}", f"Failed to write API documentation: {e}")

    _notify(on_progress, f"Finished processing {total} API tag files. Documentation saved to {api_dir}")
    if tag:
        header = f"Successfully saved API documentation for tag '{next(iter(groups))}':"
    else:
        header = "Successfully saved API documentation by tags:"
    return ToolResult(
        llm_content=header + "\n" + "\n".join(saved),
        return_display=f"Saved {total} API documentation file(s) to {api_dir}",
    )


def refresh_api_docs(
    params: RefreshParams,
    api_dir: Path,
    tag: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    on_progress: ProgressCallback | None = None,
) -> ToolResult:
    """Fetch the OpenAPI document behind params.url and regenerate the docs."""
    problem = validate_refresh_params(params)
    if problem:
        return _error(f"参数无效: {problem}", problem)

    if tag:
        _notify(on_progress, f"Starting API refresh for tag '{tag}' from {params.url}...")
    else:
        _notify(on_progress, f"Starting API refresh from {params.url}...")

    docs_url = normalize_docs_url(params.url.strip())
    _notify(on_progress, f"Fetching API specification from {docs_url}...")
    try:
        doc = fetch_openapi(docs_url, params.username, params.password, timeout=timeout)
    except RefreshError as e:
        logger.error("Refresh from %s failed: %s", docs_url, e)
        return _error(
            f"访问Swagger API出错: {e}。请检查URL和凭据后重试。",
            f"Error accessing Swagger API: {e}. Check the URL and credentials, then retry.",
        )

    return write_groups(doc, api_dir, tag=tag, on_progress=on_progress)


def describe_operation(
    params: RefreshParams,
    timeout: float = DEFAULT_TIMEOUT,
) -> ToolResult:
    """Render the single operation named by a ``#/{tag}/{operationId}`` URL fragment."""
    problem = validate_refresh_params(params)
    if problem:
        return _error(f"参数无效: {problem}", problem)

    fragment = urlsplit(params.url.strip()).fragment
    segments = [part for part in fragment.split("/") if part]
    if len(segments) < 2:
        message = (
            "The URL must specify a concrete API endpoint "
            f"(e.g. doc.html#/default/UserApi/getUser): {params.url}"
        )
        return _error(f"URL未指定具体接口: {params.url}", message)
    operation_id = segments[-1]

    docs_url = normalize_docs_url(params.url.strip())
    try:
        doc = fetch_openapi(docs_url, params.username, params.password, timeout=timeout)
    except RefreshError as e:
        logger.error("Fetching %s failed: %s", docs_url, e)
        return _error(f"访问Swagger API出错: {e}", f"Error accessing Swagger API: {e}")

    operation = find_operation(doc, operation_id)
    if operation is None:
        return _error(
            f"在 {docs_url} 中未找到 operationId 为 '{operation_id}' 的接口",
            f"Could not find API endpoint with operation ID '{operation_id}' in Swagger JSON from {docs_url}",
        )

    return ToolResult(
        llm_content=render_operation(operation, component_schemas(doc)),
        return_display=f"Successfully extracted API information from {params.url}",
    )
