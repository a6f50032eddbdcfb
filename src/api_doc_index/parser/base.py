"""Data models shared by the doc generator and the lookup engine.

The Markdown parser turns generated files into these models, and the
lookup engine serializes them back out as JSON for the agent.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

HttpMethod = Literal[
    "GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "CONNECT", "TRACE", "UNKNOWN"
]

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "CONNECT", "TRACE")


class FieldInfo(BaseModel):
    """Type and description of one flattened request field."""

    model_config = ConfigDict(frozen=True)

    type: str  # string / integer / email / url / date / datetime / array[string] ...
    description: str


class ApiMethod(BaseModel):
    """One documented HTTP operation."""

    model_config = ConfigDict(frozen=True)

    description: str
    http_method: HttpMethod
    path: str  # /api/users?page=页码
    request_params: dict[str, FieldInfo] = {}
    response_schema: Any = None


class ServiceInfo(BaseModel):
    """One tag group of operations, backed by exactly one Markdown file."""

    service_name: str  # group
    service_display_name: str  # hr分组服务-HrGroupApi
    methods: list[ApiMethod]


class ToolResult(BaseModel):
    """Outcome of a refresh or lookup, always renderable to the agent and user."""

    llm_content: str
    return_display: str
    is_error: bool = False
