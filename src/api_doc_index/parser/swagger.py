"""OpenAPI / Swagger document loading.

Fetches OpenAPI 3.x documents (Swagger 2.0 ``definitions`` are tolerated),
resolves ``$ref`` schema references, synthesizes example payloads and groups
operations by their first tag.
"""

import base64
import logging
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import httpx
import yaml
from pydantic import BaseModel

from .base import HTTP_METHODS

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

REF_PREFIXES = ("#/components/schemas/", "#/definitions/")

# Deterministic placeholders so that refreshing an unchanged document is idempotent.
FORMAT_PLACEHOLDERS = {
    "email": "user@example.com",
    "uri": "https://example.com",
    "url": "https://example.com",
    "date": "2024-01-01",
    "date-time": "2024-01-01T00:00:00Z",
}


class RefreshError(Exception):
    """Raised when an OpenAPI document cannot be fetched or decoded."""


class Operation(BaseModel):
    """One ``(path, method)`` entry of an OpenAPI document."""

    path: str
    method: str  # lower-case, as in the document
    spec: dict


class OperationGroup(BaseModel):
    """Operations sharing a first tag; becomes one Markdown file."""

    key: str  # 分组服务-HrGroupApi
    tag_name: str
    description: str
    operations: list[Operation] = []


def normalize_docs_url(url: str) -> str:
    """Turn a Swagger UI, doc.html or api-docs URL into the JSON endpoint URL."""
    docs_url = url.split("#")[0]
    if "/doc.html" in docs_url:
        return docs_url.replace("/doc.html", "/v3/api-docs")
    if "/swagger-ui" in docs_url:
        return re.sub(r"/swagger-ui(/.*)?$", "/v3/api-docs", docs_url)
    if "/v3/api-docs" in docs_url or "/swagger.json" in docs_url:
        return docs_url
    parts = urlsplit(docs_url)
    return f"{parts.scheme}://{parts.netloc}/v3/api-docs"


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def fetch_openapi(
    url: str,
    username: str | None = None,
    password: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict:
    """GET an OpenAPI JSON document. Any failure raises RefreshError."""
    headers = {"Accept": "application/json"}
    if username and password:
        headers["Authorization"] = basic_auth_header(username, password)

    logger.info("Fetching API specification from %s", url)
    try:
        response = httpx.get(url, headers=headers, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        raise RefreshError(f"Failed to fetch Swagger JSON from {url}: {e}") from e

    if not response.is_success:
        raise RefreshError(
            f"Failed to fetch Swagger JSON from {url}. "
            f"Status: {response.status_code} {response.reason_phrase}"
        )

    try:
        doc = response.json()
    except ValueError as e:
        raise RefreshError(f"Invalid JSON returned from {url}: {e}") from e

    if not isinstance(doc, dict):
        raise RefreshError(f"Unexpected OpenAPI document from {url}: expected a JSON object")
    return doc


def load_openapi_file(file_path: Path) -> dict:
    """Load a local OpenAPI document (YAML or JSON)."""
    try:
        text = file_path.read_text(encoding="utf-8")
        doc = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as e:
        raise RefreshError(f"Cannot read OpenAPI document {file_path}: {e}") from e

    if not isinstance(doc, dict):
        raise RefreshError(f"Unexpected OpenAPI document in {file_path}: expected a mapping")
    return doc


def component_schemas(doc: dict) -> dict:
    """Named schemas of a document (``components.schemas`` or Swagger 2 ``definitions``)."""
    schemas = (doc.get("components") or {}).get("schemas")
    if schemas is None:
        schemas = doc.get("definitions")
    return schemas or {}


def _ref_name(ref: str) -> str | None:
    for prefix in REF_PREFIXES:
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return None


def resolve_ref(schema: Any, schemas: dict) -> Any:
    """Resolve a top-level ``$ref``; unresolvable references are returned unchanged."""
    if not isinstance(schema, dict) or "$ref" not in schema:
        return schema
    name = _ref_name(schema["$ref"])
    if name and name in schemas:
        return schemas[name]
    return schema


def content_schema(content: dict | None) -> dict | None:
    """Pick the ``application/json`` schema of a content map, else the first one."""
    if not content:
        return None
    if "application/json" in content and content["application/json"].get("schema"):
        return content["application/json"]["schema"]
    for media in content.values():
        if isinstance(media, dict) and media.get("schema"):
            return media["schema"]
    return None


def generate_example(schema: Any, schemas: dict, _seen: frozenset = frozenset()) -> Any:
    """Synthesize an example value from a JSON schema.

    Leaves become their description (or a placeholder), arrays become a
    single-element list and objects recurse over their properties.
    """
    if not isinstance(schema, dict):
        return schema
    if "example" in schema:
        return schema["example"]

    if "$ref" in schema:
        name = _ref_name(schema["$ref"])
        if name is None or name not in schemas:
            return schema.get("description")
        if name in _seen:
            return {}
        return generate_example(schemas[name], schemas, _seen | {name})

    if "allOf" in schema:
        return generate_example(_merge_all_of(schema, schemas), schemas, _seen)

    description = schema.get("description")
    schema_type = schema.get("type")
    if schema_type is None and "properties" in schema:
        schema_type = "object"

    if schema_type == "string":
        if schema.get("enum"):
            return f"{description or 'string'}({schema['enum'][0]})"
        if description:
            return description
        return FORMAT_PLACEHOLDERS.get(schema.get("format"), "string")
    if schema_type in ("number", "integer"):
        if schema.get("enum"):
            return f"{description or '0'}({schema['enum'][0]})"
        return description or "0"
    if schema_type == "boolean":
        return description or "true"
    if schema_type == "array":
        if "items" in schema:
            return [generate_example(schema["items"], schemas, _seen)]
        return []
    if schema_type == "object":
        return {
            key: generate_example(value, schemas, _seen)
            for key, value in (schema.get("properties") or {}).items()
        }
    return description


def _merge_all_of(schema: dict, schemas: dict) -> dict:
    merged: dict = {"type": "object", "properties": {}}
    for part in schema["allOf"]:
        resolved = resolve_ref(part, schemas)
        if isinstance(resolved, dict):
            merged["properties"].update(resolved.get("properties") or {})
    merged["properties"].update(schema.get("properties") or {})
    return merged


def sanitize_name(name: str) -> str:
    """Make a tag name safe for file names (ASCII letters, digits, ``_`` and ``-``)."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", name)


def sanitize_description(description: str) -> str:
    """Make a tag description safe for file names; CJK survives, ``-`` does not."""
    return re.sub(r"\W", "_", description)


def iter_operations(doc: dict):
    """Yield every Operation in document order, skipping path-level keys."""
    for path, methods in (doc.get("paths") or {}).items():
        if not isinstance(methods, dict):
            continue
        for method, spec in methods.items():
            if method.upper() not in HTTP_METHODS or not isinstance(spec, dict):
                continue
            yield Operation(path=path, method=method, spec=spec)


def group_operations(doc: dict) -> dict[str, OperationGroup]:
    """Group operations by their first tag, keyed by ``{description}-{tag}``."""
    tag_map: dict[str, str] = {}
    for tag in doc.get("tags") or []:
        if isinstance(tag, dict) and tag.get("name"):
            tag_map[tag["name"]] = tag.get("description") or tag["name"]

    groups: dict[str, OperationGroup] = {}
    for operation in iter_operations(doc):
        tags = operation.spec.get("tags") or []
        tag = tags[0] if tags else None

        if tag and tag in tag_map:
            key = f"{sanitize_description(tag_map[tag])}-{sanitize_name(tag)}"
            description = tag_map[tag]
        elif tag:
            key = f"default-{sanitize_name(tag)}"
            description = tag
        else:
            key = "default-default"
            tag = "default"
            description = "Default"

        if key not in groups:
            groups[key] = OperationGroup(key=key, tag_name=tag, description=description)
        groups[key].operations.append(operation)

    return groups


def find_operation(doc: dict, operation_id: str) -> Operation | None:
    for operation in iter_operations(doc):
        if operation.spec.get("operationId") == operation_id:
            return operation
    return None
