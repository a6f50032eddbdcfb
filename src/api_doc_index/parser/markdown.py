"""Parser for the generated Markdown API documentation.

Recovers ApiMethod records from files written by
``api_doc_index.generator.markdown``; the two must stay format-compatible.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from urllib.parse import urlsplit

from api_doc_index.parser.base import ApiMethod, FieldInfo, ServiceInfo

logger = logging.getLogger(__name__)

SUPPORTED_FORMAT_VERSION = 1

FORMAT_RE = re.compile(r"<!--\s*api-doc-format:\s*(\d+)\s*-->")
DESC_RE = re.compile(r"^# API desc: (.*)$", re.MULTILINE)
METHOD_RE = re.compile(
    r"## Request Type `(GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS|CONNECT|TRACE)`", re.IGNORECASE
)
URL_RE = re.compile(r"## Request URL `([^`]+)`")
JSON_BLOCK_RE = re.compile(r"```json\s*\n(.*?)```", re.DOTALL)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Values the generator writes when a schema has no description
PLACEHOLDER_VALUES = {"string", "0", "true", "false"}

SUFFIX_WORDS = {"api", "apis", "service", "svc", "controller", "resource", "endpoint", "rest"}


def _string_type(value: str) -> str:
    if EMAIL_RE.match(value):
        return "email"
    parts = urlsplit(value)
    if parts.scheme and parts.netloc and parts.scheme.isalpha():
        return "url"
    if DATE_RE.match(value):
        return "date"
    if len(value) >= 10 and ("T" in value or ":" in value or "-" in value):
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
            return "datetime"
        except ValueError:
            pass
    return "string"


def infer_type(value) -> str:
    """Type of an example value, refining strings into email/url/date/datetime."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return _string_type(value)
    if isinstance(value, list):
        return f"array[{infer_type(value[0])}]" if value else "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def humanize_field(name: str) -> str:
    """``createdAt`` -> ``Created At``, ``created_at`` -> ``Created at``."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name).replace("_", " ")
    spaced = " ".join(spaced.split())
    return spaced[:1].upper() + spaced[1:]


def _describe(name: str, value) -> str:
    if (
        isinstance(value, str)
        and value.strip()
        and value not in PLACEHOLDER_VALUES
        and _string_type(value) == "string"
    ):
        return value
    return humanize_field(name)


def flatten_params(data) -> dict[str, FieldInfo]:
    """Flatten an example request body into ``parent.child`` field paths."""
    fields: dict[str, FieldInfo] = {}
    if isinstance(data, dict):
        _flatten(data, "", fields)
    return fields


def _flatten(obj: dict, prefix: str, fields: dict[str, FieldInfo]) -> None:
    for key, value in obj.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            _flatten(value, path, fields)
            continue
        fields[path] = FieldInfo(type=infer_type(value), description=_describe(key, value))
        if isinstance(value, list) and value and isinstance(value[0], dict):
            _flatten(value[0], f"{path}[]", fields)


def _first_json_block(text: str) -> str | None:
    match = JSON_BLOCK_RE.search(text)
    if match:
        return match.group(1).strip()
    return None


def split_sections(content: str) -> list[str]:
    """Split file content at top-level ``# `` headings."""
    sections: list[str] = []
    current: list[str] = []
    for line in content.splitlines(keepends=True):
        if line.startswith("# ") and current:
            sections.append("".join(current))
            current = []
        current.append(line)
    if current:
        sections.append("".join(current))
    return [s for s in sections if s.strip()]


def parse_section(section: str) -> ApiMethod | None:
    """Parse one operation section; returns None for non-operation sections."""
    desc_match = DESC_RE.search(section)
    if not desc_match:
        return None

    method_match = METHOD_RE.search(section)
    url_match = URL_RE.search(section)

    request_params: dict[str, FieldInfo] = {}
    lower = section.lower()
    start = lower.find("## request parameters")
    if start != -1:
        end = lower.find("## response examples", start)
        block = _first_json_block(section[start:end] if end != -1 else section[start:])
        if block is not None:
            try:
                request_params = flatten_params(json.loads(block))
            except ValueError as e:
                logger.warning("Unparseable request example for %r: %s", desc_match.group(1), e)

    response_schema = None
    start = lower.find("## response examples")
    if start != -1:
        block = _first_json_block(section[start:])
        if block is not None:
            try:
                response_schema = json.loads(block)
            except ValueError:
                response_schema = None

    return ApiMethod(
        description=desc_match.group(1).strip(),
        http_method=method_match.group(1).upper() if method_match else "UNKNOWN",
        path=url_match.group(1) if url_match else "Unknown",
        request_params=request_params,
        response_schema=response_schema,
    )


def parse_markdown(content: str, source: str = "<string>") -> list[ApiMethod]:
    """Parse a whole generated file into its methods, in document order."""
    version_match = FORMAT_RE.search(content)
    if version_match and int(version_match.group(1)) > SUPPORTED_FORMAT_VERSION:
        logger.warning(
            "%s uses doc format %s, newer than supported %d; parsing best-effort",
            source, version_match.group(1), SUPPORTED_FORMAT_VERSION,
        )

    methods = []
    for section in split_sections(content):
        try:
            method = parse_section(section)
        except (ValueError, TypeError) as e:
            logger.warning("Skipping malformed section in %s: %s", source, e)
            continue
        if method is not None:
            methods.append(method)
    return methods


def _name_words(text: str) -> list[str]:
    spaced = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", text)
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", spaced)
    return [w.lower() for w in re.split(r"[^A-Za-z0-9]+", spaced) if w]


def extract_service_name(stem: str) -> str:
    """Derive a short lowercase service name from a doc file stem.

    ``hr分组服务-HrGroupApi`` -> ``group``: the tag part after the first ``-``
    is split into words, service-ish suffixes and short prefixes are dropped.
    """
    description, sep, tag = stem.partition("-")
    candidates = [tag, description] if sep else [stem]
    for text in candidates:
        words = [w for w in _name_words(text) if w not in SUFFIX_WORDS]
        while len(words) > 1 and len(words[0]) <= 2:
            words.pop(0)
        if words:
            return "_".join(words)
    return stem.lower()


def parse_service_file(file_path: Path) -> ServiceInfo:
    content = file_path.read_text(encoding="utf-8")
    return ServiceInfo(
        service_name=extract_service_name(file_path.stem),
        service_display_name=file_path.stem,
        methods=parse_markdown(content, source=file_path.name),
    )


def list_doc_files(api_dir: Path) -> list[Path]:
    return sorted(p for p in api_dir.glob("*.md") if p.is_file())


def load_services(api_dir: Path) -> list[ServiceInfo]:
    """Parse every doc file in api_dir; unreadable files are logged and skipped."""
    services = []
    for file_path in list_doc_files(api_dir):
        try:
            services.append(parse_service_file(file_path))
        except (OSError, ValueError) as e:
            logger.warning("Skipping API doc file %s: %s", file_path, e)
            continue
        logger.debug("Parsed %s (%d methods)", file_path.name, len(services[-1].methods))
    return services
