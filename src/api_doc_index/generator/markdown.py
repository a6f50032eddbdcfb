"""Markdown rendering of OpenAPI operations.

The output format is read back by ``api_doc_index.parser.markdown``; bump
FORMAT_VERSION whenever the layout below changes.
"""

import json

from api_doc_index.parser.swagger import (
    Operation,
    OperationGroup,
    content_schema,
    generate_example,
    resolve_ref,
)

FORMAT_VERSION = 1
FORMAT_MARKER = f"<!-- api-doc-format: {FORMAT_VERSION} -->"


def _json_block(value) -> str:
    return "```json\n" + json.dumps(value, indent=2, ensure_ascii=False) + "\n```\n"


def render_request_url(operation: Operation) -> str:
    """Path with query parameters appended as ``name=description`` pairs."""
    pairs = []
    for param in operation.spec.get("parameters") or []:
        if not isinstance(param, dict) or param.get("in") != "query":
            continue
        name = param.get("name") or "N/A"
        description = (param.get("description") or "").replace("\n", " ") or "No description"
        # a backtick would close the Request URL code span
        pairs.append(f"{name}={description}".replace("`", "'"))
    if not pairs:
        return operation.path
    return operation.path + "?" + "&".join(pairs)


def render_operation(operation: Operation, schemas: dict) -> str:
    spec = operation.spec
    summary = spec.get("summary") or spec.get("description") or "No description provided"
    summary = " ".join(summary.splitlines())

    lines = [
        f"# API desc: {summary}\n",
        f"## Request Type `{operation.method.upper()}`\n",
        f"## Request URL `{render_request_url(operation)}`\n",
        "## Request Parameters\n",
    ]

    body = spec.get("requestBody")
    if isinstance(body, dict):
        schema = resolve_ref(content_schema(body.get("content")), schemas)
        if isinstance(schema, dict) and (schema.get("properties") or schema.get("allOf")):
            lines.append(_json_block(generate_example(schema, schemas)))

    lines.append("\n## Response Examples\n")
    responses = spec.get("responses")
    if not responses:
        lines.append("No response information provided.\n")
    else:
        for response in responses.values():
            schema = None
            if isinstance(response, dict):
                # OpenAPI 3 nests the schema under content, Swagger 2 does not
                if "content" in response:
                    schema = content_schema(response["content"])
                else:
                    schema = response.get("schema")
            if schema:
                lines.append(_json_block(generate_example(schema, schemas)))
            else:
                lines.append("No schema provided.\n")

    return "".join(lines)


def render_group(group: OperationGroup, schemas: dict) -> str:
    """Full file content for one tag group."""
    title = " ".join(group.description.splitlines())
    parts = [f"{FORMAT_MARKER}\n", f"# {title} API Documentation\n\n"]
    for operation in group.operations:
        parts.append(render_operation(operation, schemas))
        parts.append("\n")
    return "".join(parts)
