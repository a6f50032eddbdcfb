"""CLI entry point for api-doc-index."""

import logging
from pathlib import Path

import click

from api_doc_index.config import ConfigError, Settings, load_settings
from api_doc_index.generator.refresh import (
    RefreshParams,
    describe_operation,
    refresh_api_docs,
    write_groups,
)
from api_doc_index.index.cache import DocCache
from api_doc_index.index.lookup import ApiLookup, LookupParams
from api_doc_index.index.matcher import ServiceMatcher
from api_doc_index.parser.base import ToolResult
from api_doc_index.parser.swagger import RefreshError, load_openapi_file


class AppContext:
    """Objects built once per process and shared by every command."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.cache = DocCache()
        self.matcher = ServiceMatcher()

    def lookup(self) -> ApiLookup:
        return ApiLookup(self.settings.api_dir, self.cache, self.matcher)


def _emit(ctx: click.Context, result: ToolResult) -> None:
    click.echo(result.llm_content)
    if result.is_error:
        ctx.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "--project-dir",
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
    help="Project directory holding .apidocs/.",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, project_dir: Path):
    """API Doc Index: index Swagger docs as Markdown and look up services."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        settings = load_settings(project_dir.resolve())
    except ConfigError as e:
        raise click.ClickException(str(e))
    ctx.obj = AppContext(settings)


@main.command()
@click.option("--url", default=None, help="Swagger UI, doc.html or api-docs URL. Defaults to settings.")
@click.option("--username", default=None, help="HTTP Basic username.")
@click.option("--password", default=None, help="HTTP Basic password.")
@click.option("--tag", default=None, help="Only regenerate this tag.")
@click.pass_context
def refresh(ctx: click.Context, url: str | None, username: str | None, password: str | None, tag: str | None):
    """Fetch the OpenAPI document and regenerate the Markdown docs."""
    app: AppContext = ctx.obj
    settings = app.settings
    url = url or settings.swagger_url
    if not url:
        raise click.ClickException(
            "No Swagger URL configured. Set swaggerUrl in .apidocs/settings.yaml or pass --url."
        )
    if username is None and password is None:
        username, password = settings.swagger_username, settings.swagger_password

    params = RefreshParams(url=url, username=username or None, password=password or None)
    result = refresh_api_docs(
        params,
        settings.api_dir,
        tag=tag,
        timeout=settings.timeout,
        on_progress=click.echo,
    )
    _emit(ctx, result)


@main.command()
@click.argument("doc_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--tag", default=None, help="Only regenerate this tag.")
@click.pass_context
def generate(ctx: click.Context, doc_path: Path, tag: str | None):
    """Generate the Markdown docs from a local OpenAPI file."""
    app: AppContext = ctx.obj
    try:
        doc = load_openapi_file(doc_path)
    except RefreshError as e:
        raise click.ClickException(str(e))
    result = write_groups(doc, app.settings.api_dir, tag=tag, on_progress=click.echo)
    _emit(ctx, result)


@main.command()
@click.argument("service_name")
@click.option("-k", "--keyword", "operation_keyword", default=None, help="Only methods whose description contains this.")
@click.option("--endpoint-path", default=None, help="Only methods whose path contains this.")
@click.pass_context
def query(ctx: click.Context, service_name: str, operation_keyword: str | None, endpoint_path: str | None):
    """Look up the methods of the service best matching SERVICE_NAME."""
    app: AppContext = ctx.obj
    params = LookupParams(
        service_name=service_name,
        operation_keyword=operation_keyword,
        endpoint_path=endpoint_path,
    )
    _emit(ctx, app.lookup().lookup(params))


@main.command()
@click.pass_context
def services(ctx: click.Context):
    """List the indexed services."""
    app: AppContext = ctx.obj
    api_dir = app.settings.api_dir
    if not api_dir.is_dir():
        raise click.ClickException(
            f"No API documentation directory found at {api_dir}. Run `api-doc-index refresh` first."
        )
    found = app.lookup().services()
    for service in found:
        click.echo(f"{service.service_name}\t{service.service_display_name}\t{len(service.methods)} methods")
    click.echo(f"{len(found)} services in {api_dir}")


@main.command()
@click.argument("url")
@click.option("--username", default=None, help="HTTP Basic username.")
@click.option("--password", default=None, help="HTTP Basic password.")
@click.pass_context
def show(ctx: click.Context, url: str, username: str | None, password: str | None):
    """Print one operation named by a doc.html#/{tag}/{operationId} URL."""
    app: AppContext = ctx.obj
    params = RefreshParams(url=url, username=username, password=password)
    _emit(ctx, describe_operation(params, timeout=app.settings.timeout))
