"""CLI commands for mcp-builder."""

import asyncio
import json
import logging

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import BuilderConfig
from .errors import BuilderError, ServerNotFoundError
from .explorer import parse_repo_url
from .gateway import ToolGateway, serve_stdio
from .models import DocsSource, GeneratedServer, RepoSource, ScanResult, SpecSource, TextSource
from .pipeline import BuilderPipeline
from .pipeline.versioning import calculate_diff
from .security import encrypt_secret, generate_key

console = Console()

DEFAULT_STORE_DIR = ".mcp-builder"

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "dim",
}

STATUS_STYLES = {
    "deployed": "green",
    "draft": "cyan",
    "failed": "red",
}


def _run(coro):
    """Run a coroutine, turning builder errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except BuilderError as e:
        console.print(f"[red]{e.kind}: {e.message}[/red]")
        raise SystemExit(1)


async def _resolve(pipeline: BuilderPipeline, ref: str) -> GeneratedServer:
    store = pipeline.store
    try:
        return await store.get(ref)
    except ServerNotFoundError:
        server = await store.find_by_slug(ref)
        if server is None:
            raise
        return server


def _print_scan(scan: ScanResult) -> None:
    colour = "green" if scan.passed else "red"
    console.print(f"Security score: [{colour}]{scan.score}/100[/{colour}] ({'passed' if scan.passed else 'failed'})")
    if not scan.issues:
        return
    table = Table(title=f"Issues ({len(scan.issues)})")
    table.add_column("Severity")
    table.add_column("Type", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Message")
    for issue in scan.issues:
        style = SEVERITY_STYLES.get(issue.severity.value, "")
        location = str(issue.line) if issue.line else "-"
        if issue.file:
            location = f"{issue.file}:{location}"
        table.add_row(f"[{style}]{issue.severity.value}[/{style}]", issue.type.value, location, issue.message)
    console.print(table)


def _print_server(server: GeneratedServer) -> None:
    console.print(f"\n[bold]{server.name}[/bold] ({server.slug}) v{server.version}")
    console.print(f"  ID:     {server.id}")
    console.print(f"  Status: {server.status.value}")
    if server.deployment_url:
        console.print(f"  URL:    {server.deployment_url}")
    if server.error:
        console.print(f"  [red]Error: {server.error}[/red]")
    if server.tools:
        table = Table(title=f"Tools ({len(server.tools)})")
        table.add_column("Name", style="cyan")
        table.add_column("Description")
        for tool in server.tools:
            table.add_row(tool.name, tool.description)
        console.print(table)
    if server.scan_result:
        _print_scan(server.scan_result)


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(exists=True), help="YAML config file")
@click.option("--store-dir", default=None, help="Directory for server records")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, store_dir: str | None, verbose: bool) -> None:
    """mcp-builder - Turn API descriptions into deployed MCP tool servers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        config = BuilderConfig.from_env(config_path)
        if store_dir or not config.store_dir:
            config = config.model_copy(update={"store_dir": store_dir or DEFAULT_STORE_DIR})
        ctx.obj["config"] = config
    if "pipeline" not in ctx.obj:
        ctx.obj["pipeline"] = BuilderPipeline.from_config(ctx.obj["config"])


@main.command()
@click.option("--spec", "spec_url", help="URL of an OpenAPI/Swagger document")
@click.option("--docs", "docs_url", help="URL of an API documentation page")
@click.option("--repo", "repo_url", help="GitHub repository URL")
@click.option("--text", "text_file", type=click.File("r"), help="File with pasted API text ('-' for stdin)")
@click.option("--name", help="Name for text input")
@click.option("--owner", default="local", help="Owner id")
@click.option("--service", help="External API service whose stored key is injected at deploy")
@click.pass_context
def generate(
    ctx: click.Context,
    spec_url: str | None,
    docs_url: str | None,
    repo_url: str | None,
    text_file,
    name: str | None,
    owner: str,
    service: str | None,
) -> None:
    """Generate a draft MCP server from one API source."""
    chosen = [v for v in (spec_url, docs_url, repo_url, text_file) if v]
    if len(chosen) != 1:
        console.print("[red]Provide exactly one of --spec, --docs, --repo or --text[/red]")
        raise SystemExit(1)

    if spec_url:
        descriptor = SpecSource(url=spec_url)
    elif docs_url:
        descriptor = DocsSource(url=docs_url)
    elif repo_url:
        descriptor = RepoSource(url=repo_url)
    else:
        descriptor = TextSource(content=text_file.read(), name=name)

    pipeline: BuilderPipeline = ctx.obj["pipeline"]
    console.print(f"[bold]Generating from {descriptor.kind} source...[/bold]")
    server = _run(pipeline.create_async(descriptor, owner_id=owner, external_api_service=service))
    _print_server(server)


@main.command()
@click.argument("repo_url")
@click.pass_context
def explore(ctx: click.Context, repo_url: str) -> None:
    """Show which repository files would be sent for analysis."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]
    explorer = pipeline.normalizer.explorer
    try:
        owner, repo = parse_repo_url(repo_url)
    except BuilderError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)

    result = _run(explorer.explore_async(owner, repo))

    table = Table(title=f"{owner}/{repo} ({len(result.files)} files, {result.total_bytes} bytes)")
    table.add_column("Path", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Bytes", justify="right")
    for f in result.files:
        size = f"{f.size}{' (truncated)' if f.truncated else ''}"
        table.add_row(f.path, str(f.score), size)
    console.print(table)
    for warning in result.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")


@main.command()
@click.argument("server_ref")
@click.option("--actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def scan(ctx: click.Context, server_ref: str, actor: str) -> None:
    """Re-scan a server's code."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]

    async def run() -> ScanResult:
        server = await _resolve(pipeline, server_ref)
        return await pipeline.scan_async(server.id, actor)

    _print_scan(_run(run()))


@main.command()
@click.argument("server_ref")
@click.option("--actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def sanitize(ctx: click.Context, server_ref: str, actor: str) -> None:
    """Redact lines with critical findings from a draft."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]

    async def run() -> GeneratedServer:
        server = await _resolve(pipeline, server_ref)
        return await pipeline.sanitize_async(server.id, actor)

    server = _run(run())
    console.print(f"[green]Sanitized {server.slug} (now v{server.version})[/green]")
    if server.scan_result:
        _print_scan(server.scan_result)


@main.command()
@click.argument("server_ref")
@click.option("--actor", default="cli", help="Reviewer name")
@click.pass_context
def approve(ctx: click.Context, server_ref: str, actor: str) -> None:
    """Approve a draft whose scan passed."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]

    async def run() -> ScanResult:
        server = await _resolve(pipeline, server_ref)
        return await pipeline.approve_async(server.id, actor)

    scan_result = _run(run())
    console.print(f"[green]Approved (score {scan_result.score}/100)[/green]")


@main.command()
@click.argument("server_ref")
@click.option("--actor", default="cli", help="Reviewer name")
@click.option("--reason", default="", help="Reason for rejection")
@click.pass_context
def reject(ctx: click.Context, server_ref: str, actor: str, reason: str) -> None:
    """Reject a draft."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]

    async def run() -> GeneratedServer:
        server = await _resolve(pipeline, server_ref)
        return await pipeline.reject_async(server.id, actor, reason)

    server = _run(run())
    console.print(f"[yellow]Rejected {server.slug}[/yellow]")


@main.command()
@click.argument("server_ref")
@click.option("--actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def deploy(ctx: click.Context, server_ref: str, actor: str) -> None:
    """Deploy a draft whose latest scan passed."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]

    async def run() -> GeneratedServer:
        server = await _resolve(pipeline, server_ref)
        console.print(f"[bold]Deploying {server.slug}...[/bold]")
        return await pipeline.deploy_async(server.id, actor)

    server = _run(run())
    console.print(f"[green]Deployed {server.slug}: {server.deployment_url}[/green]")


@main.command("list")
@click.option("--owner", help="Filter by owner")
@click.option("-f", "--format", "fmt", default="table", help="Output format (table, json, yaml)")
@click.pass_context
def list_servers(ctx: click.Context, owner: str | None, fmt: str) -> None:
    """List generated servers."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]
    servers = _run(pipeline.store.list(owner))

    if not servers:
        console.print("[yellow]No servers found.[/yellow]")
        return

    data = [
        {
            "id": s.id,
            "slug": s.slug,
            "status": s.status.value,
            "version": s.version,
            "tools": len(s.tools),
            "score": s.scan_result.score if s.scan_result else None,
            "url": s.deployment_url,
        }
        for s in servers
    ]
    if fmt == "json":
        console.print(json.dumps(data, indent=2))
    elif fmt == "yaml":
        console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        table = Table(title=f"Servers ({len(servers)} total)")
        table.add_column("Slug", style="cyan")
        table.add_column("Status")
        table.add_column("Ver", justify="right")
        table.add_column("Tools", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("URL")
        for row in data:
            style = STATUS_STYLES.get(row["status"], "yellow")
            table.add_row(
                row["slug"],
                f"[{style}]{row['status']}[/{style}]",
                str(row["version"]),
                str(row["tools"]),
                "-" if row["score"] is None else str(row["score"]),
                row["url"] or "",
            )
        console.print(table)


@main.command()
@click.argument("server_ref")
@click.option("--restore", "restore_to", type=int, help="Restore this version as a new draft")
@click.pass_context
def versions(ctx: click.Context, server_ref: str, restore_to: int | None) -> None:
    """Show version history, or restore an older version."""
    pipeline: BuilderPipeline = ctx.obj["pipeline"]

    async def run():
        server = await _resolve(pipeline, server_ref)
        if restore_to is not None:
            return await pipeline.restore_version_async(server.id, restore_to), []
        return server, await pipeline.list_versions_async(server.id)

    server, history = _run(run())
    if restore_to is not None:
        console.print(f"[green]Restored version {restore_to} of {server.slug} as v{server.version}[/green]")
        return

    table = Table(title=f"{server.slug} versions")
    table.add_column("Version", justify="right")
    table.add_column("Tools", justify="right")
    table.add_column("Change")
    table.add_column("+/-", justify="right")
    for i, snapshot in enumerate(history):
        older = history[i + 1] if i + 1 < len(history) else None
        delta = "-"
        if older is not None:
            diff = calculate_diff(older.code, snapshot.code)
            delta = f"+{diff['lines_added']}/-{diff['lines_removed']}"
        marker = " (current)" if i == 0 else ""
        table.add_row(f"{snapshot.version}{marker}", str(len(snapshot.tools)), snapshot.change_description or "", delta)
    console.print(table)


@main.command("encrypt-key")
@click.option("--generate", "new_key", is_flag=True, help="Print a new encryption key and exit")
@click.pass_context
def encrypt_key(ctx: click.Context, new_key: bool) -> None:
    """Encrypt an external API key for the external_api_keys config."""
    if new_key:
        click.echo(generate_key())
        return
    config: BuilderConfig = ctx.obj["config"]
    if not config.encryption_key:
        console.print("[red]Set MCP_BUILDER_ENCRYPTION_KEY (see --generate)[/red]")
        raise SystemExit(1)
    value = click.prompt("API key", hide_input=True)
    try:
        click.echo(encrypt_secret(value, config.encryption_key))
    except BuilderError as e:
        console.print(f"[red]{e.kind}: {e.message}[/red]")
        raise SystemExit(1)


@main.command("gateway-serve")
@click.pass_context
def gateway_serve(ctx: click.Context) -> None:
    """Serve all deployed tools as one MCP server over stdio."""
    config: BuilderConfig = ctx.obj["config"]
    pipeline: BuilderPipeline = ctx.obj["pipeline"]
    gateway = ToolGateway(pipeline.store, secret=config.gateway_secret, timeout=config.request_timeout)
    asyncio.run(serve_stdio(gateway, config.gateway_secret))


if __name__ == "__main__":
    main()
