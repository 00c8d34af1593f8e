"""apiauth CLI - sign requests, inspect canonical strings and run the demo server."""

import asyncio
import json
import sys
import time
from collections.abc import Callable, Coroutine
from functools import wraps
from pathlib import Path
from typing import Any, ParamSpec, TypeVar, cast

import click
from rich.console import Console
from rich.table import Table

from apiauth.client.client import ApiAuthClient, ApiAuthClientError
from apiauth.common.settings import Settings
from apiauth.hmac.canonical import CanonicalRequestBuilder, CanonicalRequestError
from apiauth.hmac.digest import body_digest_header
from apiauth.hmac.headers import (
    CONTENT_MD5_HEADER,
    CONTENT_TYPE_HEADER,
    DATE_HEADER,
    http_date_from_timestamp,
    parse_http_date,
)
from apiauth.hmac.models import HttpRequest
from apiauth.hmac.secrets import (
    SecretProvider,
    StaticSecretProvider,
    derive_secret_from_password,
    provider_from_settings,
)
from apiauth.hmac.signer import RequestSigner, SigningError

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    @wraps(f)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _load_config(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    config_path = Path(path).expanduser()
    if not config_path.exists():
        console.print(f"[red]Config not found: {config_path}[/red]")
        sys.exit(1)

    data = json.loads(config_path.read_text(encoding="utf-8"))
    if isinstance(data, dict) and isinstance(data.get("cli"), dict):
        return cast(dict[str, Any], data["cli"])
    return cast(dict[str, Any], data) if isinstance(data, dict) else {}


def _secret_provider(ctx: click.Context) -> SecretProvider:
    secret = ctx.obj.get("secret")
    if secret:
        return StaticSecretProvider({ctx.obj["username"]: secret})
    return provider_from_settings(ctx.obj["settings"])


def _require_username(ctx: click.Context) -> str:
    username = ctx.obj.get("username")
    if not username:
        console.print("[red]A username is required (--username or config)[/red]")
        sys.exit(1)
    return cast(str, username)


def _fixed_clock(date: str | None) -> Callable[[], float]:
    if not date:
        return time.time
    parsed = parse_http_date(date)
    if parsed is None:
        console.print(f"[red]Not an RFC-1123 date: {date}[/red]")
        sys.exit(1)
    timestamp = parsed.timestamp()
    return lambda: timestamp


@click.group()
@click.option("--username", "-u", default=None, help="Principal to sign requests as")
@click.option("--secret", default=None, help="Shared secret (defaults to APIAUTH_SECRETS)")
@click.option("--base-url", default=None, help="API base URL")
@click.option(
    "--config",
    type=click.Path(exists=False, dir_okay=False),
    help="Path to JSON CLI config (optional top-level 'cli' section)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    username: str | None,
    secret: str | None,
    base_url: str | None,
    config: str | None,
) -> None:
    """apiauth CLI - HMAC request signing tools."""
    config_data = _load_config(config)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = Settings()
    ctx.obj["username"] = username or config_data.get("username")
    ctx.obj["secret"] = secret or config_data.get("secret")
    ctx.obj["base_url"] = (base_url or config_data.get("base_url") or "http://localhost:8080").rstrip("/")


@cli.command("canonical")
@click.option("--method", "-X", default="GET", help="HTTP method")
@click.option("--url", required=True, help="Absolute request URL")
@click.option("--date", default=None, help="RFC-1123 date (defaults to now)")
@click.option("--data", "-d", default=None, help="Request body")
@click.option("--content-type", default="application/json", help="Body media type")
@click.pass_context
def canonical(
    ctx: click.Context,
    method: str,
    url: str,
    date: str | None,
    data: str | None,
    content_type: str,
) -> None:
    """Print the canonical string a request would be signed over."""
    username = _require_username(ctx)
    settings: Settings = ctx.obj["settings"]
    request = HttpRequest.create(method, url, body=data)
    request.headers[settings.username_header] = username
    request.headers[DATE_HEADER] = date or http_date_from_timestamp(time.time())
    if request.has_body:
        request.headers[CONTENT_TYPE_HEADER] = content_type
        request.headers[CONTENT_MD5_HEADER] = body_digest_header(request.body) or ""

    try:
        representation = CanonicalRequestBuilder.from_settings(settings).build(request)
    except CanonicalRequestError as exc:
        console.print(f"[red]{exc.reason.value}: {exc.message}[/red]")
        sys.exit(1)

    click.echo(representation)


@cli.command("sign")
@click.option("--method", "-X", default="GET", help="HTTP method")
@click.option("--url", required=True, help="Absolute request URL")
@click.option("--date", default=None, help="RFC-1123 date to sign with (defaults to now)")
@click.option("--data", "-d", default=None, help="Request body")
@click.option("--content-type", default="application/json", help="Body media type")
@click.option("--table", "as_table", is_flag=True, help="Render headers as a table")
@click.pass_context
@async_command
async def sign_request(
    ctx: click.Context,
    method: str,
    url: str,
    date: str | None,
    data: str | None,
    content_type: str,
    as_table: bool,
) -> None:
    """Print the headers that authenticate a request (curl-style by default)."""
    username = _require_username(ctx)
    request = HttpRequest.create(method, url, body=data)
    if request.has_body:
        request.headers[CONTENT_TYPE_HEADER] = content_type

    signer = RequestSigner(
        username,
        _secret_provider(ctx),
        settings=ctx.obj["settings"],
        clock=_fixed_clock(date),
    )
    try:
        await signer.sign(request)
    except SigningError as exc:
        console.print(f"[red]Signing failed: {exc}[/red]")
        sys.exit(1)

    if as_table:
        table = Table(title=f"{request.method} {request.url}")
        table.add_column("Header", style="cyan")
        table.add_column("Value", style="green")
        for name, value in request.headers.items():
            table.add_row(name, value)
        console.print(table)
        return

    for name, value in request.headers.items():
        click.echo(f"{name}: {value}")


@cli.command("request")
@click.argument("method")
@click.argument("path")
@click.option("--data", "-d", default=None, help="Request body")
@click.option("--content-type", default=None, help="Body media type")
@click.option("--no-verify-digest", is_flag=True, help="Skip response Content-MD5 verification")
@click.pass_context
@async_command
async def send_request(
    ctx: click.Context,
    method: str,
    path: str,
    data: str | None,
    content_type: str | None,
    no_verify_digest: bool,
) -> None:
    """Send a signed request and print the response."""
    username = _require_username(ctx)
    client = ApiAuthClient(
        ctx.obj["base_url"],
        username,
        _secret_provider(ctx),
        settings=ctx.obj["settings"],
        verify_response_digest=not no_verify_digest,
    )
    async with client:
        try:
            response = await client.request(
                method,
                path,
                data=data,
                content_type=content_type,
            )
        except SigningError as exc:
            console.print(f"[red]Signing failed: {exc}[/red]")
            sys.exit(1)
        except ApiAuthClientError as exc:
            console.print(f"[red]Error: {exc}[/red]")
            sys.exit(1)

    console.print(f"[green]{response.status}[/green]")
    click.echo(response.text)


@cli.command("hash-password")
@click.argument("password")
def hash_password(password: str) -> None:
    """Print the secret derived from a password (base64 SHA-1)."""
    click.echo(derive_secret_from_password(password))


@cli.command("serve")
def serve() -> None:
    """Run the demo API server."""
    from apiauth.server.main import main

    main()


if __name__ == "__main__":
    cli()
