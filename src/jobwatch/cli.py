"""Command line interface for jobwatch.

Submits import files, tracks jobs with a live progress bar and downloads the
reports of finished jobs.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from . import __version__
from .api_clients.auth_client import MIN_PASSWORD_LENGTH
from .api_clients.errors import APIClientError, AuthError, describe_error
from .client import JobWatchClient
from .config import ClientConfig, load_config
from .remote.exceptions import CredentialStorageError
from .tracking.engine import TrackingState
from .tracking.models import Job

T = TypeVar("T")

console = Console()
logger = logging.getLogger(__name__)


def _on_session_lost(error: AuthError) -> None:
    console.print(f"⚠️  {describe_error(error)}", style="yellow")
    console.print("💡 Run 'jobwatch login' to sign in again", style="dim")


def _config(ctx: click.Context) -> ClientConfig:
    config = ctx.obj.get("config")
    if config is not None:
        return config

    try:
        config = load_config(ctx.obj.get("config_path"))
    except (ValueError, OSError) as e:
        console.print(f"❌ Invalid configuration: {e}", style="red")
        sys.exit(1)

    level = logging.DEBUG if ctx.obj.get("verbose") else config.log_level.upper()
    logging.getLogger("jobwatch").setLevel(level)
    ctx.obj["config"] = config
    return config


def _run(
    ctx: click.Context,
    operation: Callable[[JobWatchClient], Awaitable[T]],
    require_login: bool = True,
) -> T:
    """Run ``operation`` with a client restored from the stored session."""
    config = _config(ctx)
    factory = ctx.obj.get("client_factory", JobWatchClient)

    async def runner() -> T:
        async with factory(config, on_session_lost=_on_session_lost) as client:
            if require_login and not client.is_authenticated():
                console.print("❌ Not logged in", style="red")
                console.print("💡 Run 'jobwatch login' first", style="dim")
                sys.exit(1)
            return await operation(client)

    try:
        return asyncio.run(runner())
    except (APIClientError, CredentialStorageError) as e:
        console.print(f"❌ {describe_error(e)}", style="red")
        if ctx.obj.get("verbose"):
            import traceback

            console.print(traceback.format_exc(), style="dim red")
        sys.exit(1)


def _stats_table(job: Job) -> Table:
    table = Table(title=f"Job {job.job_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", job.status.value)
    table.add_row("Total", str(job.stats.total))
    table.add_row("Processed", str(job.stats.processed))
    table.add_row("Succeeded", str(job.stats.succeeded))
    table.add_row("Failed", str(job.stats.failed))
    if job.finished_at:
        table.add_row("Finished", job.finished_at.isoformat())
    return table


async def _track(client: JobWatchClient, job_id: str) -> Optional[Job]:
    last: dict = {}

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[detail]}"),
        console=console,
        transient=False,
    ) as progress:
        task_id = progress.add_task("queued", total=None, detail="")

        def on_update(job: Job) -> None:
            last["job"] = job
            eta = f" | ETA {job.eta_seconds}s" if job.eta_seconds is not None else ""
            progress.update(
                task_id,
                description=job.status.value,
                total=job.stats.total or None,
                completed=job.stats.processed,
                detail=f"{job.stats.succeeded} ok, {job.stats.failed} failed{eta}",
            )

        def on_error(error: Exception) -> None:
            progress.console.print(f"⚠️  {describe_error(error)}", style="yellow")

        session = client.track(job_id, on_update, on_error)
        try:
            state = await session.wait()
        finally:
            client.untrack(job_id)

    if state is TrackingState.FAILED and session.error is not None:
        raise session.error
    return last.get("job")


@click.group()
@click.option("--config", "config_path", help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="jobwatch")
@click.pass_context
def cli(ctx, config_path: Optional[str], verbose: bool):
    """Submit batch import jobs and track them to completion."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config_path", config_path)
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=logging.WARNING, format="%(levelname)s:%(name)s:%(message)s"
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


@cli.command()
@click.option("--email", "-e", help="Account email")
@click.option("--username", "-u", help="Display name")
@click.option("--company-name", help="Company name")
@click.option("--company-document", help="Company registration number")
@click.option("--password", "-p", help="Account password")
@click.pass_context
def register(
    ctx,
    email: Optional[str],
    username: Optional[str],
    company_name: Optional[str],
    company_document: Optional[str],
    password: Optional[str],
):
    """Create a new account."""
    if not email:
        email = click.prompt("Email", type=str)
    if not username:
        username = click.prompt("Username", type=str)
    if not company_name:
        company_name = click.prompt("Company name", type=str)
    if not company_document:
        company_document = click.prompt("Company document", type=str)
    if not password:
        password = click.prompt("Password", hide_input=True, confirmation_prompt=True)

    fields = (email, username, company_name, company_document, password)
    if not all(field.strip() for field in fields):
        console.print("❌ All fields are required", style="red")
        sys.exit(1)
    if len(password) < MIN_PASSWORD_LENGTH:
        console.print(
            f"❌ Password must be at least {MIN_PASSWORD_LENGTH} characters",
            style="red",
        )
        sys.exit(1)

    async def operation(client: JobWatchClient) -> Any:
        with console.status("📝 Creating account..."):
            return await client.register(
                email.strip(),
                username.strip(),
                company_name.strip(),
                company_document.strip(),
                password,
            )

    _run(ctx, operation, require_login=False)
    console.print(f"✅ Account created for {email.strip()}", style="green")
    console.print("💡 Run 'jobwatch login' to sign in", style="dim")


@cli.command()
@click.option("--email", "-e", help="Account email")
@click.option("--password", "-p", help="Account password")
@click.pass_context
def login(ctx, email: Optional[str], password: Optional[str]):
    """Log in and store the session securely."""
    if not email:
        email = click.prompt("Email", type=str)
    if not password:
        password = click.prompt("Password", hide_input=True)

    if not email.strip() or not password.strip():
        console.print("❌ Email and password cannot be empty", style="red")
        sys.exit(1)

    async def operation(client: JobWatchClient) -> Any:
        with console.status("🔐 Authenticating..."):
            return await client.login(email.strip(), password)

    session = _run(ctx, operation, require_login=False)
    console.print(
        f"✅ Logged in as {session.identity.display_name} ({session.identity.email})",
        style="green",
    )
    if session.identity.org_name:
        console.print(f"🏢 {session.identity.org_name}", style="dim")


@cli.command()
@click.pass_context
def logout(ctx):
    """Log out and remove the stored session."""

    async def operation(client: JobWatchClient) -> bool:
        was_logged_in = client.is_authenticated()
        await client.logout()
        return was_logged_in

    if _run(ctx, operation, require_login=False):
        console.print("✅ Logged out", style="green")
    else:
        console.print("Not logged in", style="dim")


@cli.command()
@click.option(
    "--check", is_flag=True, help="Ask the server whether the session is valid"
)
@click.pass_context
def whoami(ctx, check: bool):
    """Show the logged in user."""

    async def operation(client: JobWatchClient) -> Any:
        valid = await client.validate_session() if check else None
        return client.current_identity(), valid

    identity, valid = _run(ctx, operation)
    console.print(f"👤 {identity.display_name} <{identity.email}>")
    if identity.org_name:
        console.print(f"🏢 {identity.org_name}", style="dim")
    if valid is False:
        console.print("⚠️  The server rejected the stored session", style="yellow")
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--delimiter", help="Column delimiter for CSV files")
@click.option(
    "--date-format", default="YYYY-MM-DD", show_default=True, help="Date format"
)
@click.option("--webhook-url", help="URL notified when the job finishes")
@click.option("--no-track", is_flag=True, help="Return right after submission")
@click.pass_context
def submit(
    ctx,
    file: Path,
    delimiter: Optional[str],
    date_format: str,
    webhook_url: Optional[str],
    no_track: bool,
):
    """Submit FILE (CSV or XLSX) as a new import job."""
    config = _config(ctx)
    console.print(f"📄 Files may contain at most {config.max_rows} rows", style="dim")

    async def operation(client: JobWatchClient) -> Any:
        with console.status(f"📤 Uploading {file.name}..."):
            receipt = await client.submit_job(
                file,
                delimiter=delimiter,
                date_format=date_format,
                webhook_url=webhook_url,
            )
        console.print(f"✅ Job {receipt.job_id} {receipt.status.value}", style="green")
        if receipt.max_rows is not None and receipt.max_rows != config.max_rows:
            console.print(
                f"📄 The service now allows at most {receipt.max_rows} rows per file",
                style="dim",
            )
        if no_track:
            return None
        return await _track(client, receipt.job_id)

    job = _run(ctx, operation)
    if job is not None:
        console.print(_stats_table(job))


@cli.command()
@click.argument("job_id")
@click.pass_context
def track(ctx, job_id: str):
    """Follow JOB_ID until it completes."""
    job = _run(ctx, lambda client: _track(client, job_id))
    if job is not None:
        console.print(_stats_table(job))


@cli.command()
@click.argument("job_id")
@click.option(
    "--kind",
    type=click.Choice(["results", "errors"]),
    default="results",
    show_default=True,
    help="Which report to download",
)
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def download(ctx, job_id: str, kind: str, output: Optional[Path]):
    """Download the results or errors report of JOB_ID."""

    async def operation(client: JobWatchClient) -> bytes:
        if kind == "errors":
            return await client.download_errors(job_id)
        return await client.download_results(job_id)

    content = _run(ctx, operation)
    target = output or Path(f"{job_id}-{kind}.csv")
    target.write_bytes(content)
    console.print(f"✅ Saved {kind} report to {target}", style="green")


@cli.command("change-password")
@click.pass_context
def change_password(ctx):
    """Change the password of the logged in user."""
    current = click.prompt("Current password", hide_input=True)
    new = click.prompt("New password", hide_input=True, confirmation_prompt=True)
    if current == new:
        console.print(
            "❌ The new password must differ from the current one", style="red"
        )
        sys.exit(1)

    _run(ctx, lambda client: client.change_password(current, new))
    console.print("✅ Password changed", style="green")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
