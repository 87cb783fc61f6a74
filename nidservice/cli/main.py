"""nid-service CLI: serve the API, manage the allowlist and run one-off checks.

Output is JSON by default so commands compose with jq.

Examples:
    nid-service init-db
    nid-service allow-ip add 10.0.0.5 "Billing System"
    nid-service allow-ip list --format table
    nid-service stats
    nid-service verify 1234567890 1990-01-15 "John Doe"
"""

import asyncio
from typing import Optional

import httpx
import typer
from pydantic import ValidationError

from nidservice.cli.output import (
    EXIT_UNAVAILABLE,
    OutputFormat,
    output,
    output_error,
)
from nidservice.config import DEFAULT_ALLOWED_IPS, SERVICE_VERSION

app = typer.Typer(
    name="nid-service",
    help="NID Verification Service tools.",
    no_args_is_help=True,
)

allow_ip_app = typer.Typer(
    name="allow-ip",
    help="Manage the IP allowlist.",
    no_args_is_help=True,
)
app.add_typer(allow_ip_app, name="allow-ip")

# Registry transport for `verify`; None uses the network. Tests substitute a mock.
_transport: Optional[httpx.AsyncBaseTransport] = None


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"nid-service version {SERVICE_VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """NID Verification Service tools."""


@app.command("serve")
def serve_cmd() -> None:
    """Run the HTTP API with uvicorn."""
    from nidservice.main import main as run_server

    run_server()


@app.command("init-db")
def init_db_cmd(
    seed: bool = typer.Option(True, "--seed/--no-seed", help="Seed default allowlist entries"),
) -> None:
    """Create tables and seed the default allowlist."""
    from nidservice.db.repository import seed_allowed_ips
    from nidservice.db.session import init_database

    init_database()
    added = seed_allowed_ips(DEFAULT_ALLOWED_IPS) if seed else 0
    output({"initialized": True, "seeded": added})


@allow_ip_app.command("add")
def allow_ip_add_cmd(
    ip_address: str = typer.Argument(..., help="Client IP address"),
    system_name: str = typer.Argument(..., help="Name of the calling system"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
) -> None:
    """Allowlist an IP address (reactivates a removed entry)."""
    from nidservice.db.repository import add_allowed_ip
    from nidservice.db.session import init_database

    init_database()
    output(add_allowed_ip(ip_address, system_name, description))


@allow_ip_app.command("remove")
def allow_ip_remove_cmd(
    ip_address: str = typer.Argument(..., help="Client IP address"),
) -> None:
    """Deactivate an allowlist entry."""
    from nidservice.db.repository import deactivate_allowed_ip
    from nidservice.db.session import init_database

    init_database()
    if not deactivate_allowed_ip(ip_address):
        output_error("NOT_FOUND", f"{ip_address} is not in the allowlist")
    output({"removed": ip_address})


@allow_ip_app.command("list")
def allow_ip_list_cmd(
    include_inactive: bool = typer.Option(False, "--all", help="Include removed entries"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f"),
) -> None:
    """List allowlisted IP addresses."""
    from nidservice.db.repository import list_allowed_ips
    from nidservice.db.session import init_database

    init_database()
    output(
        list_allowed_ips(include_inactive=include_inactive),
        format=format,
        table_columns=["ip_address", "system_name", "is_active", "description"],
        table_title="Allowed IPs",
    )


@app.command("stats")
def stats_cmd(
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f"),
) -> None:
    """Print request statistics from the audit log."""
    from nidservice.db.repository import request_log_statistics
    from nidservice.db.session import init_database

    init_database()
    output(request_log_statistics(), format=format, table_title="Request statistics")


async def _verify_once(request, transport: Optional[httpx.AsyncBaseTransport] = None):
    from nidservice.registry.client import build_verification_client

    async with httpx.AsyncClient(transport=transport, follow_redirects=True) as http:
        client = build_verification_client(http)
        return await client.verify(request)


@app.command("verify")
def verify_cmd(
    nid: str = typer.Argument(..., help="10 or 17 digit NID"),
    date_of_birth: str = typer.Argument(..., help="YYYY-MM-DD"),
    name_en: str = typer.Argument(..., help="Name in English"),
    format: OutputFormat = typer.Option(OutputFormat.json, "--format", "-f"),
) -> None:
    """Verify one NID against the registry and print the result."""
    from nidservice.api.errors import registry_error_status
    from nidservice.api.schemas import VerifyRequestBody, validation_details
    from nidservice.registry.exceptions import RegistryError

    try:
        body = VerifyRequestBody(nid=nid, dateOfBirth=date_of_birth, nameEn=name_en)
    except ValidationError as e:
        output_error(
            "VALIDATION_ERROR",
            "Validation failed",
            details={"fields": validation_details(e)},
        )
        return

    request = body.to_verification_request()
    try:
        result = asyncio.run(_verify_once(request, transport=_transport))
    except RegistryError as e:
        _, code = registry_error_status(e)
        output_error(code, str(e), exit_code=EXIT_UNAVAILABLE)
        return

    output(
        {
            "nid": request.id,
            "nidType": request.channel.label,
            "verified": result.verified,
            "verificationDetails": {
                "nameEn": result.field_match.name_en,
                "dateOfBirth": result.field_match.date_of_birth,
            },
            "personDetails": result.person_details,
            "message": result.advisory_message,
        },
        format=format,
    )
