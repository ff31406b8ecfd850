"""Synapse workspace diagnostic CLI.

Inspect configured tenants, check credentials, run ad-hoc SQL and list
workspace artifacts.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from synapse_core.auth.token_cache import SQL_SCOPE, WORKSPACE_SCOPE
from synapse_core.errors.exceptions import WorkspaceError
from synapse_core.logging.setup import setup_logging
from synapse_core.utils.json_serializers import json_serializer
from synapse_workspace.config import WorkspaceSettings
from synapse_workspace.operations import SqlExecutor
from synapse_workspace.rest.client import ARTIFACT_KINDS, WorkspaceRestClient
from synapse_workspace.tenants.registry import TenantRegistry

# cli.py is at src/synapse_workspace/cli.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=json_serializer))


def _load_registry(settings: WorkspaceSettings) -> TenantRegistry:
    return TenantRegistry.load(
        settings.tenants_path,
        expiry_buffer_seconds=settings.token_expiry_buffer_seconds,
    )


async def cmd_tenants(args: argparse.Namespace, settings: WorkspaceSettings) -> int:
    """List registered tenants and their pools."""
    registry = _load_registry(settings)
    try:
        tenants = registry.list_tenants()
        if not tenants:
            print("No tenants configured.")
            return 1
        for tenant in tenants:
            marker = " (default)" if tenant.name == registry.default_tenant else ""
            print(f"{tenant.name}{marker}")
            print(f"  Workspace: {tenant.workspace_name}")
            print(f"  Auth: {tenant.credentials.type.value}")
            for pool in tenant.sql_pools:
                print(f"  Pool: {pool.name} ({pool.type.value})")
        return 0
    finally:
        await registry.aclose()


async def cmd_token_info(args: argparse.Namespace, settings: WorkspaceSettings) -> int:
    """Acquire a token for the tenant and print its diagnostics."""
    registry = _load_registry(settings)
    try:
        scope = SQL_SCOPE if args.sql else WORKSPACE_SCOPE
        cache = registry.get_token_cache(args.tenant, scope)
        valid = await cache.validate_credential()
        _print_json({"tenant": registry.require_tenant(args.tenant).name, "scope": scope, **cache.get_token_info()})
        return 0 if valid else 1
    finally:
        await registry.aclose()


async def cmd_query(args: argparse.Namespace, settings: WorkspaceSettings) -> int:
    """Run one statement and print the result payload."""
    parameters = json.loads(args.params) if args.params else None
    async with SqlExecutor(_load_registry(settings), settings=settings) as executor:
        payload = await executor.execute_payload(
            args.sql,
            database=args.database,
            pool_kind=args.pool_kind,
            tenant=args.tenant,
            parameters=parameters,
            use_cache=not args.no_cache,
        )
        _print_json(payload)
        if args.stats:
            _print_json(executor.get_connection_stats().to_dict())
    return 0 if payload["success"] else 1


async def cmd_stats(args: argparse.Namespace, settings: WorkspaceSettings) -> int:
    """Open a session for each configured pool and print pool statistics."""
    async with SqlExecutor(_load_registry(settings), settings=settings) as executor:
        tenant = executor.registry.require_tenant(args.tenant)
        for pool in tenant.sql_pools:
            rows = await executor.execute_optional(
                "SELECT 1 AS ok", pool_kind=pool.type, tenant=tenant.name
            )
            print(f"{pool.name} ({pool.type.value}): {'ok' if rows else 'unavailable'}")
        _print_json(executor.get_connection_stats().to_dict())
    return 0


async def cmd_artifacts(args: argparse.Namespace, settings: WorkspaceSettings) -> int:
    """List workspace artifacts of one kind."""
    registry = _load_registry(settings)
    try:
        async with WorkspaceRestClient.for_tenant(registry, args.tenant, settings) as client:
            items = await client.list_artifacts(args.kind)
        for item in items:
            print(item.get("name", "<unnamed>"))
        print(f"\nTotal: {len(items)}")
        return 0
    finally:
        await registry.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m synapse_workspace",
        description="Synapse workspace diagnostics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # List configured tenants
    python -m synapse_workspace tenants

    # Check the default tenant's credentials
    python -m synapse_workspace token-info

    # Run a query on the serverless pool
    python -m synapse_workspace query "SELECT TOP 5 * FROM sys.objects" --database master

    # List pipelines of tenant acme
    python -m synapse_workspace artifacts pipelines --tenant acme
        """,
    )
    parser.add_argument("--settings", type=Path, help="Settings YAML (default: config/settings.yaml)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    parser.add_argument("--log-level", default=None, help="Console log level (default: LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_tenants = subparsers.add_parser("tenants", help="List configured tenants")
    parser_tenants.set_defaults(func=cmd_tenants)

    parser_token = subparsers.add_parser("token-info", help="Acquire a token and show its expiry")
    parser_token.add_argument("--tenant", help="Tenant name (default tenant if omitted)")
    parser_token.add_argument("--sql", action="store_true", help="Use the SQL scope instead of the workspace scope")
    parser_token.set_defaults(func=cmd_token_info)

    parser_query = subparsers.add_parser("query", help="Run a SQL statement")
    parser_query.add_argument("sql", help="Statement text (use @name for parameters)")
    parser_query.add_argument("--database", help="Database (default: from the connection string)")
    parser_query.add_argument(
        "--pool-kind",
        choices=["dedicated", "serverless"],
        default="serverless",
        help="Pool kind (default: serverless)",
    )
    parser_query.add_argument("--tenant", help="Tenant name (default tenant if omitted)")
    parser_query.add_argument("--params", help='Parameters as a JSON object, e.g. \'{"id": 7}\'')
    parser_query.add_argument("--no-cache", action="store_true", help="Bypass the result cache")
    parser_query.add_argument("--stats", action="store_true", help="Print pool statistics afterwards")
    parser_query.set_defaults(func=cmd_query)

    parser_stats = subparsers.add_parser("stats", help="Probe each pool and print pool statistics")
    parser_stats.add_argument("--tenant", help="Tenant name (default tenant if omitted)")
    parser_stats.set_defaults(func=cmd_stats)

    parser_artifacts = subparsers.add_parser("artifacts", help="List workspace artifacts")
    parser_artifacts.add_argument("kind", choices=sorted(ARTIFACT_KINDS), help="Artifact kind")
    parser_artifacts.add_argument("--tenant", help="Tenant name (default tenant if omitted)")
    parser_artifacts.set_defaults(func=cmd_artifacts)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    # Load environment variables from .env file before any config access
    load_dotenv(PROJECT_ROOT / ".env")

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = WorkspaceSettings.load(args.settings)
    except WorkspaceError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return 2

    setup_logging(
        json_format=args.json_logs or settings.log_json,
        console_level=args.log_level or settings.log_level,
    )

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.")
        return 130
    except Exception as e:
        logger.error("Error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
