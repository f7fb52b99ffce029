"""CLI subcommands for DRIPGATE operations.

Provides command-line interface for:
- Configuration checks (env settings and the distributors file)
- Claim ledger setup and inspection
- Payout wallet inspection
- Partner faucet API administration (distributors, rules, claim codes)
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from decimal import Decimal
from typing import Any

import aiohttp

from dripgate.config import DripgateConfig
from dripgate.core.addresses import normalize_address, validate_address
from dripgate.core.wallet import PayoutWallet
from dripgate.errors import ConfigurationError
from dripgate.faucet.definitions import load_definitions
from dripgate.faucet.ledger import ClaimStore, MemoryClaimStore
from dripgate.faucet.service import FaucetService, create_store
from dripgate.faucet.upstream import (
    ClaimSubmission,
    FaucetApiClient,
    PartnerApiError,
    RuleKey,
    parse_rule,
)


def _add_key_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--distributor",
        type=str,
        default=None,
        help="Use the API key of this configured distributor",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="dripgate",
        description="DRIPGATE - policy gate in front of a partner token faucet",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Start the DRIPGATE service")

    config_parser = subparsers.add_parser("config", help="Configuration operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("check", help="Validate settings and build every distributor")

    db_parser = subparsers.add_parser("db", help="Claim ledger operations")
    db_sub = db_parser.add_subparsers(dest="db_command")
    db_sub.add_parser("init", help="Create the claims table and indexes")

    claims_parser = subparsers.add_parser("claims", help="Claim history")
    claims_sub = claims_parser.add_subparsers(dest="claims_command")
    claims_sub.add_parser("stats", help="Show ledger totals")
    list_parser = claims_sub.add_parser("list", help="List claims for a wallet")
    list_parser.add_argument("wallet", type=str, help="Wallet address")
    list_parser.add_argument("--distributor", type=str, default=None, help="Distributor id")

    wallet_parser = subparsers.add_parser("wallet", help="Payout wallet operations")
    wallet_sub = wallet_parser.add_subparsers(dest="wallet_command")
    wallet_sub.add_parser("address", help="Show payout wallet address")

    upstream_parser = subparsers.add_parser("upstream", help="Partner faucet API operations")
    upstream_sub = upstream_parser.add_subparsers(dest="upstream_command")

    dist_parser = upstream_sub.add_parser("distributors", help="Upstream distributors")
    dist_sub = dist_parser.add_subparsers(dest="distributors_command")
    dist_sub.add_parser("list", help="List upstream distributors")
    dist_create = dist_sub.add_parser("create", help="Create an upstream distributor")
    dist_create.add_argument("name", type=str, help="Distributor name")
    dist_create.add_argument("--rps", type=int, default=None, help="Requests per second")
    dist_delete = dist_sub.add_parser("delete", help="Delete an upstream distributor")
    dist_delete.add_argument("distributor_id", type=str, help="Upstream distributor id")

    rules_parser = upstream_sub.add_parser("rules", help="Distributor drip rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command")
    rules_list = rules_sub.add_parser("list", help="Show rules of a distributor")
    rules_list.add_argument("distributor_id", type=str, help="Upstream distributor id")
    rules_set = rules_sub.add_parser("set", help="Create or update one rule")
    rules_set.add_argument("distributor_id", type=str, help="Upstream distributor id")
    rules_set.add_argument("key", type=str, help="Rule key, e.g. DRIP_INTERVAL")
    rules_set.add_argument("value", type=str, help="Rule value")
    rules_delete = rules_sub.add_parser("delete", help="Delete one rule")
    rules_delete.add_argument("distributor_id", type=str, help="Upstream distributor id")
    rules_delete.add_argument("rule_uuid", type=str, help="Rule uuid")
    rules_sync = rules_sub.add_parser("sync", help="Replace all rules with the given set")
    rules_sync.add_argument("distributor_id", type=str, help="Upstream distributor id")
    rules_sync.add_argument("rules", nargs="+", metavar="KEY=VALUE", help="Desired rules")

    global_parser = upstream_sub.add_parser("global-rules", help="Partner-wide drip rules")
    global_sub = global_parser.add_subparsers(dest="global_rules_command")
    global_set = global_sub.add_parser("set", help="Create or update a global rule")
    global_set.add_argument("key", type=str, help="Rule key")
    global_set.add_argument("value", type=str, help="Rule value")
    global_delete = global_sub.add_parser("delete", help="Delete a global rule")
    global_delete.add_argument("rule_uuid", type=str, help="Rule uuid")

    tx_parser = upstream_sub.add_parser("tx-status", help="Status of a submitted claim")
    tx_parser.add_argument("transaction_id", type=str, help="Upstream transaction id")
    _add_key_option(tx_parser)

    can_parser = upstream_sub.add_parser("can-claim", help="Check eligibility upstream")
    can_parser.add_argument("address", type=str, help="Wallet address")
    _add_key_option(can_parser)
    can_parser.add_argument("--ip", type=str, default="127.0.0.1", help="Client IP to report")
    can_parser.add_argument("--visitor-id", type=str, default="dripgate-cli", help="Visitor id")

    codes_parser = upstream_sub.add_parser("codes", help="Claim codes")
    codes_sub = codes_parser.add_subparsers(dest="codes_command")
    codes_list = codes_sub.add_parser("list", help="List claim codes")
    _add_key_option(codes_list)
    codes_create = codes_sub.add_parser("create", help="Create claim codes")
    codes_create.add_argument("count", type=int, help="Number of codes (max 100)")
    _add_key_option(codes_create)

    return parser


def _json_default(obj: Any) -> str:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


class CLIContext:
    """Shared context for CLI commands."""

    def __init__(self, config: DripgateConfig, json_output: bool = False):
        self.config = config
        self.json_output = json_output

    def create_store(self) -> ClaimStore:
        return create_store(self.config)

    def output(self, data: dict) -> None:
        """Output data in the appropriate format."""
        if self.json_output:
            print(json.dumps(data, default=_json_default, indent=2))
        else:
            self._print_formatted(data)

    def _print_formatted(self, data: dict, indent: int = 0) -> None:
        prefix = "  " * indent
        for key, value in data.items():
            if isinstance(value, dict):
                print(f"{prefix}{key}:")
                self._print_formatted(value, indent + 1)
            elif isinstance(value, list):
                print(f"{prefix}{key}:")
                for item in value:
                    if isinstance(item, dict):
                        self._print_formatted(item, indent + 1)
                        print()
                    else:
                        print(f"{prefix}  - {item}")
            else:
                print(f"{prefix}{key}: {value}")


# Config commands


async def _check_distributors(ctx: CLIContext) -> list[dict[str, Any]]:
    definitions = load_definitions(ctx.config.distributors_file)
    # memory store: the check must not touch the database
    service = FaucetService(ctx.config, definitions, store=MemoryClaimStore())
    await service.start()
    try:
        return [d.health() for d in service.distributors]
    finally:
        await service.stop()


def cmd_config_check(ctx: CLIContext) -> int:
    """Validate settings and the distributors file."""
    try:
        distributors = asyncio.run(_check_distributors(ctx))
    except ConfigurationError as e:
        ctx.output({"valid": False, "error": str(e)})
        return 1
    ctx.output(
        {
            "valid": True,
            "distributors_file": ctx.config.distributors_file,
            "database": "configured" if ctx.config.database_url else "in-memory",
            "distributors": distributors,
        }
    )
    return 0


# Database commands


async def _init_db(store: ClaimStore) -> None:
    try:
        await store.initialize()
    finally:
        await store.close()


def cmd_db_init(ctx: CLIContext) -> int:
    """Create the claims table."""
    if not ctx.config.database_url:
        ctx.output({"error": "DATABASE_URL is not set"})
        return 1
    try:
        asyncio.run(_init_db(ctx.create_store()))
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1
    ctx.output({"status": "ok", "table": "claims"})
    return 0


# Claims commands


async def _with_store(ctx: CLIContext, fn):
    store = ctx.create_store()
    try:
        return await fn(store)
    finally:
        await store.close()


def cmd_claims_stats(ctx: CLIContext) -> int:
    """Show ledger totals."""
    try:
        stats = asyncio.run(_with_store(ctx, lambda store: store.stats()))
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1
    ctx.output(
        {
            "total_claims": stats.total_claims,
            "unique_wallets": stats.unique_wallets,
            "total_amount": stats.total_amount,
            "claims_24h": stats.claims_24h,
        }
    )
    return 0


def cmd_claims_list(ctx: CLIContext, wallet: str, distributor_id: str | None = None) -> int:
    """List claims for a wallet, newest first."""
    if not validate_address(wallet):
        ctx.output({"error": f"Invalid address format: {wallet}"})
        return 1
    wallet = normalize_address(wallet)
    try:
        records = asyncio.run(
            _with_store(ctx, lambda store: store.claims_for_wallet(wallet, distributor_id))
        )
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1
    ctx.output(
        {
            "wallet": wallet,
            "count": len(records),
            "claims": [
                {
                    "distributor_id": r.distributor_id,
                    "created_at": r.created_at,
                    "amount": r.amount,
                    "upstream_tx_id": r.upstream_tx_id,
                    "token_transfer_tx_id": r.token_transfer_tx_id,
                }
                for r in records
            ],
        }
    )
    return 0


# Wallet commands


def cmd_wallet_address(ctx: CLIContext) -> int:
    """Show payout wallet address."""
    try:
        wallet = PayoutWallet(
            private_key=ctx.config.payout_private_key,
            private_key_file=ctx.config.payout_private_key_file,
        )
    except ConfigurationError as e:
        ctx.output({"error": str(e)})
        return 1
    ctx.output({"address": wallet.address})
    return 0


# Upstream commands


def _api_key(ctx: CLIContext, distributor_id: str | None = None) -> str:
    """Partner key, or the claim key of a configured distributor."""
    if distributor_id is not None:
        for definition in load_definitions(ctx.config.distributors_file):
            if definition.id == distributor_id:
                return definition.upstream_api_key.get_secret_value()
        raise ConfigurationError(f"Unknown distributor: {distributor_id}")
    if ctx.config.partner_api_key is None:
        raise ConfigurationError("DRIPGATE_PARTNER_API_KEY is not set")
    return ctx.config.partner_api_key.get_secret_value()


async def _with_upstream(ctx: CLIContext, fn):
    async with aiohttp.ClientSession() as session:
        client = FaucetApiClient(session, ctx.config.upstream_url, ctx.config.upstream_timeout)
        return await fn(client)


def _upstream_command(ctx: CLIContext, fn, render) -> int:
    """Run ``fn(client)`` and print ``render(result)``; API and input errors exit 1."""
    try:
        result = asyncio.run(_with_upstream(ctx, fn))
    except (PartnerApiError, ValueError) as e:
        ctx.output({"error": str(e)})
        return 1
    ctx.output(render(result))
    return 0


def cmd_upstream_distributors(ctx: CLIContext, action: str, **options) -> int:
    """List, create or delete upstream distributors."""
    try:
        key = _api_key(ctx)
    except ConfigurationError as e:
        ctx.output({"error": str(e)})
        return 1

    if action == "list":
        return _upstream_command(
            ctx, lambda c: c.list_distributors(key), lambda body: {"distributors": body}
        )
    if action == "create":
        return _upstream_command(
            ctx,
            lambda c: c.create_distributor(key, options["name"], options.get("rps")),
            lambda body: {"created": body},
        )
    distributor_id = options["distributor_id"]
    return _upstream_command(
        ctx,
        lambda c: c.delete_distributor(key, distributor_id),
        lambda _: {"deleted": distributor_id},
    )


def _parse_rule_pairs(pairs: list[str]) -> dict[RuleKey, Any]:
    rules: dict[RuleKey, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        rule, value = parse_rule(key, raw)
        rules[rule] = value
    return rules


def cmd_upstream_rules(ctx: CLIContext, action: str, distributor_id: str, **options) -> int:
    """Inspect or change the drip rules of an upstream distributor."""
    try:
        key = _api_key(ctx)
        if action == "set":
            rule, value = parse_rule(options["key"], options["value"])
        elif action == "sync":
            wanted = _parse_rule_pairs(options["rules"])
    except (ConfigurationError, ValueError) as e:
        ctx.output({"error": str(e)})
        return 1

    if action == "list":
        return _upstream_command(
            ctx,
            lambda c: c.distributor_rules(key, distributor_id),
            lambda rules: {"distributor_id": distributor_id, "rules": rules},
        )
    if action == "set":
        return _upstream_command(
            ctx,
            lambda c: c.set_distributor_rule(key, distributor_id, rule, value),
            lambda _: {"distributor_id": distributor_id, "set": {rule.value: value}},
        )
    if action == "sync":
        return _upstream_command(
            ctx,
            lambda c: c.sync_distributor_rules(key, distributor_id, wanted),
            lambda plan: {
                "distributor_id": distributor_id,
                "deleted": plan.delete,
                "set": plan.upsert,
                "changed": not plan.empty,
            },
        )
    rule_uuid = options["rule_uuid"]
    return _upstream_command(
        ctx,
        lambda c: c.delete_distributor_rule(key, distributor_id, rule_uuid),
        lambda _: {"distributor_id": distributor_id, "deleted": rule_uuid},
    )


def cmd_upstream_global_rules(ctx: CLIContext, action: str, **options) -> int:
    """Set or delete a partner-wide rule."""
    try:
        key = _api_key(ctx)
        if action == "set":
            rule, value = parse_rule(options["key"], options["value"])
    except (ConfigurationError, ValueError) as e:
        ctx.output({"error": str(e)})
        return 1

    if action == "set":
        return _upstream_command(
            ctx,
            lambda c: c.set_global_rule(key, rule, value),
            lambda _: {"set": {rule.value: value}},
        )
    rule_uuid = options["rule_uuid"]
    return _upstream_command(
        ctx, lambda c: c.delete_global_rule(key, rule_uuid), lambda _: {"deleted": rule_uuid}
    )


def cmd_upstream_tx_status(
    ctx: CLIContext, transaction_id: str, distributor_id: str | None = None
) -> int:
    """Show the upstream status of a submitted claim."""
    try:
        key = _api_key(ctx, distributor_id)
    except ConfigurationError as e:
        ctx.output({"error": str(e)})
        return 1
    return _upstream_command(
        ctx,
        lambda c: c.transaction_status(key, transaction_id),
        lambda status: {
            "transaction_id": status.transaction_id,
            "status": status.status,
            "tx_hash": status.tx_hash,
            "amount": status.amount,
            "block_number": status.block_number,
            "gas_used": status.gas_used,
        },
    )


def cmd_upstream_can_claim(
    ctx: CLIContext,
    address: str,
    distributor_id: str | None = None,
    client_ip: str = "127.0.0.1",
    visitor_id: str = "dripgate-cli",
) -> int:
    """Ask the upstream faucet whether ``address`` could claim now."""
    if not validate_address(address):
        ctx.output({"error": f"Invalid address format: {address}"})
        return 1
    try:
        key = _api_key(ctx, distributor_id)
    except ConfigurationError as e:
        ctx.output({"error": str(e)})
        return 1
    submission = ClaimSubmission(
        address=normalize_address(address), client_ip=client_ip, visitor_id=visitor_id
    )
    return _upstream_command(
        ctx,
        lambda c: c.can_claim(key, submission),
        lambda result: {
            "address": submission.address,
            "can_claim": result.can_claim,
            "amount": result.amount,
            "amount_in_wei": result.amount_in_wei,
            "tap_closed": result.tap_closed,
        },
    )


def cmd_upstream_codes(
    ctx: CLIContext, action: str, distributor_id: str | None = None, count: int = 0
) -> int:
    """List or create claim codes."""
    try:
        key = _api_key(ctx, distributor_id)
    except ConfigurationError as e:
        ctx.output({"error": str(e)})
        return 1
    if action == "create":
        return _upstream_command(
            ctx, lambda c: c.create_claim_codes(key, count), lambda codes: {"codes": codes}
        )
    return _upstream_command(ctx, lambda c: c.claim_codes(key), lambda codes: {"codes": codes})


def _run_upstream_cli(ctx: CLIContext, args: argparse.Namespace) -> int:
    command = args.upstream_command
    if command == "distributors" and args.distributors_command:
        return cmd_upstream_distributors(
            ctx,
            args.distributors_command,
            name=getattr(args, "name", None),
            rps=getattr(args, "rps", None),
            distributor_id=getattr(args, "distributor_id", None),
        )
    if command == "rules" and args.rules_command:
        return cmd_upstream_rules(
            ctx,
            args.rules_command,
            args.distributor_id,
            key=getattr(args, "key", None),
            value=getattr(args, "value", None),
            rule_uuid=getattr(args, "rule_uuid", None),
            rules=getattr(args, "rules", None),
        )
    if command == "global-rules" and args.global_rules_command:
        return cmd_upstream_global_rules(
            ctx,
            args.global_rules_command,
            key=getattr(args, "key", None),
            value=getattr(args, "value", None),
            rule_uuid=getattr(args, "rule_uuid", None),
        )
    if command == "tx-status":
        return cmd_upstream_tx_status(ctx, args.transaction_id, args.distributor)
    if command == "can-claim":
        return cmd_upstream_can_claim(
            ctx, args.address, args.distributor, args.ip, args.visitor_id
        )
    if command == "codes" and args.codes_command:
        return cmd_upstream_codes(
            ctx, args.codes_command, args.distributor, getattr(args, "count", 0)
        )
    print(
        "Usage: dripgate upstream [distributors|rules|global-rules|tx-status|can-claim|codes]",
        file=sys.stderr,
    )
    return 1


def run_cli(args: argparse.Namespace) -> int:
    """Execute CLI command based on parsed arguments.

    Returns
    -------
    int
        Exit code: 0 for success, positive for error, -1 signals caller
        to show help (no CLI command specified).
    """
    try:
        config = DripgateConfig()
    except Exception as e:
        if args.json:
            print(json.dumps({"error": f"Configuration error: {e}"}))
        else:
            print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    ctx = CLIContext(config, json_output=args.json)

    if args.command == "config":
        if args.config_command == "check":
            return cmd_config_check(ctx)
        print("Usage: dripgate config check", file=sys.stderr)
        return 1

    elif args.command == "db":
        if args.db_command == "init":
            return cmd_db_init(ctx)
        print("Usage: dripgate db init", file=sys.stderr)
        return 1

    elif args.command == "claims":
        if args.claims_command == "stats":
            return cmd_claims_stats(ctx)
        elif args.claims_command == "list":
            return cmd_claims_list(ctx, args.wallet, args.distributor)
        print("Usage: dripgate claims [stats|list]", file=sys.stderr)
        return 1

    elif args.command == "wallet":
        if args.wallet_command == "address":
            return cmd_wallet_address(ctx)
        print("Usage: dripgate wallet address", file=sys.stderr)
        return 1

    elif args.command == "upstream":
        return _run_upstream_cli(ctx, args)

    return -1
