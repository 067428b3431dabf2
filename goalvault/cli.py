# goalvault/cli.py
import asyncio
import logging
import os
from decimal import Decimal

import click
import uvicorn

from goalvault.core.config import settings
from goalvault.deposits.errors import DepositError
from goalvault.deposits.ledger import GoalsApiClient
from goalvault.deposits.network import NetworkGuard
from goalvault.deposits.orchestrator import DepositOrchestrator, ExistingGoal, NewGoal, status_message
from goalvault.deposits.reconciliation import ReconciliationQueue, Reconciler
from goalvault.deposits.wallet import Web3Wallet
from goalvault.deposits.watcher import ConfirmationWatcher
from goalvault.utils.units import parse_amount

logger = logging.getLogger(__name__)


def _api_client(api_url: str) -> GoalsApiClient:
    return GoalsApiClient(api_url, settings.ACCESS_TOKEN, timeout=settings.HTTP_TIMEOUT_SECONDS)


def _wallet(assume_yes: bool) -> Web3Wallet:
    if not settings.WALLET_PRIVATE_KEY:
        raise click.ClickException("WALLET_PRIVATE_KEY is not set.")

    async def confirm(description: str) -> bool:
        if assume_yes:
            return True
        return click.confirm(f"Sign transaction: {description}?", default=True)

    return Web3Wallet.from_private_key(
        settings.WALLET_PRIVATE_KEY, settings.RPC_URLS, settings.CHAIN_ID, confirm=confirm
    )


def _watcher(wallet: Web3Wallet) -> ConfirmationWatcher:
    return ConfirmationWatcher(
        wallet,
        confirmations=settings.CONFIRMATIONS,
        poll_interval=settings.CONFIRMATION_POLL_INTERVAL_SECONDS,
        timeout=settings.CONFIRMATION_TIMEOUT_SECONDS,
    )


def _print_transition(previous, attempt) -> None:
    click.echo(f"  {previous.phase.value} -> {attempt.phase.value}")


async def _run_deposit(ctx, target, amount: Decimal, assume_yes: bool):
    wallet = _wallet(assume_yes)
    async with _api_client(ctx.obj["api_url"]) as api:
        orchestrator = DepositOrchestrator(
            wallet=wallet,
            api=api,
            watcher=_watcher(wallet),
            guard=NetworkGuard(settings.CHAIN_ID),
            token_address=settings.TOKEN_ADDRESS,
            token_decimals=settings.TOKEN_DECIMALS,
            vault_address=settings.VAULT_ADDRESS,
            queue=ReconciliationQueue(settings.RECONCILIATION_QUEUE_PATH),
            on_transition=_print_transition,
        )
        return await orchestrator.deposit(target, amount)


def _report(attempt) -> None:
    message = status_message(attempt)
    if attempt.failure is None:
        click.secho(message, fg="green")
    elif attempt.failure.reconciliation_required:
        click.secho(message, fg="yellow")
    else:
        click.secho(message, fg="red")
        raise SystemExit(1)


@click.group()
@click.version_option(version=settings.VERSION)
@click.option("--api-url", default=settings.GOALS_API_URL, show_default=True, help="Base URL of the goals API.")
@click.option("-v", "--verbose", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx, api_url, verbose):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.group()
def goals():
    """List and create funding goals."""


@goals.command("list")
@click.pass_context
def list_goals(ctx):
    async def run():
        async with _api_client(ctx.obj["api_url"]) as api:
            return await api.list_goals()

    try:
        items = asyncio.run(run())
    except DepositError as e:
        raise click.ClickException(e.message)
    if not items:
        click.echo("No goals yet.")
    for goal in items:
        click.echo(
            f"{goal.id}  {goal.title}  {goal.current_funded_amount}/{goal.target_amount}"
            + (f"  ends {goal.end_date.date()}" if goal.end_date else "")
        )


@goals.command("create")
@click.option("--title", required=True, type=str)
@click.option("--target", "target_amount", required=True, type=str, help="Goal target amount.")
@click.option("--description", default=None, type=str)
@click.option("--end-date", default=None, type=click.DateTime(), help="ISO date the goal should be reached by.")
@click.option("--vault", "vault_address", default=None, type=str, help="Vault address (defaults to VAULT_ADDRESS).")
@click.option("--deposit", "deposit_amount", default=None, type=str, help="Initial deposit, made right after creation.")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Sign transactions without prompting.")
@click.pass_context
def create_goal(ctx, title, target_amount, description, end_date, vault_address, deposit_amount, assume_yes):
    if deposit_amount is None:
        try:
            target_value = parse_amount(target_amount)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--target")

        async def run():
            async with _api_client(ctx.obj["api_url"]) as api:
                return await api.create_goal(
                    title=title,
                    target_amount=target_value,
                    vault_address=vault_address or settings.VAULT_ADDRESS,
                    description=description,
                    end_date=end_date,
                )

        try:
            goal = asyncio.run(run())
        except DepositError as e:
            raise click.ClickException(e.message)
        click.secho(f"Goal created: {goal.id}", fg="green")
        return

    target = NewGoal(title, target_amount, description=description, end_date=end_date, vault_address=vault_address)
    try:
        attempt = asyncio.run(_run_deposit(ctx, target, deposit_amount, assume_yes))
    except DepositError as e:
        raise click.ClickException(e.message)
    _report(attempt)


@cli.command("deposit")
@click.argument("goal_id", type=str)
@click.argument("amount", type=str)
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Sign transactions without prompting.")
@click.pass_context
def deposit(ctx, goal_id, amount, assume_yes):
    """Top up an existing goal."""
    try:
        attempt = asyncio.run(_run_deposit(ctx, ExistingGoal(goal_id), amount, assume_yes))
    except DepositError as e:
        raise click.ClickException(e.message)
    _report(attempt)


@cli.command("reconcile")
@click.option("--no-chain", is_flag=True, help="Do not look up unconfirmed deposits on-chain.")
@click.pass_context
def reconcile(ctx, no_chain):
    """Credit deposits that reached the vault but not the goal ledger."""
    queue = ReconciliationQueue(settings.RECONCILIATION_QUEUE_PATH)
    try:
        queued = len(queue)
    except ValueError as e:
        raise click.ClickException(f"Cannot read reconciliation queue: {e}")
    if not queued:
        click.echo("Nothing to reconcile.")
        return

    async def run():
        watcher = None
        if not no_chain and settings.WALLET_PRIVATE_KEY:
            watcher = _watcher(_wallet(assume_yes=True))
        async with _api_client(ctx.obj["api_url"]) as api:
            return await Reconciler(queue, api, watcher).drain()

    report = asyncio.run(run())
    click.echo(
        f"credited: {len(report.credited)}, waiting: {len(report.waiting)}, "
        f"dropped: {len(report.dropped)}, failed: {len(report.failed)}"
    )
    for tx_hash in report.failed:
        click.secho(f"  still out of sync: {tx_hash}", fg="yellow")
    if report.failed:
        raise SystemExit(1)


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=lambda: int(os.environ.get("PORT", 8000)), type=int, show_default="8000")
@click.option("--reload", is_flag=True)
def serve(host, port, reload):
    """Run the goals API."""
    uvicorn.run("goalvault.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
