"""MySQL server operator CLI (mysqlctl).

Usage:
    mysqlctl plan                 # Show what apply would do
    mysqlctl apply                # Create or update the server
    mysqlctl apply --allow-replace
    mysqlctl refresh              # Re-read the server into state
    mysqlctl destroy              # Delete the server
    mysqlctl import RESOURCE_ID   # Adopt an existing server
    mysqlctl show                 # Print the local state

Configuration comes from the same environment variables as the operator
(see mysql_operator.config).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from azure.core.exceptions import AzureError

from .client import create_mysql_client
from .config import Config, ConfigurationError
from .errors import OperationCancelledError, OperatorError
from .main import run_with_deadline, setup_logging
from .models import ServerSpec
from .reconciler import PlanAction, ServerReconciler
from .security import SecretlessViolationError, redact
from .spec_loader import SpecLoadError, load_spec
from .state import ServerState, StateFileError, StateStore
from .waiter import OperationWaiter

T = TypeVar("T")


class CLIContext:
    """Objects shared by all commands of one invocation."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.store = StateStore(config.state_file)
        self._reconciler: ServerReconciler | None = None

    @property
    def reconciler(self) -> ServerReconciler:
        if self._reconciler is None:
            try:
                client = create_mysql_client(self.config)
            except SecretlessViolationError as e:
                raise click.ClickException(str(e)) from e
            self._reconciler = ServerReconciler(
                client,
                waiter=OperationWaiter(self.config.poll_interval_seconds),
                require_import=self.config.require_import,
            )
        return self._reconciler

    def run(self, operation: Callable[[asyncio.Event], Awaitable[T]]) -> T:
        """Run a reconciler coroutine under the invocation deadline."""
        try:
            return asyncio.run(
                run_with_deadline(operation, self.config.operation_timeout_seconds)
            )
        except OperationCancelledError as e:
            raise click.ClickException(f"Cancelled: {e}") from e
        except OperatorError as e:
            raise click.ClickException(str(e)) from e
        except AzureError as e:
            raise click.ClickException(f"Azure request failed: {e.message}") from e

    def load_state(self) -> ServerState:
        try:
            return self.store.load()
        except StateFileError as e:
            raise click.ClickException(str(e)) from e

    def save_state(self, state: ServerState) -> None:
        try:
            self.store.save(state)
        except StateFileError as e:
            raise click.ClickException(str(e)) from e

    def load_desired(self) -> ServerSpec:
        try:
            return load_spec(self.config.spec_file)
        except SpecLoadError as e:
            raise click.ClickException(str(e)) from e


pass_context = click.make_pass_decorator(CLIContext)


def _render_state(state: ServerState) -> str:
    data = state.model_dump(mode="json", by_alias=True)
    return json.dumps(redact(data), indent=2, sort_keys=True)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="mysqlctl")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Azure MySQL server operator CLI (mysqlctl).

    Converges one Azure Database for MySQL server to the state declared in
    SPEC_FILE, tracking it in STATE_FILE.
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj = CLIContext(config)


@cli.command()
@pass_context
def plan(obj: CLIContext) -> None:
    """Show what apply would change, without changing anything."""
    desired = obj.load_desired()
    state = obj.load_state()
    reconciler = obj.reconciler

    refreshed = obj.run(lambda cancel_event: reconciler.read(state, cancel_event))
    result = reconciler.plan(refreshed, desired)

    if result.action == PlanAction.NOOP:
        click.secho("No changes. The server matches the desired state.", fg="green")
        return

    click.echo(f"Action: {result.action.value}")
    for change in result.changes:
        click.echo(f"  ~ {change}")
    for change in result.immutable_changes:
        click.secho(f"  -/+ {change} (forces replacement)", fg="yellow")


@cli.command()
@click.option(
    "--allow-replace",
    is_flag=True,
    help="Delete and recreate the server when immutable fields change.",
)
@pass_context
def apply(obj: CLIContext, allow_replace: bool) -> None:
    """Create or update the server to match the desired state."""
    desired = obj.load_desired()
    state = obj.load_state()
    reconciler = obj.reconciler
    replace = allow_replace or obj.config.allow_replace

    result = obj.run(
        lambda cancel_event: reconciler.converge(
            state, desired, allow_replace=replace, cancel_event=cancel_event
        )
    )
    obj.save_state(result.state)

    click.secho(f"Apply complete: {result.action.value}", fg="green")
    if result.state.fully_qualified_domain_name:
        click.echo(f"FQDN: {result.state.fully_qualified_domain_name}")


@cli.command()
@pass_context
def refresh(obj: CLIContext) -> None:
    """Re-read the server and update the local state."""
    state = obj.load_state()
    reconciler = obj.reconciler

    refreshed = obj.run(lambda cancel_event: reconciler.read(state, cancel_event))
    obj.save_state(refreshed)

    if state.id and not refreshed.id:
        click.secho(f"Server {state.id} no longer exists; removed from state.", fg="yellow")
    elif refreshed.id:
        click.echo(f"Refreshed {refreshed.id}")
    else:
        click.echo("No server tracked.")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@pass_context
def destroy(obj: CLIContext, yes: bool) -> None:
    """Delete the tracked server."""
    state = obj.load_state()
    if not state.id:
        click.echo("No server tracked.")
        return

    if not yes:
        click.confirm(f"Delete MySQL server {state.id}?", abort=True)

    reconciler = obj.reconciler
    deleted = obj.run(lambda cancel_event: reconciler.delete(state, cancel_event))
    obj.save_state(deleted)
    click.secho(f"Deleted {state.id}", fg="green")


@cli.command(name="import")
@click.argument("resource_id")
@pass_context
def import_command(obj: CLIContext, resource_id: str) -> None:
    """Adopt an existing server by its resource ID."""
    state = obj.load_state()
    if state.id:
        raise click.ClickException(f"State already tracks {state.id}; destroy or move it first")

    reconciler = obj.reconciler
    imported = obj.run(lambda cancel_event: reconciler.import_server(resource_id, cancel_event))
    obj.save_state(imported)
    click.secho(f"Imported {imported.id}", fg="green")


@cli.command()
@pass_context
def show(obj: CLIContext) -> None:
    """Print the local state."""
    click.echo(_render_state(obj.load_state()))


if __name__ == "__main__":
    cli()
