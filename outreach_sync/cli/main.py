"""
Command-line interface for outreach_sync.

Provides CLI commands for one-off sync passes, contact imports and edits,
background sync schedules and the sync daemon.

Usage:
    # Show help
    outreach-sync --help

    # One bounded sync pass, then expand a preview conversation
    outreach-sync sync --account acc_1
    outreach-sync expand chat_42 --account acc_1

    # Contacts
    outreach-sync import-csv leads.csv
    outreach-sync add-contact --email jane@example.com --name "Jane Doe"
    outreach-sync contacts --company Acme

    # Background sync
    outreach-sync schedule enable --account acc_1 --interval 30m
    outreach-sync daemon start
"""

import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from outreach_sync import __version__
from outreach_sync.api.errors import SourceError
from outreach_sync.api.http import HttpTransport
from outreach_sync.api.primary_api import PrimaryClient
from outreach_sync.api.secondary_api import SecondaryClient
from outreach_sync.api.source import SourceClient
from outreach_sync.cli.formatters import (
    echo_status_event,
    show_contact,
    show_contacts_table,
    show_import_errors,
    show_messages,
    show_policy,
    show_reconcile_result,
    show_schedules,
    show_sync_result,
)
from outreach_sync.config.generator import save_config_file
from outreach_sync.config.loader import ConfigError, ConfigLoader, resolve_api_key
from outreach_sync.config.sync_policy import (
    SyncConfigError,
    SyncPolicy,
    policy_for_workspace,
)
from outreach_sync.storage.db import StoreError, SyncDatabase
from outreach_sync.sync.engine import ConversationNotFound, ConversationSyncEngine
from outreach_sync.sync.fallback import ProfileCollector
from outreach_sync.sync.identity import ReconcileError
from outreach_sync.sync.importers import (
    CandidateImportError,
    candidate_from_manual,
    candidates_from_csv,
)
from outreach_sync.sync.models import RunStatus, SyncScope
from outreach_sync.sync.reconciler import ContactReconciler, find_contact
from outreach_sync.utils import DEFAULT_CONFIG_DIR, resolve_config_dir
from outreach_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from outreach_sync.utils.paths import resolve_database_path

# Default configuration file
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Workspace used when --workspace is not given
DEFAULT_WORKSPACE = "default"

SOURCE_CHOICES = ("primary", "secondary")

# How each source expects its credential
SOURCE_AUTH: dict[str, dict[str, Any]] = {
    "primary": {"auth_header": "X-API-KEY"},
    "secondary": {"auth_header": "Authorization", "auth_scheme": "Bearer"},
}

SOURCE_CLIENTS = {"primary": PrimaryClient, "secondary": SecondaryClient}


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: str | None, config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / "config.yaml"


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def get_database(ctx: click.Context) -> SyncDatabase:
    """Open (and create if needed) the store for this invocation."""
    if "database" not in ctx.obj:
        config = ctx.obj.get("config", {})
        db_path = resolve_database_path(
            ctx.obj["config_dir"], config.get("database_path")
        )
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        database = SyncDatabase(db_path)
        try:
            database.initialize()
        except StoreError as e:
            fail(f"Cannot open store {db_path}: {e}")
        ctx.obj["database"] = database
    return ctx.obj["database"]


def build_source(config: dict[str, Any], name: str) -> SourceClient | None:
    """
    Build a source client from configuration.

    Returns:
        The client, or None if ``<name>_api_url`` is not configured
    """
    base_url = config.get(f"{name}_api_url")
    if not base_url:
        return None

    transport_options: dict[str, Any] = {}
    for option, key in (
        ("timeout", "request_timeout"),
        ("max_retries", "api_max_retries"),
        ("initial_retry_delay", "api_initial_retry_delay"),
        ("max_retry_delay", "api_max_retry_delay"),
    ):
        if key in config:
            transport_options[option] = config[key]

    transport = HttpTransport(
        base_url,
        api_key=resolve_api_key(config, name),
        source=name,
        **SOURCE_AUTH[name],
        **transport_options,
    )
    return SOURCE_CLIENTS[name](transport)


def require_source(ctx: click.Context, name: str) -> SourceClient:
    source = build_source(ctx.obj.get("config", {}), name)
    if source is None:
        fail(
            f"{name}_api_url is not configured. "
            "Run 'outreach-sync init-config' and edit the file."
        )
    return source


def get_policy(ctx: click.Context, workspace: str) -> SyncPolicy:
    try:
        return policy_for_workspace(ctx.obj.get("config", {}), workspace)
    except SyncConfigError as e:
        fail(f"Invalid sync policy: {e}")


def build_collector(ctx: click.Context) -> ProfileCollector:
    config = ctx.obj.get("config", {})
    return ProfileCollector(
        require_source(ctx, "primary"), build_source(config, "secondary")
    )


def build_scheduler(ctx: click.Context, run_immediately: bool = False) -> Any:
    """Build a BackgroundSyncScheduler wired to the configured sources."""
    from outreach_sync.daemon import BackgroundSyncScheduler

    config = ctx.obj.get("config", {})
    database = get_database(ctx)
    return BackgroundSyncScheduler(
        database=database,
        engine=ConversationSyncEngine(require_source(ctx, "primary"), database),
        reconciler=ContactReconciler(database),
        profile_collector=build_collector(ctx),
        policy_for=lambda workspace_id: policy_for_workspace(config, workspace_id),
        max_concurrent_syncs=config.get("max_concurrent_syncs", 3),
        reconcile_every_ticks=config.get("reconcile_every_ticks", 1),
        run_immediately=run_immediately,
    )


def get_pid_file(ctx: click.Context) -> Path:
    from outreach_sync.daemon import DEFAULT_PID_FILE

    config = ctx.obj.get("config", {})
    if config.get("daemon_pid_file"):
        return Path(config["daemon_pid_file"]).expanduser()
    if ctx.obj.get("config_dir_overridden"):
        return ctx.obj["config_dir"] / DEFAULT_PID_FILE.name
    return DEFAULT_PID_FILE


workspace_option = click.option(
    "--workspace",
    "-w",
    default=DEFAULT_WORKSPACE,
    show_default=True,
    envvar="OUTREACH_SYNC_WORKSPACE",
    help="Workspace the data belongs to.",
)

account_option = click.option(
    "--account",
    "-a",
    required=True,
    envvar="OUTREACH_SYNC_ACCOUNT",
    help="Upstream account id.",
)


@click.group()
@click.version_option(version=__version__, prog_name="outreach-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="OUTREACH_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.outreach-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="OUTREACH_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Outreach conversation and contact sync.

    Mirrors an account's conversations from the upstream messaging APIs into
    a local store and keeps one canonical contact per person across API
    syncs, CSV imports and manual entry.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_dir_overridden"] = config_dir is not None
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Allow the CLI to work without a usable config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = Path(config["log_dir"]).expanduser() if config.get("log_dir") else None
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)

    ctx.call_on_close(lambda: _close_database(ctx))


def _close_database(ctx: click.Context) -> None:
    database = ctx.obj.pop("database", None)
    if database is not None:
        database.close()


# =============================================================================
# Configuration Commands
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        outreach-sync init-config

        outreach-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Set primary_api_url and export OUTREACH_SYNC_PRIMARY_API_KEY")
        click.echo("2. Run 'outreach-sync sync --account <account id>'")
        logger.info(f"Created configuration file: {config_file}")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


@cli.command("policy")
@workspace_option
@click.pass_context
def policy_command(ctx: click.Context, workspace: str) -> None:
    """Show the effective sync policy for a workspace."""
    show_policy(get_policy(ctx, workspace))


# =============================================================================
# Conversation Commands
# =============================================================================


@cli.command("sync")
@workspace_option
@account_option
@click.option(
    "--source",
    "-s",
    type=click.Choice(SOURCE_CHOICES),
    default="primary",
    show_default=True,
    help="API to read conversations from.",
)
@click.option(
    "--max-pages",
    type=click.IntRange(min=1),
    default=None,
    help="Override the policy's page ceiling for this pass.",
)
@click.option(
    "--contacts/--no-contacts",
    default=False,
    help="Also collect profiles and reconcile contacts.",
)
@click.pass_context
def sync_command(
    ctx: click.Context,
    workspace: str,
    account: str,
    source: str,
    max_pages: int | None,
    contacts: bool,
) -> None:
    """
    Run one bounded sync pass for an account.

    Fetches the most recent conversations within the workspace policy and
    stores up to max_messages_per_conversation messages each. Conversations
    with older history stay preview-only until expanded.

    Examples:

        outreach-sync sync --account acc_1

        outreach-sync sync --account acc_1 --max-pages 2 --contacts
    """
    logger = get_logger(__name__)
    verbose = ctx.obj["verbose"]

    policy = get_policy(ctx, workspace)
    if max_pages is not None:
        try:
            policy = SyncPolicy.from_dict({"max_pages": max_pages}, base=policy)
        except SyncConfigError as e:
            fail(str(e))

    database = get_database(ctx)
    engine = ConversationSyncEngine(require_source(ctx, source), database)

    result = engine.run_sync(workspace, account, policy)
    show_sync_result(result, verbose=verbose)

    failed = result.status == RunStatus.FAILED
    if contacts and not result.aborted:
        click.echo()
        try:
            collector = build_collector(ctx)
            collected = collector.collect(account, max_pages=policy.max_pages)
        except SourceError as e:
            logger.error(f"Profile collection failed: {e}")
            click.echo(click.style(f"Profile collection failed: {e}", fg="red"))
            failed = True
        else:
            for error in collected.errors:
                click.echo(click.style(f"  - {error}", fg="yellow"))
            reconciled = ContactReconciler(database).reconcile(
                workspace, collected.candidates
            )
            show_reconcile_result(reconciled)

    if failed:
        sys.exit(1)


@cli.command("conversations")
@workspace_option
@click.option("--account", "-a", default=None, help="Only this account.")
@click.option("--preview", is_flag=True, help="Only preview-only conversations.")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=50)
@click.pass_context
def conversations_command(
    ctx: click.Context, workspace: str, account: str | None, preview: bool, limit: int
) -> None:
    """List stored conversations, most recent first."""
    conversations = get_database(ctx).list_conversations(
        workspace,
        account_id=account,
        preview_only=True if preview else None,
        limit=limit,
    )
    if not conversations:
        click.echo("No conversations found.")
        return
    for conv in conversations:
        when = (
            conv.last_message_at.strftime("%Y-%m-%d %H:%M")
            if conv.last_message_at
            else "?"
        )
        total = "?" if conv.total_message_count is None else conv.total_message_count
        flag = click.style(" preview", fg="yellow") if conv.preview_only else ""
        click.echo(
            f"  {conv.platform_conversation_id}  {when}  "
            f"{conv.participant_name or '(unknown)'}  [{total} messages]{flag}"
        )


@cli.command("expand")
@click.argument("conversation_id")
@workspace_option
@account_option
@click.option(
    "--source",
    "-s",
    type=click.Choice(SOURCE_CHOICES),
    default="primary",
    show_default=True,
    help="API to read the thread from.",
)
@click.option(
    "--show",
    type=click.IntRange(min=0),
    default=10,
    show_default=True,
    help="Print this many of the newest messages (0 for none).",
)
@click.pass_context
def expand_command(
    ctx: click.Context,
    conversation_id: str,
    workspace: str,
    account: str,
    source: str,
    show: int,
) -> None:
    """
    Fetch the full history of a synced conversation.

    Examples:

        outreach-sync expand chat_42 --account acc_1 --show 0
    """
    logger = get_logger(__name__)
    engine = ConversationSyncEngine(require_source(ctx, source), get_database(ctx))

    try:
        messages = engine.expand_conversation(workspace, account, conversation_id)
    except ConversationNotFound as e:
        fail(f"{e}. Run 'outreach-sync sync' first.")
    except SourceError as e:
        logger.error(f"Expand of {conversation_id} failed: {e}")
        fail(f"Could not fetch the thread: {e}")

    click.echo(
        click.style(
            f"Conversation {conversation_id} now holds {len(messages)} messages",
            fg="green",
        )
    )
    if show:
        show_messages(messages, limit=show)


# =============================================================================
# Contact Commands
# =============================================================================


@cli.command("import-csv")
@click.argument(
    "csv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@workspace_option
@click.pass_context
def import_csv_command(ctx: click.Context, csv_file: Path, workspace: str) -> None:
    """
    Import contacts from a CSV file.

    The header row must include an email or profile URL column. Rows are
    merged into existing contacts; API data keeps precedence.
    """
    try:
        report = candidates_from_csv(csv_file)
    except CandidateImportError as e:
        fail(str(e))

    click.echo(f"Read {report.rows_read} rows from {csv_file}")
    show_import_errors(report)

    result = ContactReconciler(get_database(ctx)).reconcile(
        workspace, report.candidates
    )
    show_reconcile_result(result)


@cli.command("add-contact")
@workspace_option
@click.option("--name", default="")
@click.option("--email", default="")
@click.option("--title", default="")
@click.option("--company", default="")
@click.option("--profile-url", default="")
@click.option("--phone", default="")
@click.option("--degree", type=click.IntRange(1, 3), default=None)
@click.pass_context
def add_contact_command(
    ctx: click.Context,
    workspace: str,
    name: str,
    email: str,
    title: str,
    company: str,
    profile_url: str,
    phone: str,
    degree: int | None,
) -> None:
    """
    Add or update a contact by hand.

    Fields entered by hand are never overwritten by automated syncs.
    """
    fields: dict[str, Any] = {
        "name": name,
        "email": email,
        "title": title,
        "company": company,
        "profile_url": profile_url,
        "phone": phone,
        "connection_degree": degree,
    }
    candidate = candidate_from_manual(fields)

    result = ContactReconciler(get_database(ctx)).reconcile(workspace, [candidate])
    if result.errors:
        fail(result.errors[0])
    show_reconcile_result(result)
    for contact in result.contacts.values():
        click.echo()
        show_contact(contact)


@cli.command("edit-contact")
@click.argument("identity")
@workspace_option
@click.option(
    "--set",
    "assignments",
    multiple=True,
    metavar="FIELD=VALUE",
    help="Field to set, e.g. --set title=CTO. Repeatable.",
)
@click.pass_context
def edit_contact_command(
    ctx: click.Context, identity: str, workspace: str, assignments: tuple[str, ...]
) -> None:
    """
    Edit fields of an existing contact.

    IDENTITY is the contact's email, profile URL or identity key.
    """
    database = get_database(ctx)
    if find_contact(database, workspace, identity) is None:
        fail(f"No contact {identity} in workspace {workspace}")

    fields: dict[str, Any] = {}
    for assignment in assignments:
        field_name, sep, value = assignment.partition("=")
        if not sep:
            fail(f"Expected FIELD=VALUE, got '{assignment}'")
        fields[field_name.strip()] = value.strip()
    if not fields:
        fail("Nothing to change; pass at least one --set FIELD=VALUE")

    try:
        contact = ContactReconciler(database).apply_manual_edit(
            workspace, identity, fields
        )
    except (ReconcileError, ValueError) as e:
        fail(str(e))
    show_contact(contact)


@cli.command("contacts")
@click.argument("identity", required=False)
@workspace_option
@click.option("--company", default=None, help="Only contacts at this company.")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=50)
@click.pass_context
def contacts_command(
    ctx: click.Context,
    identity: str | None,
    workspace: str,
    company: str | None,
    limit: int,
) -> None:
    """List canonical contacts, best quality first, or show one contact."""
    database = get_database(ctx)
    if identity:
        contact = find_contact(database, workspace, identity)
        if contact is None:
            fail(f"No contact {identity} in workspace {workspace}")
        show_contact(contact)
        return
    show_contacts_table(database.list_contacts(workspace, company=company, limit=limit))


# =============================================================================
# Schedule Commands
# =============================================================================


@cli.group("schedule")
def schedule_group() -> None:
    """
    Manage background sync schedules.

    Schedules are stored; a running daemon picks up changes within a minute.

    Examples:

        outreach-sync schedule enable --account acc_1 --interval 30m

        outreach-sync schedule status
    """
    pass


@schedule_group.command("enable")
@workspace_option
@account_option
@click.option(
    "--interval",
    "-i",
    default=None,
    help="Sync interval, 15m to 24h (e.g. '30', '30m', '2h'). "
    "Defaults to the policy's auto_sync_interval_minutes.",
)
@click.option(
    "--scope",
    type=click.Choice([s.value for s in SyncScope]),
    default=SyncScope.BOTH.value,
    show_default=True,
)
@click.pass_context
def schedule_enable_command(
    ctx: click.Context, workspace: str, account: str, interval: str | None, scope: str
) -> None:
    """Enable background sync for an account."""
    from outreach_sync.daemon import SchedulerError, parse_interval_minutes

    if interval is None:
        minutes = get_policy(ctx, workspace).auto_sync_interval_minutes
    else:
        try:
            minutes = parse_interval_minutes(interval)
        except ValueError as e:
            fail(str(e))

    scheduler = build_scheduler(ctx)
    try:
        schedule = scheduler.enable(workspace, account, minutes, SyncScope(scope))
    except SchedulerError as e:
        fail(str(e))
    finally:
        scheduler.shutdown()

    click.echo(
        click.style(
            f"Background sync enabled for {account}: every "
            f"{schedule.interval_minutes} minutes ({schedule.scope.value})",
            fg="green",
        )
    )


@schedule_group.command("disable")
@workspace_option
@account_option
@click.pass_context
def schedule_disable_command(ctx: click.Context, workspace: str, account: str) -> None:
    """Disable background sync for an account. History is kept."""
    scheduler = build_scheduler(ctx)
    try:
        schedule = scheduler.disable(workspace, account)
    finally:
        scheduler.shutdown()

    if schedule is None:
        click.echo(f"No background sync configured for {account}.")
        return
    click.echo(f"Background sync disabled for {account}.")


@schedule_group.command("status")
@workspace_option
@click.pass_context
def schedule_status_command(ctx: click.Context, workspace: str) -> None:
    """Show schedules and their last results."""
    show_schedules(get_database(ctx).list_sync_schedules(workspace))


@schedule_group.command("run")
@workspace_option
@account_option
@click.pass_context
def schedule_run_command(ctx: click.Context, workspace: str, account: str) -> None:
    """Run one scheduled tick now, in the foreground."""
    scheduler = build_scheduler(ctx)
    if get_database(ctx).get_sync_schedule(workspace, account) is None:
        scheduler.shutdown()
        fail(f"No schedule for {account}; enable it first")

    unsubscribe = scheduler.subscribe(echo_status_event)
    try:
        record = scheduler.tick(workspace, account)
    finally:
        unsubscribe()
        scheduler.shutdown()

    if record is None:
        click.echo("A run for this account is already in progress.")
    elif record.status == RunStatus.FAILED:
        sys.exit(1)


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Manage the background synchronization daemon.

    The daemon runs every enabled schedule on its own interval until it
    receives SIGTERM or SIGINT.

    Examples:

        # Start the daemon (Ctrl+C to stop)
        outreach-sync -v daemon start

        outreach-sync daemon status

        outreach-sync daemon stop
    """
    pass


@daemon_group.command("start")
@click.option(
    "--run-now",
    is_flag=True,
    help="Run each schedule once at startup instead of waiting an interval.",
)
@click.pass_context
def daemon_start_command(ctx: click.Context, run_now: bool) -> None:
    """
    Start the synchronization daemon in the foreground.

    The daemon will:
    - Restore every enabled schedule from the store
    - Run each schedule on its interval, at most one run per account at a time
    - Handle SIGTERM/SIGINT for graceful shutdown
    - Write a PID file for daemon management
    """
    logger = get_logger(__name__)
    from outreach_sync.daemon import (
        DaemonAlreadyRunningError,
        DaemonError,
        DaemonRunner,
    )

    pid_file = get_pid_file(ctx)
    scheduler = build_scheduler(ctx, run_immediately=run_now)
    runner = DaemonRunner(scheduler, pid_file=pid_file)
    unsubscribe = scheduler.subscribe(echo_status_event)

    click.echo("Starting daemon (Ctrl+C to stop)")
    if ctx.obj["verbose"]:
        click.echo(f"  Config directory: {ctx.obj['config_dir']}")
        click.echo(f"  PID file: {pid_file}")

    try:
        runner.run()
        click.echo(click.style("\nDaemon stopped gracefully.", fg="green"))
    except DaemonAlreadyRunningError as e:
        scheduler.shutdown()
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("Use 'outreach-sync daemon stop' to stop the running daemon.")
        sys.exit(1)
    except DaemonError as e:
        scheduler.shutdown()
        logger.error(f"Daemon error: {e}")
        fail(f"Daemon error: {e}")
    finally:
        unsubscribe()


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """
    Stop the running synchronization daemon.

    The daemon finishes in-flight runs before exiting.
    """
    logger = get_logger(__name__)
    from outreach_sync.daemon import DaemonRunner

    pid_file = get_pid_file(ctx)
    pid = DaemonRunner.get_running_pid(pid_file)

    if pid is None:
        click.echo("No daemon is currently running.")
        return

    click.echo(f"Stopping daemon (PID: {pid})...")

    if DaemonRunner.stop_running_daemon(pid_file):
        click.echo(click.style("Stop signal sent successfully.", fg="green"))
        click.echo("The daemon will shut down after completing in-flight runs.")
        logger.info(f"Sent stop signal to daemon (PID: {pid})")
    else:
        fail("Failed to send stop signal to daemon.")


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    """Show whether the daemon is running."""
    from outreach_sync.daemon import DaemonRunner, PIDFileError, PIDFileManager

    pid_file = get_pid_file(ctx)

    click.echo("=== Daemon Status ===\n")

    try:
        pid = DaemonRunner.get_running_pid(pid_file)
        stale_pid = None if pid is not None else PIDFileManager(pid_file).read()
    except PIDFileError as e:
        fail(str(e))

    if pid is not None:
        click.echo(f"Status: {click.style('Running', fg='green')}")
        click.echo(f"Process ID: {pid}")
    else:
        click.echo(f"Status: {click.style('Stopped', fg='yellow')}")
        if stale_pid is not None:
            click.echo(f"Stale PID file exists (PID: {stale_pid})")
            click.echo("The stale PID file will be cleaned up on next daemon start.")
        else:
            click.echo("No daemon is currently running.")

    if ctx.obj.get("verbose"):
        click.echo(f"\nPID file: {pid_file}")

    click.echo()
    if pid is None:
        click.echo("To start the daemon, run:")
        click.echo("  outreach-sync daemon start")
    else:
        click.echo("To stop the daemon, run:")
        click.echo("  outreach-sync daemon stop")


if __name__ == "__main__":
    cli()
