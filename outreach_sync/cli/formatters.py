"""CLI output formatting functions.

This module contains functions for displaying sync results, reconcile
reports, contacts, schedules and status events on the command line.
"""

from typing import TYPE_CHECKING

import click

from outreach_sync.sync.models import RunStatus

if TYPE_CHECKING:
    from outreach_sync.config.sync_policy import SyncPolicy
    from outreach_sync.daemon.scheduler import StatusEvent
    from outreach_sync.sync.engine import SyncResult
    from outreach_sync.sync.importers import ImportReport
    from outreach_sync.sync.models import Contact, Message, SyncSchedule
    from outreach_sync.sync.reconciler import ReconcileResult

# Rows shown per list before "... and N more"
LIST_LIMIT = 10

STATUS_COLORS = {
    RunStatus.SUCCESS: "green",
    RunStatus.PARTIAL: "yellow",
    RunStatus.FAILED: "red",
}


def _more(items: list, limit: int = LIST_LIMIT) -> None:
    if len(items) > limit:
        click.echo(f"  ... and {len(items) - limit} more")


def show_policy(policy: "SyncPolicy") -> None:
    """Display the effective sync policy."""
    click.echo("=== Sync Policy ===\n")
    for name, value in policy.to_dict().items():
        click.echo(f"  {name}: {value}")
    click.echo(f"\n  Page budget per pass: {policy.page_budget}")


def show_sync_result(result: "SyncResult", verbose: bool = False) -> None:
    """
    Display the outcome of a sync pass.

    Args:
        result: The SyncResult to display
        verbose: Show every error instead of the first LIST_LIMIT
    """
    color = STATUS_COLORS[result.status]
    click.echo(click.style(f"Sync {result.status.value}", fg=color))
    click.echo(f"  Conversations seen: {result.conversations_seen}")
    click.echo(f"  Updated: {result.conversations_updated}")
    click.echo(f"  Unchanged: {result.conversations_skipped}")
    click.echo(f"  Messages written: {result.messages_written}")
    click.echo(
        f"  Pages fetched: {result.pages_fetched} "
        f"(+{result.message_pages_fetched} message pages)"
    )
    if result.truncated:
        click.echo(
            click.style(
                "  More conversations remain upstream; run sync again to continue",
                fg="yellow",
            )
        )
    if result.aborted:
        click.echo(
            click.style(
                "  Aborted: the account was rejected, reconnect it", fg="red"
            )
        )
    if result.errors:
        click.echo(f"\nErrors ({len(result.errors)}):")
        shown = result.errors if verbose else result.errors[:LIST_LIMIT]
        for error in shown:
            click.echo(f"  - {error}")
        if not verbose:
            _more(result.errors)


def show_reconcile_result(result: "ReconcileResult") -> None:
    """Display the outcome of a reconcile batch, duplicates included."""
    click.echo(
        f"Contacts: {result.created} created, {result.updated} updated, "
        f"{result.merged} merged, {result.unchanged} unchanged"
    )
    if result.dropped:
        click.echo(click.style(f"Dropped: {result.dropped}", fg="yellow"))
        for error in result.errors[:LIST_LIMIT]:
            click.echo(f"  - {error}")
        _more(result.errors)

    if result.possible_duplicates:
        click.echo(
            click.style(
                f"\nPossible duplicates ({len(result.possible_duplicates)}), "
                "not merged:",
                fg="yellow",
            )
        )
        for dup in result.possible_duplicates[:LIST_LIMIT]:
            click.echo(
                f"  {dup.contact.name} <{dup.contact.identity_key}>  ~  "
                f"{dup.existing.name} <{dup.existing.identity_key}> "
                f"at {dup.existing.company} ({dup.similarity:.0%})"
            )
        _more(result.possible_duplicates)


def show_import_errors(report: "ImportReport") -> None:
    if not report.errors:
        return
    click.echo(click.style(f"Skipped rows ({len(report.errors)}):", fg="yellow"))
    for error in report.errors[:LIST_LIMIT]:
        click.echo(f"  - {error}")
    _more(report.errors)


def show_contact(contact: "Contact") -> None:
    """Display one contact with the source of each field."""
    click.echo(f"{contact.name or '(no name)'}  [{contact.identity_key}]")
    for name in ("email", "title", "company", "profile_url", "phone"):
        value = getattr(contact, name)
        if value:
            source = contact.field_sources.get(name)
            tag = f" ({source.value})" if source else ""
            click.echo(f"  {name}: {value}{tag}")
    if contact.connection_degree is not None:
        click.echo(f"  degree: {contact.connection_degree}")
    click.echo(f"  quality: {contact.quality_score}")
    click.echo(f"  sources: {', '.join(sorted(s.value for s in contact.sources))}")


def show_contacts_table(contacts: list["Contact"]) -> None:
    """Display contacts one per line, best quality first."""
    if not contacts:
        click.echo("No contacts found.")
        return
    for contact in contacts:
        company = f" @ {contact.company}" if contact.company else ""
        click.echo(
            f"  {contact.quality_score:3d}  {contact.name or '(no name)'}{company}"
            f"  [{contact.identity_key}]"
        )
    click.echo(f"\n{len(contacts)} contact(s)")


def show_messages(messages: list["Message"], limit: int | None = None) -> None:
    """Display messages oldest first; with limit, only the newest ones."""
    shown = messages[-limit:] if limit else messages
    for message in shown:
        when = message.sent_at.strftime("%Y-%m-%d %H:%M") if message.sent_at else "?"
        click.echo(
            f"  #{message.ordinal:<4d} {when}  {message.role.value}: {message.content}"
        )


def show_schedules(schedules: list["SyncSchedule"]) -> None:
    """Display schedule rows for a workspace."""
    if not schedules:
        click.echo("No background sync configured.")
        return
    for schedule in schedules:
        state = (
            click.style("enabled", fg="green")
            if schedule.enabled
            else click.style("disabled", fg="yellow")
        )
        click.echo(
            f"{schedule.account_id}: {state}, every "
            f"{schedule.interval_minutes}m, scope {schedule.scope.value}"
        )
        if schedule.disabled_reason:
            click.echo(f"  Reason: {schedule.disabled_reason}")
        if schedule.last_run_at:
            click.echo(f"  Last run: {schedule.last_run_at.isoformat()}")
        if schedule.last_result:
            status = schedule.last_result.get("status", "unknown")
            click.echo(
                f"  Last result: {status}, "
                f"{schedule.last_result.get('contacts_synced', 0)} contacts, "
                f"{schedule.last_result.get('messages_synced', 0)} messages"
            )
            for error in schedule.last_result.get("errors", [])[:3]:
                click.echo(f"    - {error}")
        if schedule.skipped_ticks:
            click.echo(f"  Skipped ticks: {schedule.skipped_ticks}")


def echo_status_event(event: "StatusEvent") -> None:
    """Print a one-line summary of a scheduler status event."""
    if not event.recent_runs:
        state = "enabled" if event.is_enabled else "disabled"
        click.echo(f"[{event.workspace_id}/{event.account_id}] {state}")
        return
    latest = event.recent_runs[0]
    color = STATUS_COLORS[latest.status]
    click.echo(
        f"[{event.workspace_id}/{event.account_id}] "
        + click.style(latest.status.value, fg=color)
        + f": {event.contacts_synced} contacts, {event.messages_synced} messages"
        + f" in {latest.duration_ms}ms"
    )
    for error in event.errors[:3]:
        click.echo(f"  - {error}")
