"""CLI for ticketwright.

Credentials come from options or their environment variables
(JIRA_URL, JIRA_EMAIL, JIRA_API_TOKEN, JIRA_PROJECT_KEY).

Usage:
    ticketwright serve --port 8390                  # Run the HTTP proxy
    ticketwright status --check                     # Show (and verify) configuration
    ticketwright issue-types                        # List creatable issue types
    ticketwright fields Bug --include-optional      # Normalized fields for a type
    ticketwright search "Epic Link" PROJ-1          # Autocomplete candidates
    ticketwright report --kind issue                # Interactive issue wizard
"""

from __future__ import annotations

import asyncio
import json as json_mod
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from ticketwright import __version__
from ticketwright.backends import DirectBackend
from ticketwright.config import ENV_VARS, Credentials, Settings, config_status, read_settings
from ticketwright.errors import ConfigurationError, TrackerError
from ticketwright.logging import setup_logging
from ticketwright.models import FieldModel
from ticketwright.preferences import PreferenceStore
from ticketwright.service import FEEDBACK_LABELS, TrackerService
from ticketwright.wizard import (
    EnteringDescription,
    EnteringRequiredField,
    EnteringSummary,
    Failed,
    NeedsCredentials,
    Reviewing,
    SelectingType,
    Succeeded,
    WizardController,
)

T = TypeVar("T")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning tracker errors into a one-line message and exit 1."""
    try:
        return asyncio.run(coro)
    except TrackerError as exc:
        click.echo(f"Error: {exc.user_message}", err=True)
        sys.exit(1)


def _service(ctx: click.Context) -> TrackerService:
    credentials: Credentials | None = ctx.obj.get("credentials")
    if credentials is None:
        missing = ", ".join(ctx.obj["missing"])
        click.echo(f"Jira is not configured. Missing: {missing}", err=True)
        sys.exit(1)
    try:
        return TrackerService(credentials, ctx.obj["settings"], transport=ctx.obj.get("transport"))
    except ConfigurationError as exc:
        click.echo(f"Error: {exc.user_message}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="ticketwright")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, envvar="TICKETWRIGHT_CONFIG")
@click.option("--jira-url", envvar="JIRA_URL", default=None, help="Jira Cloud URL (env: JIRA_URL)")
@click.option("--email", envvar="JIRA_EMAIL", default=None, help="Account email (env: JIRA_EMAIL)")
@click.option("--api-token", envvar="JIRA_API_TOKEN", default=None, help="API token (env: JIRA_API_TOKEN)")
@click.option("--project-key", envvar="JIRA_PROJECT_KEY", default=None, help="Project key (env: JIRA_PROJECT_KEY)")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    jira_url: str | None,
    email: str | None,
    api_token: str | None,
    project_key: str | None,
) -> None:
    """ticketwright: raise Jira issues without the Jira form."""
    ctx.ensure_object(dict)
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = read_settings(config_path)
    values = dict(zip(ENV_VARS, (jira_url, email, api_token, project_key)))
    ctx.obj["environ"] = {k: v for k, v in values.items() if v}
    ctx.obj["missing"] = [k for k in ENV_VARS if not values[k]]
    ctx.obj["credentials"] = (
        None if ctx.obj["missing"] else Credentials(jira_url, email, api_token, project_key)  # type: ignore[arg-type]
    )


@cli.command()
@click.option("--port", default=None, type=int, help="Port to listen on (default: settings port)")
@click.pass_context
def serve(ctx: click.Context, port: int | None) -> None:
    """Run the HTTP proxy on localhost."""
    from ticketwright.proxy import main

    settings: Settings = ctx.obj["settings"]
    setup_logging(settings.log_dir)
    main(port or settings.port, settings=settings, environ=ctx.obj["environ"])


@cli.command()
@click.option("--check", is_flag=True, help="Also verify authentication and project access")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, check: bool, as_json: bool) -> None:
    """Show whether credentials are configured."""
    result: dict[str, Any] = dict(config_status(ctx.obj["environ"]))
    if check and result["configured"]:
        service = _service(ctx)

        async def check_connection() -> bool:
            async with service:
                return await service.validate_configuration()

        result["valid"] = _run(check_connection())
    if as_json:
        click.echo(json_mod.dumps(result, indent=2))
    else:
        click.echo(result["hint"])
        if "valid" in result:
            click.echo("Connection: OK" if result["valid"] else "Connection: FAILED")
    if not result["configured"] or result.get("valid") is False:
        sys.exit(1)


@cli.command("issue-types")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def issue_types(ctx: click.Context, as_json: bool) -> None:
    """List the issue types the project accepts."""
    service = _service(ctx)

    async def fetch() -> list[Any]:
        async with service:
            return await service.list_issue_types()

    types = _run(fetch())
    if as_json:
        click.echo(json_mod.dumps({"issueTypes": [t.to_dict() for t in types]}, indent=2))
        return
    for t in types:
        click.echo(f"{t.id:>8}  {t.name}")


@cli.command()
@click.argument("issue_type")
@click.option("--include-optional", is_flag=True, help="Include optional fields")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fields(ctx: click.Context, issue_type: str, include_optional: bool, as_json: bool) -> None:
    """Show the normalized fields for ISSUE_TYPE."""
    service = _service(ctx)

    async def fetch() -> list[FieldModel]:
        async with service:
            return await service.get_fields(issue_type, include_optional=include_optional)

    result = _run(fetch())
    if as_json:
        click.echo(json_mod.dumps({"issueType": issue_type, "fields": [f.to_dict() for f in result]}, indent=2))
        return
    if not result:
        click.echo("No fields beyond summary and description.")
    for f in result:
        marker = "*" if f.required else " "
        extra = f" [{f.autocomplete_category}]" if f.autocomplete_category else ""
        click.echo(f"{marker} {f.display_name} ({f.key}): {f.type}{extra}")
        if f.default_value is not None:
            click.echo(f"    default: {f.default_value}")


@cli.command()
@click.argument("field_name")
@click.argument("query", default="")
@click.option("--field-key", default=None, help="Field id, e.g. customfield_10014")
@click.option("--issue-type", default=None, help="Resolve the field against this issue type's schema")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(
    ctx: click.Context,
    field_name: str,
    query: str,
    field_key: str | None,
    issue_type: str | None,
    as_json: bool,
) -> None:
    """Search autocomplete candidates for FIELD_NAME matching QUERY."""
    service = _service(ctx)

    async def fetch() -> list[Any]:
        async with service:
            return await service.search(field_name, query, field_key=field_key, issue_type=issue_type)

    results = _run(fetch())
    if as_json:
        click.echo(json_mod.dumps({"results": [c.to_dict() for c in results]}, indent=2))
        return
    if not results:
        click.echo("No matches.")
    for c in results:
        click.echo(f"{c.id}  {c.name}")


# ---------------------------------------------------------------------------
# Interactive wizard
# ---------------------------------------------------------------------------


def _choose(prompt: str, labels: list[str], default: int | None = None) -> int:
    for i, label in enumerate(labels, 1):
        click.echo(f"  {i}. {label}")
    choice = click.prompt(prompt, type=click.IntRange(1, len(labels)), default=default)
    return int(choice) - 1


async def _prompt_field(wizard: WizardController, f: FieldModel) -> None:
    current = wizard.form.field_values.get(f.key)
    label = f"{f.display_name}{'' if f.required else ' (optional)'}"
    if f.options and f.type == "select":
        ids = [o.id for o in f.options]
        default = ids.index(str(current)) + 1 if str(current) in ids else None
        idx = _choose(label, [o.label for o in f.options], default)
        wizard.set_value(f.key, f.options[idx].id, f.options[idx].label)
    elif f.options and f.type == "multiselect":
        for i, o in enumerate(f.options, 1):
            click.echo(f"  {i}. {o.label}")
        raw = click.prompt(f"{label} (comma-separated numbers)", default="")
        numbers = [int(n) for n in raw.replace(" ", "").split(",") if n.isdigit()]
        picks = [f.options[n - 1] for n in numbers if 0 < n <= len(f.options)]
        wizard.set_value(f.key, [o.id for o in picks], ", ".join(o.label for o in picks))
    elif f.autocomplete_category:
        query = click.prompt(f"Search {f.display_name}", default="")
        results = await wizard.search(f.key, query) or []
        if results:
            idx = _choose(label, [c.name for c in results], 1)
            wizard.select_candidate(f.key, results[idx])
        else:
            click.echo("No matches; enter the value directly.")
            wizard.set_value(f.key, click.prompt(label, default=query or ""))
    elif f.type == "boolean":
        wizard.set_value(f.key, click.confirm(label, default=bool(current)))
    else:
        default = wizard.display_value(f.key) if current not in (None, "") else ""
        wizard.set_value(f.key, click.prompt(label, default=default))


def _print_review(wizard: WizardController) -> None:
    click.echo(f"\n[{wizard.current_step_number}/{wizard.total_steps}] Review")
    click.echo(f"  Type:        {wizard.issue_type.name if wizard.issue_type else '-'}")
    click.echo(f"  Summary:     {wizard.display_value('summary')}")
    click.echo(f"  Description: {wizard.display_value('description')}")
    for f in wizard.required_fields:
        click.echo(f"  {f.display_name}: {wizard.display_value(f.key)}")
    if wizard.show_optional_fields:
        for f in wizard.optional_fields:
            click.echo(f"  {f.display_name} (optional): {wizard.display_value(f.key)}")
    for key, message in wizard.errors.items():
        click.echo(f"  ! {key}: {message}")
    if wizard.submit_message:
        click.echo(f"  {wizard.submit_message}")


async def _drive(wizard: WizardController, preselect: str | None) -> int:
    await wizard.start()
    while True:
        state = wizard.state
        if isinstance(state, NeedsCredentials):
            if state.error:
                click.echo(state.error)
            stored = wizard.preferences.credentials
            errors = await wizard.save_credentials(
                Credentials(
                    jira_url=click.prompt("Jira URL", default=stored.jira_url if stored else None),
                    email=click.prompt("Email", default=stored.email if stored else None),
                    api_token=click.prompt("API token", hide_input=True),
                    project_key=click.prompt("Project key", default=stored.project_key if stored else None),
                )
            )
            for key, message in errors.items():
                click.echo(f"  {key}: {message}")
        elif isinstance(state, SelectingType):
            if preselect:
                choice, preselect = preselect, None
            else:
                preferred = wizard.preferred_issue_type
                names = [t.name for t in wizard.issue_types]
                default = names.index(preferred.name) + 1 if preferred else None
                choice = names[_choose("Issue type", names, default)]
            await wizard.select_type(choice)
        elif isinstance(state, (EnteringSummary, EnteringDescription, EnteringRequiredField)):
            click.echo(f"[{wizard.current_step_number}/{wizard.total_steps}]")
            if isinstance(state, EnteringSummary):
                wizard.set_value("summary", click.prompt("Summary", default=wizard.form.field_values.get("summary")))
            elif isinstance(state, EnteringDescription):
                wizard.set_value(
                    "description", click.prompt("Description", default=wizard.form.field_values.get("description"))
                )
            elif wizard.current_field is not None:
                await _prompt_field(wizard, wizard.current_field)
            if not wizard.next():
                for message in wizard.errors.values():
                    click.echo(f"  {message}")
        elif isinstance(state, Reviewing):
            _print_review(wizard)
            action = click.prompt("Submit, edit, back or quit", type=click.Choice(["s", "e", "b", "q"]), default="s")
            if action == "q":
                return 1
            if action == "b":
                wizard.back()
            elif action == "e":
                for f in [*wizard.required_fields, *wizard.optional_fields]:
                    unset = f in wizard.required_fields and wizard.display_value(f.key) == "Not set"
                    if f.key in wizard.errors or unset:
                        await _prompt_field(wizard, f)
            else:
                await wizard.submit()
        elif isinstance(state, Succeeded):
            click.echo(f"Created {state.result.tracker_id}: {state.result.tracker_url}")
            return 0
        elif isinstance(state, Failed):
            click.echo(f"Error: {state.reason}", err=True)
            if state.reconfigure and click.confirm("Re-enter credentials?", default=True):
                wizard.reconfigure()
                continue
            return 1
        else:
            click.echo(f"Unexpected wizard state: {state.name}", err=True)
            return 1


@cli.command()
@click.option("--issue-type", default=None, help="Skip the type prompt")
@click.option("--label", "-l", multiple=True, help="Extra labels (repeatable)")
@click.option("--kind", type=click.Choice(sorted(FEEDBACK_LABELS)), default=None, help="Feedback kind")
@click.option("--context", "-c", multiple=True, help="Context entry as key=value (repeatable)")
@click.pass_context
def report(
    ctx: click.Context,
    issue_type: str | None,
    label: tuple[str, ...],
    kind: str | None,
    context: tuple[str, ...],
) -> None:
    """Interactively raise an issue, step by step."""
    parsed_context: dict[str, str] = {}
    for entry in context:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {entry!r}", param_hint="--context")
        parsed_context[key.strip()] = value.strip()

    preferences = PreferenceStore()
    if ctx.obj.get("credentials") is not None:
        preferences.remember_credentials(ctx.obj["credentials"])
    backend = DirectBackend(ctx.obj["settings"], transport=ctx.obj.get("transport"), environ=ctx.obj["environ"])
    wizard = WizardController(
        backend,
        preferences,
        context=parsed_context,
        labels=list(label),
        feedback_kind=kind,
        debounce=0,
    )

    async def run() -> int:
        try:
            return await _drive(wizard, issue_type)
        finally:
            await backend.aclose()

    sys.exit(_run(run()))
