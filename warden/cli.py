"""
WARDEN CLI

Autonomy management:
  - warden autonomy grant <agent> --repo <slug>          (per-repo rule)
  - warden autonomy grant --global --agent <a> --min-score <n>
  - warden autonomy revoke <agent> --repo <slug>
  - warden autonomy list --repo <slug> | --global
  - warden autonomy impact --repo <slug>
  - warden autonomy check <agent> --code <c> --severity <s>
  - warden autonomy merge <agent> --finding <id> --source <branch>

Plus:
  - warden cycle --findings <file.json>   (reconcile + assess + revoke)
  - warden trust show | record
  - warden state                          (read-only JSON)
  - warden status
"""

import json
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from warden.audit_logger import AuditLogger
from warden.autonomy.policy import AutonomyError
from warden.config_loader import RepoConfig, load_config
from warden.controller import Controller
from warden.event_bus import EventBus
from warden.identity import BANNER, __codename__, __tagline__, __version__
from warden.impact.assessor import has_high_churn, has_severe_regression
from warden.models import MERGE_RESULTS, FindingInstance, parse_severity
from warden.parallel import run_parallel
from warden.store import StoreError
from warden.trust.aggregate import compute_trust_aggregation, score_trust
from warden.views import global_state, repo_state

load_dotenv()

app = typer.Typer(
    name="warden",
    help=f"{__codename__} — {__tagline__}",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
autonomy_app = typer.Typer(help="Grant, revoke and inspect auto-merge rights.", no_args_is_help=True)
trust_app = typer.Typer(help="Inspect and record agent trust metrics.", no_args_is_help=True)
app.add_typer(autonomy_app, name="autonomy")
app.add_typer(trust_app, name="trust")

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
    root: Optional[Path] = typer.Option(None, "--root", help="Installation root holding data/ and config/"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _configure_logging(verbose)
    ctx.obj = {"root": root}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

USER_ERRORS = (AutonomyError, LookupError, ValueError, StoreError)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/]")
    raise typer.Exit(1)


def _controller(ctx: typer.Context) -> Controller:
    root = (ctx.obj or {}).get("root")
    config = load_config(root)
    controller = Controller(config=config, event_bus=EventBus())
    AuditLogger(config.storage.data_path, controller.event_bus)
    return controller


def _resolve_repo(controller: Controller, slug: Optional[str]) -> RepoConfig:
    try:
        return controller.repo(slug)
    except LookupError as e:
        _fail(str(e))


def _split(value: Optional[str]) -> Optional[list[str]]:
    if not value:
        return None
    parts = [p.strip() for p in value.split(",") if p.strip()]
    return parts or None


def _load_findings(path: Path) -> Any:
    if not path.exists():
        _fail(f"Findings file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except ValueError as e:
        _fail(f"Invalid findings file {path}: {e}")


def _parse_findings(raw: Any) -> list[FindingInstance]:
    if not isinstance(raw, list):
        raise ValueError("Expected a list of findings")
    return [FindingInstance.model_validate(item) for item in raw]


# ---------------------------------------------------------------------------
# Autonomy
# ---------------------------------------------------------------------------

@autonomy_app.command("grant")
def autonomy_grant(
    ctx: typer.Context,
    agent: Optional[str] = typer.Argument(None, help="Agent name (per-repo grant)"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
    codes: Optional[str] = typer.Option(None, "--codes", help="Comma-separated allowed finding codes"),
    max_severity: Optional[str] = typer.Option(None, "--max-severity", help="Severity cap, e.g. S3"),
    min_clean: Optional[int] = typer.Option(None, "--min-clean", help="Min consecutive clean merges"),
    min_pass_rate: Optional[float] = typer.Option(None, "--min-pass-rate", help="Min validation pass rate (0-1)"),
    min_runs: Optional[int] = typer.Option(None, "--min-runs", help="Min total validation runs"),
    is_global: bool = typer.Option(False, "--global", help="Grant a cross-repository policy"),
    global_agent: Optional[str] = typer.Option(None, "--agent", help="Agent name (global grant)"),
    min_score: Optional[float] = typer.Option(None, "--min-score", help="Min aggregate trust score (global grant)"),
    allowed_severities: Optional[str] = typer.Option(None, "--allowed-severities", help="e.g. S3,S4,S5"),
    repos: Optional[str] = typer.Option(None, "--repos", help="Comma-separated repo slugs (global grant)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Grant auto-merge rights to an agent."""
    controller = _controller(ctx)

    if is_global:
        name = global_agent or agent
        if not name:
            _fail("Missing --agent. Usage: warden autonomy grant --global --agent <name> --min-score <0-1>")
        if min_score is None:
            _fail("Missing --min-score for global autonomy grant.")
        try:
            policy = controller.policy_store.grant_global_policy(
                agent_name=name,
                min_aggregate_score=min_score,
                allowed_codes=_split(codes),
                allowed_severities=_split(allowed_severities),
                applies_to=_split(repos),
            )
        except USER_ERRORS as e:
            _fail(str(e))
        console.print(
            f"[green]✅ Granted global autonomy policy for {policy.agent_name} "
            f"(min aggregate score {policy.min_aggregate_score}).[/]"
        )
        return

    if not agent:
        _fail("Missing agent name. Usage: warden autonomy grant <agent> --repo <slug>")
    repo_config = _resolve_repo(controller, repo)
    try:
        if max_severity:
            parse_severity(max_severity)
    except ValueError as e:
        _fail(str(e))

    trust = controller.ledger.load(repo_config.slug, agent)
    console.print(Panel(
        f"[bold]Repo:[/] {repo_config.slug}\n"
        f"[bold]Agent:[/] {agent}\n\n"
        f"Validation pass rate:     {trust.validation_pass_rate * 100:.1f}%\n"
        f"Consecutive clean merges: {trust.consecutive_clean_merges}\n"
        f"Total runs:               {trust.total_runs}\n\n"
        f"Allowed codes: {codes or 'all'}\n"
        f"Max severity:  {max_severity or 'default'}",
        title="Requested autonomy rule",
        border_style="yellow",
    ))

    if not yes and not Confirm.ask("[bold]Grant auto-merge rights?[/]"):
        console.print("[yellow]Grant cancelled.[/]")
        return

    try:
        rule = controller.policy_store.grant_rule(
            repo_config.slug,
            agent,
            allowed_codes=_split(codes),
            max_severity=max_severity,
            min_consecutive_clean_merges=min_clean,
            min_validation_pass_rate=min_pass_rate,
            min_total_runs=min_runs,
        )
    except USER_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✅ Granted auto-merge for {rule.agent_name} on {repo_config.slug}.[/]")


@autonomy_app.command("revoke")
def autonomy_revoke(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent name"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
    reason: str = typer.Option("Manual revoke", "--reason", help="Recorded revocation reason"),
):
    """Disable an agent's auto-merge rule."""
    controller = _controller(ctx)
    repo_config = _resolve_repo(controller, repo)
    try:
        controller.policy_store.revoke_rule(repo_config.slug, agent, reason)
    except USER_ERRORS as e:
        _fail(str(e))
    console.print(f"[yellow]Revoked auto-merge for {agent}: {reason}[/]")


@autonomy_app.command("list")
def autonomy_list(
    ctx: typer.Context,
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
    is_global: bool = typer.Option(False, "--global", help="List global policies"),
):
    """List autonomy rules or global policies."""
    controller = _controller(ctx)

    if is_global:
        policies = controller.policy_store.list_global_policies()
        if not policies:
            console.print("[dim]No global autonomy policies configured.[/]")
            return
        table = Table(title="Global Autonomy Policies", border_style="cyan")
        table.add_column("Agent")
        table.add_column("Min score")
        table.add_column("Severities")
        table.add_column("Codes")
        table.add_column("Applies to")
        for p in policies:
            table.add_row(
                p.agent_name,
                str(p.min_aggregate_score),
                ",".join(p.allowed_severities),
                ",".join(p.allowed_codes) or "all",
                ",".join(p.applies_to) or "all",
            )
        console.print(table)
        return

    repo_config = _resolve_repo(controller, repo)
    config = controller.policy_store.load_config(repo_config.slug)
    if not config.rules:
        console.print(f"[dim]No autonomy rules configured for {repo_config.slug}.[/]")
        return

    table = Table(title=f"Autonomy Rules — {repo_config.slug}", border_style="cyan")
    table.add_column("Agent")
    table.add_column("Enabled")
    table.add_column("Codes")
    table.add_column("Max severity")
    table.add_column("Revocation", style="dim")
    for rule in config.rules:
        enabled = "[green]yes[/]" if rule.enabled else "[red]no[/]"
        table.add_row(
            rule.agent_name,
            enabled,
            ",".join(rule.allowed_codes or []) or "all",
            rule.max_severity or config.global_defaults.max_severity,
            rule.revocation_reason or "",
        )
    console.print(table)


@autonomy_app.command("impact")
def autonomy_impact(
    ctx: typer.Context,
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
    count: int = typer.Option(20, "--count", "-n", help="Number of records to show"),
):
    """Show recent auto-merge impact records."""
    controller = _controller(ctx)
    repo_config = _resolve_repo(controller, repo)
    records = controller.assessor.load_all(repo_config.slug)
    if not records:
        console.print(f"[dim]No auto-merge impact records for {repo_config.slug}.[/]")
        return

    table = Table(title=f"Auto-merge impact — {repo_config.slug}", border_style="cyan")
    table.add_column("Merged", style="dim")
    table.add_column("Agent")
    table.add_column("Code")
    table.add_column("Branch")
    table.add_column("Impact")
    table.add_column("Churn")
    threshold = controller.config.impact.high_churn_threshold
    for record in records[:count]:
        if has_severe_regression([record]):
            summary = f"[red]introduced {', '.join(record.impact.new_findings_introduced)}[/]"
        elif record.impact.revert_detected:
            summary = "[red]reverted[/]"
        elif record.impact.new_findings_introduced:
            summary = f"[yellow]introduced {', '.join(record.impact.new_findings_introduced)}[/]"
        else:
            summary = "[green]clean[/]"
        churn = str(record.impact.subsequent_churn)
        if has_high_churn([record], threshold):
            churn = f"[yellow]{churn}[/]"
        table.add_row(record.merged_at[:19], record.agent_name, record.finding_code, record.branch, summary, churn)
    console.print(table)


@autonomy_app.command("check")
def autonomy_check(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent name"),
    code: str = typer.Option(..., "--code", help="Finding code"),
    severity: str = typer.Option(..., "--severity", help="Finding severity, e.g. S4"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
):
    """Explain whether an agent may auto-merge a finding right now."""
    controller = _controller(ctx)
    repo_config = _resolve_repo(controller, repo)
    try:
        sev = parse_severity(severity)
    except ValueError as e:
        _fail(str(e))

    decision = controller.eligibility.check(repo_config.slug, agent, code, sev)
    color = "green" if decision.eligible else "yellow"
    console.print(f"[bold {color}]{decision.reason}[/]")
    if decision.aggregate:
        console.print(
            f"  [dim]aggregate score {decision.aggregate.aggregate_score} "
            f"(global eligible: {decision.aggregate.global_eligible})[/]"
        )
    if not decision.eligible:
        raise typer.Exit(2)


@autonomy_app.command("merge")
def autonomy_merge(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent that produced the branch"),
    finding: str = typer.Option(..., "--finding", "-f", help="Work Document findingId"),
    source: str = typer.Option(..., "--source", help="Agent branch to merge"),
    target: str = typer.Option("main", "--target", help="Branch to merge into"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
):
    """Auto-merge an agent branch if the agent is eligible."""
    controller = _controller(ctx)
    repo_config = _resolve_repo(controller, repo)
    doc = controller.work_store.load(repo_config.slug, finding)
    if doc is None:
        _fail(f"Work document not found: {finding}")

    outcome = controller.merger.try_auto_merge(
        repo_config.slug, Path(repo_config.path), doc, agent, source, target
    )
    if outcome.merged:
        console.print(f"[green]✅ Merged {source} into {target}[/]")
        return
    console.print(f"[yellow]Not merged: {outcome.reason}[/]")
    raise typer.Exit(2)


# ---------------------------------------------------------------------------
# Trust
# ---------------------------------------------------------------------------

@trust_app.command("show")
def trust_show(
    ctx: typer.Context,
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Show one repository's ledger"),
):
    """Show per-repo trust metrics, or the cross-repo aggregate."""
    controller = _controller(ctx)

    if repo:
        repo_config = _resolve_repo(controller, repo)
        entries = controller.ledger.load_all(repo_config.slug)
        if not entries:
            console.print(f"[dim]No trust metrics recorded for {repo_config.slug}.[/]")
            return
        table = Table(title=f"Trust — {repo_config.slug}", border_style="cyan")
        for column in ("Agent", "Score", "Pass rate", "Clean streak", "Runs", "Merges A/M/R", "PR review"):
            table.add_column(column)
        for m in entries:
            table.add_row(
                m.agent_name,
                f"{score_trust(m):.3f}",
                f"{m.validation_pass_rate * 100:.1f}%",
                str(m.consecutive_clean_merges),
                str(m.total_runs),
                f"{m.merges_accepted}/{m.merges_modified}/{m.merges_rejected}",
                f"{m.pr_review_score:.2f}",
            )
        console.print(table)
        return

    summaries = compute_trust_aggregation(controller.ledger, controller.repo_slugs, controller.config.trust)
    if not summaries:
        console.print("[dim]No trust metrics recorded yet.[/]")
        return
    table = Table(title="Aggregate Trust", border_style="cyan")
    table.add_column("Agent")
    table.add_column("Aggregate")
    table.add_column("Weakest repo")
    table.add_column("Global eligible")
    for s in summaries:
        eligible = "[green]yes[/]" if s.global_eligible else "[red]no[/]"
        table.add_row(s.agent_name, f"{s.aggregate_score:.4f}", f"{s.min_repo_score:.3f}", eligible)
    console.print(table)


@trust_app.command("record")
def trust_record(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent name"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
    validation: Optional[str] = typer.Option(None, "--validation", help="pass | fail"),
    merge: Optional[str] = typer.Option(None, "--merge", help="accepted | modified | rejected"),
    review: Optional[str] = typer.Option(None, "--review", help="pass | fail"),
    comment: Optional[list[str]] = typer.Option(None, "--comment", help="Review comment (repeatable)"),
):
    """Record a validation, merge or PR review outcome for an agent."""
    controller = _controller(ctx)
    repo_config = _resolve_repo(controller, repo)
    if not (validation or merge or review):
        _fail("Specify --validation, --merge or --review")

    # Validate every flag before anything is recorded.
    try:
        passed = _pass_fail(validation) if validation else None
        reviewed = _pass_fail(review) if review else None
        if merge and merge not in MERGE_RESULTS:
            raise ValueError(f"Invalid merge result: {merge}")
    except ValueError as e:
        _fail(str(e))

    try:
        if passed is not None:
            controller.ledger.record_validation_result(repo_config.slug, agent, passed)
        if merge:
            controller.ledger.record_merge_result(repo_config.slug, agent, merge)  # type: ignore[arg-type]
        if reviewed is not None:
            controller.ledger.record_pr_review_result(repo_config.slug, agent, reviewed, comment or [])
    except USER_ERRORS as e:
        _fail(str(e))

    metrics = controller.ledger.load(repo_config.slug, agent)
    console.print(
        f"[green]Recorded.[/] {agent} on {repo_config.slug}: score {score_trust(metrics):.3f}, "
        f"pass rate {metrics.validation_pass_rate * 100:.1f}%, streak {metrics.consecutive_clean_merges}"
    )


def _pass_fail(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized not in ("pass", "fail"):
        raise ValueError(f"Expected pass or fail, got: {value}")
    return normalized == "pass"


# ---------------------------------------------------------------------------
# Cycle / State / Status
# ---------------------------------------------------------------------------

@app.command()
def cycle(
    ctx: typer.Context,
    findings: Path = typer.Option(..., "--findings", "-f", help="JSON findings: a list, or {slug: [...]}"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug (for a plain list)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Max concurrent repositories"),
):
    """Run an analysis cycle: reconcile findings, assess impacts, revoke."""
    controller = _controller(ctx)
    raw = _load_findings(findings)

    try:
        if isinstance(raw, dict):
            jobs = [(controller.repo(slug), _parse_findings(items)) for slug, items in raw.items()]
        else:
            jobs = [(controller.repo(repo), _parse_findings(raw))]
    except USER_ERRORS as e:
        _fail(str(e))

    results = run_parallel(controller, jobs, max_workers=workers)
    if any(r.status != "completed" for r in results):
        raise typer.Exit(1)


@app.command()
def state(
    ctx: typer.Context,
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Repository slug"),
    is_global: bool = typer.Option(False, "--global", help="Global policies and aggregate trust"),
):
    """Print WARDEN state as read-only JSON."""
    controller = _controller(ctx)
    if is_global:
        payload = global_state(controller)
    else:
        payload = repo_state(controller, _resolve_repo(controller, repo).slug)
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def status(ctx: typer.Context):
    """Check WARDEN configuration and readiness."""
    _print_banner()
    controller = _controller(ctx)
    config = controller.config

    console.print("[bold]Storage:[/]")
    console.print(f"  Data:   {config.storage.data_dir}")
    console.print(f"  Config: {config.storage.config_dir}")

    console.print("\n[bold]Autonomy defaults:[/]")
    console.print(f"  Min clean merges:  {config.autonomy.min_consecutive_clean_merges}")
    console.print(f"  Min pass rate:     {config.autonomy.min_validation_pass_rate}")
    console.print(f"  Min total runs:    {config.autonomy.min_total_runs}")
    console.print(f"  Max severity:      {config.autonomy.max_severity} ({config.autonomy.severity_cap_direction})")

    repo_table = Table(title="Repositories", border_style="cyan")
    repo_table.add_column("Slug")
    repo_table.add_column("Path")
    repo_table.add_column("Enabled rules")
    for r in controller.repos:
        rules = controller.policy_store.list_rules(r.slug)
        repo_table.add_row(r.slug, r.path, str(sum(1 for rule in rules if rule.enabled)))
    console.print(repo_table)

    import shutil
    found = shutil.which("git")
    console.print(f"\ngit: {'[green]✓ ' + found + '[/]' if found else '[red]✗ Not found[/]'}")


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
