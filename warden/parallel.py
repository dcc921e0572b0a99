"""
WARDEN Parallel Runner

Repositories are independent: each cycle reads and writes only its own
data/<repo>/ records (plus read-only global policy). Cycles run on a
thread pool with no ordering between repositories; a failing repository
is reported and does not stop the others.
"""

from __future__ import annotations

import concurrent.futures

from loguru import logger
from rich.console import Console
from rich.table import Table

from warden.config_loader import RepoConfig
from warden.controller import Controller, CycleResult
from warden.models import FindingInstance

console = Console()

CycleJob = tuple[RepoConfig, list[FindingInstance]]


def _run_single_cycle(controller: Controller, repo: RepoConfig, findings: list[FindingInstance]) -> CycleResult:
    try:
        return controller.run_cycle(repo, findings)
    except Exception as e:
        logger.error(f"[PARALLEL] Cycle failed for {repo.slug}: {e}")
        return CycleResult(repo_slug=repo.slug, status="error", error=str(e))


def run_parallel(
    controller: Controller,
    jobs: list[CycleJob],
    max_workers: int | None = None,
    quiet: bool = False,
) -> list[CycleResult]:
    """Run one analysis cycle per repository concurrently."""
    max_workers = max_workers or controller.config.parallel.max_workers
    if not quiet:
        _print_parallel_header(len(jobs), max_workers)

    results: list[CycleResult] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_repo = {
            executor.submit(_run_single_cycle, controller, repo, findings): repo
            for repo, findings in jobs
        }

        for future in concurrent.futures.as_completed(future_to_repo):
            result = future.result()
            results.append(result)
            if not quiet:
                _log_cycle_completion(result)

    results.sort(key=lambda r: r.repo_slug)
    if not quiet:
        _print_parallel_summary(results)
    return results

# --- Helpers ---

def _print_parallel_header(count: int, workers: int) -> None:
    console.print(f"\n[bold]🛡  WARDEN cycle — {count} repositories, {workers} workers[/]")

def _log_cycle_completion(result: CycleResult) -> None:
    color = "green" if result.status == "completed" else "red"
    console.print(f"  [{color}]{result.repo_slug}: {result.status}[/]")

def _print_parallel_summary(results: list[CycleResult]) -> None:
    table = Table(title="Cycle Results", border_style="cyan")
    table.add_column("Repo")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Resolved")
    table.add_column("Impacts")
    table.add_column("Revoked")

    for r in results:
        color = "green" if r.status == "completed" else "red"
        created = str(len(r.summary.created)) if r.summary else "—"
        resolved = str(len(r.summary.resolved)) if r.summary else "—"
        revoked = ", ".join(rule.agent_name for rule in r.revoked) or "—"
        table.add_row(r.repo_slug, f"[{color}]{r.status}[/]", created, resolved, str(len(r.assessed)), revoked)

    console.print(table)
