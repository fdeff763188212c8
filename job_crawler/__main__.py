"""CLI: python -m job_crawler"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import load_config
from .engine import CrawlEngine
from .errors import CrawlerError, error_kind
from .models import CrawlParams
from .validator import validate_jobs

app = typer.Typer(help="Adaptive job listing crawler with learned site patterns")
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _fmt_salary(job) -> str:
    s = job.salary
    if s is None:
        return ""
    lo = f"{s.min:,}" if s.min is not None else ""
    hi = f"{s.max:,}" if s.max is not None else ""
    return f"{lo}–{hi} {s.currency or ''}".strip()


@app.command()
def crawl(
    sites: Optional[list[str]] = typer.Argument(None, help="Site names or domains (default: all configured)"),
    keyword: Optional[str] = typer.Option(None, "--keyword", "-k", help="Search keyword"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Location filter"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Max jobs per site"),
    salary_min: Optional[int] = typer.Option(None, "--salary-min", help="Minimum annual salary"),
    details: bool = typer.Option(False, "--details", help="Visit each job's detail page"),
    validate: bool = typer.Option(False, "--validate", help="Print a data quality report"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config override"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write JSON output to file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Crawl sites concurrently and print the merged jobs."""
    _setup_logging(verbose)
    cfg = load_config(config)
    params = CrawlParams(
        keyword=keyword,
        location=location,
        limit=limit,
        salary_min=salary_min,
        include_details=True if details else None,
    )

    async def _run():
        async with CrawlEngine(cfg) as engine:
            return await engine.crawl_all(sites or None, params)

    result = asyncio.run(_run())

    table = Table(title="Sites")
    table.add_column("Domain", style="bold")
    table.add_column("Jobs", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Status")
    for run in result.sites:
        status = "relearned" if run.relearned else "learned" if run.learned else "ok"
        table.add_row(run.domain, str(len(run.jobs)), str(run.pages), f"[green]{status}[/green]")
    for domain, err in result.per_site_errors.items():
        table.add_row(domain, "0", "-", f"[red]{err.kind}[/red] {err.message[:60]}")
    console.print(table)

    if result.jobs:
        jobs_table = Table(title=f"{len(result.jobs)} Jobs")
        jobs_table.add_column("#", justify="right", style="dim")
        jobs_table.add_column("Title")
        jobs_table.add_column("Company")
        jobs_table.add_column("Location")
        jobs_table.add_column("Salary")
        jobs_table.add_column("URL", style="cyan")
        for i, job in enumerate(result.jobs, 1):
            jobs_table.add_row(
                str(i),
                job.title[:50],
                job.company[:25],
                (job.location or "")[:20],
                _fmt_salary(job),
                job.source_url[:70],
            )
        console.print(jobs_table)

    if validate and result.jobs:
        report = validate_jobs(result.jobs)
        vt = Table(title=f"Validation: {report.success_rate}% valid")
        vt.add_column("Field", style="bold")
        vt.add_column("Errors", justify="right")
        vt.add_column("Warnings", justify="right")
        for field in sorted(set(report.errors_by_field) | set(report.warnings_by_field)):
            vt.add_row(
                field,
                str(report.errors_by_field.get(field, 0)),
                str(report.warnings_by_field.get(field, 0)),
            )
        console.print(vt)

    if output:
        output.write_text(json.dumps(result.to_response(), indent=2, ensure_ascii=False))
        console.print(f"\nJSON written to [bold]{output}[/bold]")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def learn(
    url: str = typer.Argument(..., help="Listing page URL"),
    name: Optional[str] = typer.Option(None, "--name", help="Site name used as job source"),
    alt_url: Optional[str] = typer.Option(None, "--alt-url", help="Alternate listing page for the second probe"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config override"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Learn and store a pattern for a listing page."""
    _setup_logging(verbose)
    cfg = load_config(config)

    async def _run():
        async with CrawlEngine(cfg) as engine:
            return await engine.learn_site(url, name, alt_url)

    try:
        pattern = asyncio.run(_run())
    except CrawlerError as e:
        console.print(f"[red]Learning failed ({error_kind(e)}):[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Pattern for {pattern.domain} (confidence {pattern.confidence:.2f})")
    table.add_column("Field", style="bold")
    table.add_column("Locator", style="cyan")
    table.add_column("Attr")
    table.add_column("Transform")
    table.add_row("card", pattern.card_selector, "", "")
    for field, sel in pattern.selectors.items():
        table.add_row(field, sel.locator or "(card)", sel.attr or "", sel.transform.value)
    console.print(table)
    console.print(f"List page: {pattern.list_page_pattern}")
    if pattern.detail_page_pattern:
        console.print(f"Detail page: {pattern.detail_page_pattern}")


@app.command()
def patterns(
    selectors: bool = typer.Option(False, "--selectors", help="Include selector internals"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config override"),
):
    """List stored site patterns."""
    engine = CrawlEngine(load_config(config))
    try:
        stored = engine.list_patterns()
    finally:
        asyncio.run(engine.aclose())

    if not stored:
        console.print("No stored patterns yet.")
        return

    if selectors:
        console.print_json(json.dumps([p.summary(include_selectors=True) for p in stored], ensure_ascii=False))
        return

    table = Table(title=f"{len(stored)} Stored Patterns")
    table.add_column("Domain", style="bold")
    table.add_column("Name")
    table.add_column("Confidence", justify="right")
    table.add_column("Strategy")
    table.add_column("Last updated")
    for p in stored:
        table.add_row(p.domain, p.source, f"{p.confidence:.2f}", p.strategy, p.last_updated.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


@app.command()
def forget(
    domain: str = typer.Argument(..., help="Domain (or site name) whose pattern to delete"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config override"),
):
    """Delete a stored pattern so it is relearned on next crawl."""
    engine = CrawlEngine(load_config(config))
    try:
        existed = engine.forget(domain)
    finally:
        asyncio.run(engine.aclose())
    console.print(f"Deleted pattern for {domain}" if existed else f"No stored pattern for {domain}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8898, "--port", "-p"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run the HTTP API."""
    _setup_logging(verbose)
    from .server import main

    main(host=host, port=port)


if __name__ == "__main__":
    app()
