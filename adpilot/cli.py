"""CLI entry point for AdPilot."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import click

from adpilot import __version__
from adpilot.aggregator import aggregate_level, metrics_frame
from adpilot.config import AppConfig, ConfigError, load_config
from adpilot.config_google_ads import GoogleAdsConfigError
from adpilot.io_files import InputFileError, read_request_file, read_rows_file, write_json, write_text
from adpilot.pipeline import format_report, managed_label_resources, run_optimization
from adpilot.query_adapter import LEVELS, DateRange, RetryPolicy, fetch_metric_rows
from adpilot.schema import OPTIMIZATION_TYPES, EntityType
from adpilot.services.mock_service import InMemoryAdsService


def _setup_logging(cfg: AppConfig, verbose: bool = False) -> None:
    level = "DEBUG" if verbose else cfg.logging.level
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=cfg.logging.format)


def _load(config_path: str, verbose: bool) -> AppConfig:
    try:
        cfg = load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc))
    _setup_logging(cfg, verbose)
    return cfg


def _get_services(input_path: Optional[str], customer_id: Optional[str], ads_config: Optional[str]):
    """Return ``(query_service, mutation_service)``.

    With ``--input`` everything runs against an in-memory service loaded
    from the file; otherwise the Google Ads connector is used.
    """
    if input_path:
        try:
            rows = read_rows_file(input_path)
        except InputFileError as exc:
            raise click.ClickException(str(exc))
        svc = InMemoryAdsService(rows=rows, customer_id=customer_id or "1234567890")
        return svc, svc

    from adpilot.connectors.google_ads import GoogleAdsConnectorError, build_services

    try:
        return build_services(customer_id=customer_id, config_path=ads_config)
    except (GoogleAdsConfigError, GoogleAdsConnectorError) as exc:
        raise click.ClickException(str(exc))


@click.group()
@click.version_option(version=__version__, prog_name="adpilot")
def cli():
    """AdPilot: campaign metrics aggregation and rule-based optimization."""
    pass


@cli.command()
@click.option(
    "--type",
    "optimization_type",
    type=click.Choice(OPTIMIZATION_TYPES, case_sensitive=False),
    default=None,
    help="Optimization type (required unless --request sets it)",
)
@click.option("--campaign-id", default=None, help="Restrict to one campaign")
@click.option("--settings", "settings_json", default=None, help="Settings as a JSON object")
@click.option("--request", "request_path", default=None, help="Request body file (JSON/YAML)")
@click.option("--lookback-days", type=int, default=None, help="Days of history to analyze")
@click.option("--caller", default=None, help="Caller identity checked against the allow-list")
@click.option(
    "--apply/--validate-only",
    "apply_changes",
    default=None,
    help="Submit mutations, or only describe them (default: config)",
)
@click.option("--input", "input_path", default=None, help="Offline rows file instead of Google Ads")
@click.option("--customer-id", default=None, help="Google Ads customer ID")
@click.option("--ads-config", default=None, help="Optional google-ads.yaml path")
@click.option("--report", "report_path", default=None, help="Write a Markdown report here")
@click.option("--json", "json_path", default=None, help="Write the JSON response here")
@click.option("--config", "config_path", default="config.yaml", help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def optimize(
    optimization_type: Optional[str],
    campaign_id: Optional[str],
    settings_json: Optional[str],
    request_path: Optional[str],
    lookback_days: Optional[int],
    caller: Optional[str],
    apply_changes: Optional[bool],
    input_path: Optional[str],
    customer_id: Optional[str],
    ads_config: Optional[str],
    report_path: Optional[str],
    json_path: Optional[str],
    config_path: str,
    verbose: bool,
):
    """Analyze campaigns and apply (or describe) optimizations."""
    cfg = _load(config_path, verbose)

    payload: Dict[str, Any] = {}
    if request_path:
        try:
            payload = read_request_file(request_path)
        except InputFileError as exc:
            raise click.ClickException(str(exc))
    if optimization_type:
        payload["optimizationType"] = optimization_type.upper()
    if campaign_id:
        payload["campaignId"] = campaign_id
    if lookback_days is not None:
        payload["lookbackDays"] = lookback_days
    if settings_json:
        try:
            payload["settings"] = json.loads(settings_json)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"--settings is not valid JSON: {exc}")

    validate_only = None if apply_changes is None else not apply_changes
    dry = cfg.execution.validate_only if validate_only is None else validate_only
    if dry:
        click.echo("🏃 VALIDATE-ONLY mode: changes are described, not submitted")
    else:
        click.echo("🚀 APPLY mode: mutations will be submitted")
    if input_path:
        click.echo(f"📂 Input:  {input_path}")

    query_service, mutation_service = _get_services(input_path, customer_id, ads_config)
    response = run_optimization(
        payload,
        query_service=query_service,
        mutation_service=mutation_service,
        cfg=cfg,
        caller=caller,
        validate_only=validate_only,
    )

    if json_path:
        write_json(response.to_dict(), json_path)
        click.echo(f"📝 JSON written to: {json_path}")
    if report_path:
        write_text(format_report(response), report_path)
        click.echo(f"📝 Report written to: {report_path}")

    for note in response.notes:
        click.echo(f"⚠️  {note}", err=True)

    if isinstance(query_service, InMemoryAdsService):
        stats = query_service.stats()
        click.echo(
            f"🧪 Offline service: {stats['queries']} queries, "
            f"{stats['mutate_calls']} mutate call(s), {stats['operations']} operation(s)"
        )

    summary = response.summary
    if summary is not None:
        click.echo("")
        click.echo("✅ Optimization complete!" if response.success else "⚠️  Optimization finished with failures")
        click.echo(f"   Campaigns analyzed: {summary.campaigns_analyzed}")
        click.echo(f"   Changes:            {summary.total_changes}")
        click.echo(f"   Failed changes:     {summary.failed_changes}")
        click.echo(f"   Recommendations:    {summary.recommendations}")
        click.echo(f"   Risk level:         {summary.risk_level}")
        click.echo(f"   {summary.expected_improvement}")

    if not response.success:
        code = f" [{response.error_code}]" if response.error_code else ""
        raise click.ClickException(f"{response.error}{code}")


@cli.command()
@click.option("--level", type=click.Choice(LEVELS), default="campaign", show_default=True)
@click.option("--days", type=click.IntRange(1, 90), default=None, help="Lookback days")
@click.option("--campaign-id", default=None, help="Restrict to one campaign")
@click.option("--input", "input_path", default=None, help="Offline rows file instead of Google Ads")
@click.option("--customer-id", default=None, help="Google Ads customer ID")
@click.option("--ads-config", default=None, help="Optional google-ads.yaml path")
@click.option("--out", "out_path", default=None, help="Write the summary table as CSV")
@click.option("--config", "config_path", default="config.yaml", help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def metrics(
    level: str,
    days: Optional[int],
    campaign_id: Optional[str],
    input_path: Optional[str],
    customer_id: Optional[str],
    ads_config: Optional[str],
    out_path: Optional[str],
    config_path: str,
    verbose: bool,
):
    """Print aggregated metrics for one entity level."""
    cfg = _load(config_path, verbose)
    query_service, _ = _get_services(input_path, customer_id, ads_config)

    date_range = DateRange.last_n_days(days or cfg.query.lookback_days)
    result = fetch_metric_rows(
        query_service,
        date_range,
        level=level,
        campaign_ids=[campaign_id] if campaign_id else None,
        retry_policy=RetryPolicy.from_config(cfg.retry_api),
        timeout=cfg.query.timeout_seconds,
        label_resources=managed_label_resources(query_service.customer_id, cfg),
    )
    for note in result.notes:
        click.echo(f"⚠️  {note}", err=True)

    summaries = aggregate_level(result.rows, EntityType(level.upper()), window_days=date_range.days)
    df = metrics_frame(summaries)

    click.echo(f"📊 {level} metrics {date_range.start} → {date_range.end} ({len(df)} entities)")
    if df.empty:
        click.echo("   (no data)")
    else:
        cols = [c for c in ["key", "campaign_name", "keyword_text", "impressions", "clicks", "cost", "conversions", "ctr", "cpa", "roas"] if c in df.columns]
        click.echo(df[cols].to_string(index=False))

    if out_path:
        df.to_csv(out_path, index=False)
        click.echo(f"📝 CSV written to: {out_path}")


if __name__ == "__main__":
    cli()
