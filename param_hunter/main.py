#!/usr/bin/env python3
"""
Param Hunter - Hidden HTTP Parameter Discovery

Main CLI entry point for the application.
"""

import sys
import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from param_hunter import __version__
from param_hunter.core.config import HTTPConfig, MiningConfig, get_config
from param_hunter.core.exceptions import ParamHunterError
from param_hunter.core.http_client import HttpxTransport
from param_hunter.core.logger import configure_logging, get_logger
from param_hunter.core.models import AnomalyType, AttackLocation, MiningSessionState, Request
from param_hunter.core.raw_request import load_raw_request
from param_hunter.mining.events import ErrorEvent, ProgressEvent, TotalAdjustedEvent
from param_hunter.mining.features.guess_max_size import SIZE_PROFILES
from param_hunter.mining.param_miner import ParamMiner
from param_hunter.mining.session_manager import MiningSessionManager
from param_hunter.mining.wordlist import Wordlist

console = Console()
logger = get_logger()

_SIZE_FIELDS = {
    AttackLocation.QUERY: "max_query_size",
    AttackLocation.HEADERS: "max_header_size",
    AttackLocation.BODY: "max_body_size",
}


@click.group()
@click.version_option(version=__version__)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--log-level',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              default=None, help='Set logging level')
@click.option('--log-file', type=click.Path(), help='Path to log file')
@click.pass_context
def cli(ctx, debug, log_level, log_file):
    """Param Hunter - Hidden HTTP Parameter Discovery"""

    ctx.ensure_object(dict)

    config = get_config()
    if debug:
        config.debug = True
        config.log_level = 'DEBUG'
    elif log_level:
        config.log_level = log_level

    ctx.obj['debug'] = config.debug
    ctx.obj['log_file'] = log_file

    log_path = Path(log_file) if log_file else None
    configure_logging(
        level=config.log_level,
        log_file=log_path,
        rich_console=True,
        show_time=config.debug,
        show_path=config.debug
    )


def display_banner():
    """Display the Param Hunter banner."""
    banner = f"""
[bold cyan]Param Hunter[/bold cyan] v{__version__}
[dim]Hidden HTTP Parameter Discovery[/dim]

[yellow]Use responsibly and only on systems you own or have permission to test[/yellow]
"""
    console.print(Panel(banner, title="Welcome", border_style="blue"))


def load_target(request_file: str, plain_http: bool, port: Optional[int]) -> Request:
    """Read the target request from a raw HTTP request file."""
    return load_raw_request(request_file, tls=not plain_http, port=port)


def build_mining_config(location: str, max_size: Optional[int], **overrides) -> MiningConfig:
    """Layer CLI options over the environment-backed mining defaults."""
    values = get_config().mining.model_dump()
    values['attack_type'] = AttackLocation(location)
    values.update({key: value for key, value in overrides.items() if value is not None})

    if max_size is not None:
        values['auto_detect_max_size'] = False
        for field in _SIZE_FIELDS.values():
            values[field] = None
        values[_SIZE_FIELDS[AttackLocation(location)]] = max_size

    return MiningConfig.model_validate(values)


@cli.command()
@click.argument('request_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--wordlist', '-w', 'wordlists', multiple=True, required=True,
              type=click.Path(exists=True, dir_okay=False), help='Wordlist file (repeatable)')
@click.option('--location', '-l', type=click.Choice([loc.value for loc in AttackLocation]),
              default='query', help='Where to inject candidate parameters')
@click.option('--http', 'plain_http', is_flag=True, help='Send over plain HTTP instead of TLS')
@click.option('--port', type=int, help='Target port (defaults to Host header or scheme)')
@click.option('--delay', type=float, help='Delay between requests (seconds)')
@click.option('--timeout', type=float, help='Discovery timeout (seconds)')
@click.option('--learn-requests', type=int, help='Number of baseline learning requests')
@click.option('--max-size', type=int, help='Explicit max size (disables auto-detection)')
@click.option('--max-params', type=int, help='Maximum parameters per request')
@click.option('--custom-value', help='Prefix for every parameter value')
@click.option('--ignore', 'ignore_types', multiple=True,
              type=click.Choice([kind.value for kind in AnomalyType]),
              help='Anomaly type to ignore (repeatable)')
@click.option('--no-waf', is_flag=True, help='Skip WAF detection')
@click.option('--no-autopilot', is_flag=True, help='Disable autopilot adjustments')
@click.option('--no-additional-checks', is_flag=True, help='Skip special character checks')
@click.option('--no-extract-words', is_flag=True, help='Do not add words from the baseline response')
@click.option('--performance', is_flag=True, help='Do not keep request/response pairs in events')
@click.option('--proxy', help='Proxy URL (e.g., http://localhost:8080)')
@click.option('--output', '-o', help='Write findings to a JSON file')
@click.option('--quiet', '-q', is_flag=True, help='Quiet mode (minimal output)')
@click.pass_context
def mine(ctx, request_file, wordlists, location, plain_http, port, delay, timeout,
         learn_requests, max_size, max_params, custom_value, ignore_types, no_waf,
         no_autopilot, no_additional_checks, no_extract_words, performance, proxy,
         output, quiet):
    """Mine hidden parameters of the request in REQUEST_FILE."""

    if not quiet:
        display_banner()

    try:
        target = load_target(request_file, plain_http, port)
        wordlist = Wordlist.from_files(wordlists)
        mining_config = build_mining_config(
            location,
            max_size,
            delay_between_requests=delay,
            timeout=timeout,
            learn_requests_count=learn_requests,
            max_parameters_amount=max_params,
            custom_value=custom_value,
            ignore_anomaly_types=list(ignore_types) or None,
            waf_detection=False if no_waf else None,
            autopilot_enabled=False if no_autopilot else None,
            additional_checks=False if no_additional_checks else None,
            extract_words_from_response=False if no_extract_words else None,
            performance_mode=True if performance else None,
        )
    except (ParamHunterError, ValidationError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    http_config = get_config().http
    if proxy:
        http_config = http_config.model_copy(update={'proxy_url': proxy})

    if not quiet:
        console.print(f"\n[bold green]Mining {location} parameters of {target.url}[/bold green]")
        console.print(f"[dim]{len(wordlist)} words loaded[/dim]\n")

    try:
        miner = asyncio.run(run_mining(target, mining_config, wordlist, http_config, quiet))
    except KeyboardInterrupt:
        console.print("\n[yellow]Mining interrupted by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Error during mining: {escape(str(e))}[/red]")
        if ctx.obj.get('debug'):
            console.print_exception()
        sys.exit(1)

    display_findings(miner)

    if output:
        save_findings(miner, output)
        console.print(f"\n[green]Findings saved to {output}[/green]")

    if miner.state == MiningSessionState.ERROR:
        sys.exit(1)


async def run_mining(target: Request, config: MiningConfig, wordlist: Wordlist,
                     http_config: HTTPConfig, quiet: bool = False) -> ParamMiner:
    """Run one mining session to completion with a progress bar."""
    manager = MiningSessionManager(http_config)

    with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            disable=quiet
    ) as progress:
        task = progress.add_task("Learning baseline...", total=None)

        miner = await manager.start_session(config, target, wordlist)

        def on_progress(event: ProgressEvent):
            progress.update(task, description="Mining parameters...",
                            completed=event.completed, total=event.total)

        def on_total_adjusted(event: TotalAdjustedEvent):
            progress.update(task, total=event.total)

        def on_error(event: ErrorEvent):
            progress.console.print(f"[red]{escape(event.message)}[/red]")

        miner.events.on_progress(on_progress)
        miner.events.on_total_adjusted(on_total_adjusted)
        miner.events.on_error(on_error)

        await manager.wait(miner.id)
        progress.update(task, description=f"Session {miner.state.value}")

    return miner


def display_findings(miner: ParamMiner):
    """Display the session's findings in a formatted table."""

    state_style = "green" if miner.state == MiningSessionState.COMPLETED else "yellow"
    console.print(
        f"\n[bold]Session {miner.id}[/bold] finished: [{state_style}]{miner.state.value}[/{state_style}]"
        f" ({miner.requests_sent} requests)"
    )

    if not miner.findings:
        console.print("[dim]No hidden parameters found.[/dim]")
        return

    table = Table(title="Hidden Parameters")
    table.add_column("Parameter", style="cyan", no_wrap=True)
    table.add_column("Anomaly", style="magenta")
    table.add_column("Details", style="white")
    table.add_column("Status", justify="right")

    for finding in miner.findings:
        table.add_row(
            finding.parameter.name,
            finding.anomaly_kind.value,
            str(finding.anomaly) if finding.anomaly else "",
            str(finding.request_response.response.status),
        )

    console.print(table)


def findings_to_dict(miner: ParamMiner) -> Dict[str, object]:
    findings: List[Dict[str, object]] = []
    for finding in miner.findings:
        anomaly = finding.anomaly
        findings.append({
            'name': finding.parameter.name,
            'value': finding.parameter.value,
            'anomaly_type': finding.anomaly_kind.value,
            'which': anomaly.which if anomaly else None,
            'from': anomaly.from_value if anomaly else None,
            'to': anomaly.to_value if anomaly else None,
            'status': finding.request_response.response.status,
            'request': finding.request_response.request.raw,
        })

    return {
        'session_id': miner.id,
        'target': miner.target.url,
        'location': miner.config.attack_type.value,
        'state': miner.state.value,
        'requests_sent': miner.requests_sent,
        'findings': findings,
    }


def save_findings(miner: ParamMiner, output_path: str):
    """Save findings to a JSON file."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, 'w') as f:
        json.dump(findings_to_dict(miner), f, indent=2)


@cli.command()
@click.argument('request_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--wordlist', '-w', 'wordlists', multiple=True, required=True,
              type=click.Path(exists=True, dir_okay=False), help='Wordlist file (repeatable)')
@click.option('--location', '-l', type=click.Choice([loc.value for loc in AttackLocation]),
              default='query', help='Where to inject candidate parameters')
@click.option('--http', 'plain_http', is_flag=True, help='Target uses plain HTTP')
@click.option('--port', type=int, help='Target port')
@click.option('--max-size', type=int, help='Max size to plan with (defaults to the fallback size)')
@click.option('--max-params', type=int, help='Maximum parameters per request')
def estimate(request_file, wordlists, location, plain_http, port, max_size, max_params):
    """Show how many requests discovery would send, without sending any."""

    try:
        target = load_target(request_file, plain_http, port)
        wordlist = Wordlist.from_files(wordlists)
        mining_config = build_mining_config(location, max_size, max_parameters_amount=max_params)
        miner = ParamMiner(HttpxTransport(), target, mining_config, wordlist)
        miner.validate_config()
    except (ParamHunterError, ValidationError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    miner.max_size = max_size or SIZE_PROFILES[mining_config.attack_type].default_size
    total = miner.discovery.calculate_total_requests()

    table = Table(title="Discovery Estimate")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Target", target.url)
    table.add_row("Location", mining_config.attack_type.value)
    table.add_row("Words", str(len(wordlist)))
    table.add_row("Max Size", str(miner.max_size))
    table.add_row("Discovery Requests", str(total))
    table.add_row("Learning Requests", str(mining_config.learn_requests_count))

    console.print(table)


@cli.command()
def config():
    """Show current configuration."""
    config = get_config()

    table = Table(title="Param Hunter Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("App Name", config.app_name)
    table.add_row("Debug Mode", str(config.debug))
    table.add_row("Log Level", config.log_level)
    for name, value in config.mining.model_dump(mode='json').items():
        table.add_row(f"mining.{name}", str(value))
    for name, value in config.http.model_dump(mode='json').items():
        table.add_row(f"http.{name}", str(value))

    console.print(table)


if __name__ == '__main__':
    cli()
