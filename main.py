#!/usr/bin/env python3
"""Form CRM Sync - Entry point."""
import json
import logging

import click
from colorama import Fore, Style, init

from config import app_config
from crmsync.cli.runner import SyncRunner, print_push_summary, print_sweep_summary
from crmsync.errors import SyncError

# Initialize colorama
init(autoreset=True)


def print_banner():
    """Print application banner."""
    print(f"{Fore.CYAN}{'=' * 44}")
    print(f"{Fore.CYAN}║   {Fore.WHITE}Form CRM Sync{Fore.CYAN}                        ║")
    print(f"{Fore.CYAN}║   {Fore.WHITE}Forms ⇄ CRM / Helpdesk modules{Fore.CYAN}       ║")
    print(f"{Fore.CYAN}{'=' * 44}{Style.RESET_ALL}")
    print()


def load_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """Form CRM Sync - Push form records to CRM/helpdesk modules and pull changes back."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = SyncRunner.from_config(app_config)


@cli.command()
@click.argument("source_id")
@click.argument("file", type=click.Path(exists=True))
@click.pass_obj
def push(runner, source_id, file):
    """Push a record (JSON file) through SOURCE_ID's mappings."""
    print_banner()

    try:
        results = runner.push(source_id, load_json(file))
    except SyncError as e:
        click.echo(f"{Fore.RED}❌ {e.message}")
        raise SystemExit(1)

    print_push_summary(results)
    if any(not r.success for r in results.values()):
        raise SystemExit(1)


@cli.command()
@click.argument("source_id")
@click.option("--days", type=int, default=None, help="Re-read the last N days instead of using the cursor")
@click.pass_obj
def reconcile(runner, source_id, days):
    """Pull remote changes for SOURCE_ID into local records."""
    print_banner()

    try:
        result = runner.reconcile(source_id, days=days)
    except SyncError as e:
        click.echo(f"{Fore.RED}❌ {e.message}")
        raise SystemExit(1)

    print_sweep_summary(result)


@cli.command("import-config")
@click.argument("source_id")
@click.argument("file", type=click.Path(exists=True))
@click.pass_obj
def import_config(runner, source_id, file):
    """Store the mapping configuration in FILE for SOURCE_ID."""
    try:
        settings = runner.import_config(source_id, load_json(file))
    except SyncError as e:
        click.echo(f"{Fore.RED}❌ {e.message}")
        raise SystemExit(1)

    click.echo(f"{Fore.GREEN}✅ Saved {len(settings.mappings)} mappings for source {source_id}")
    for spec in settings.mappings:
        click.echo(f"   • {spec.key:20s} → {spec.target}")
    click.echo(f"   Two-way sync: {'on' if settings.two_way_sync else 'off'}, deletion: {settings.deletion_policy.value}")


@cli.command()
@click.argument("source_id")
@click.pass_obj
def links(runner, source_id):
    """List remote records linked to SOURCE_ID's records."""
    found = runner.links_for(source_id)
    if not found:
        click.echo(f"{Fore.YELLOW}No links for source {source_id}")
        return

    for link in found:
        click.echo(f"{link.record_id:>8s}  {link.mapping_key:20s} → {link.target}:{link.target_record_id}")


@cli.command()
@click.option("--limit", type=int, default=20, help="Number of entries to show")
@click.pass_obj
def history(runner, limit):
    """Show the most recent sync outcomes."""
    entries = runner.history.entries(limit)
    if not entries:
        click.echo(f"{Fore.YELLOW}No sync history yet")
        return

    colors = {"success": Fore.GREEN, "failed": Fore.RED, "skipped": Fore.YELLOW}
    for entry in entries:
        color = colors.get(entry["status"], "")
        click.echo(
            f"{entry['date'][:19]}  {entry['source_id']}/{entry['record_id']:<6s} "
            f"{entry['target']:20s} {color}{entry['status']:8s}{Style.RESET_ALL} {entry['message']}"
        )


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=8000, help="Bind port")
@click.pass_obj
def serve(runner, host, port):
    """Serve the webhook endpoint."""
    import uvicorn

    from crmsync.webhook import create_app

    print_banner()
    click.echo(f"{Fore.GREEN}Listening on http://{host}:{port}/sync/webhook")
    uvicorn.run(create_app(runner), host=host, port=port)


if __name__ == "__main__":
    cli()
