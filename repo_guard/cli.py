"""Command-line interface for repository guard."""

import json
import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import click

from .config.config_manager import ConfigManager
from .core.engine import GuardEngine
from .core.models import SECURITY_CHECKS, CheckResult, CheckStatus, StageStatus
from .core.operator import STAGES
from .reporters.email_reporter import EmailReporter
from .utils.formatters import (
    format_date, format_file_size, format_optional_count, get_check_indicator, get_repository_indicator,
    truncate_string,
)


def setup_logging(level: str, log_file: Optional[str] = None, max_size_mb: int = 10,
                  backup_count: int = 5):
    """Set up console logging and an optional rotating log file."""
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {level}')

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console output goes to stderr so JSON on stdout stays parseable
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        add_file_handler(log_file, formatter, max_size_mb, backup_count)


def add_file_handler(log_file: str, formatter: logging.Formatter, max_size_mb: int = 10,
                     backup_count: int = 5):
    try:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_size_mb * 1024 * 1024, backupCount=backup_count, encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
    except OSError as e:
        click.echo(f"Warning: Could not set up file logging: {e}", err=True)


def _load_engine(ctx) -> GuardEngine:
    """Build the engine and apply the logging section of its configuration."""
    engine = GuardEngine(ctx.obj.get('config_path'))
    logging_config = engine.config_manager.get_logging_config()
    root_logger = logging.getLogger()

    if ctx.obj.get('log_level') is None:
        level = getattr(logging, str(logging_config.get('level', 'INFO')).upper(), logging.INFO)
        root_logger.setLevel(level)
    if ctx.obj.get('log_file') is None and logging_config.get('file'):
        add_file_handler(logging_config['file'], root_logger.handlers[0].formatter,
                         logging_config.get('max_size_mb', 10), logging_config.get('backup_count', 5))
    return engine


def _cancel_on_signal() -> threading.Event:
    """Return an event set by SIGINT/SIGTERM; the current stage finishes first."""
    cancel_event = threading.Event()

    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logging.getLogger(__name__).warning("Cancellation requested; finishing current stage")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)
    return cancel_event


def _fail(message: str):
    click.echo(message, err=True)
    sys.exit(1)


@click.group()
@click.option('--config', '-c', 'config_path',
              help='Path to configuration file')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level (default: from configuration, else INFO)')
@click.option('--log-file',
              help='Log file path (default: from configuration)')
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: Optional[str], log_file: Optional[str]):
    """Repo Guard - protect local git repositories and sensitive files."""
    ctx.ensure_object(dict)

    setup_logging(log_level or 'INFO', log_file)

    ctx.obj['config_path'] = config_path
    ctx.obj['log_level'] = log_level
    ctx.obj['log_file'] = log_file


@cli.command()
@click.option('--force', is_flag=True, help='Also back up repositories past the inactivity threshold')
@click.option('--repo', type=click.Path(exists=True, file_okay=False), help='Back up a single repository')
@click.option('--save/--no-save', default=True, help='Save the project report')
@click.pass_context
def backup(ctx, force: bool, repo: Optional[str], save: bool):
    """Commit, branch, push and prune every repository."""
    try:
        engine = _load_engine(ctx)
        results = engine.run_backup(force=force, repo=repo, cancel_event=_cancel_on_signal(),
                                    save_report=save)
    except Exception as e:
        _fail(f"Error during backup: {e}")

    if results['locked']:
        click.echo("⏭️  Another backup run is in progress - skipped")
        return

    for result in results['results']:
        stages = []
        for stage in STAGES:
            outcome = result.stage(stage)
            if outcome is not None and outcome.status != StageStatus.SKIPPED:
                stages.append(f"{stage}={outcome.status.value}")
        detail = result.error or result.skipped_reason or (", ".join(stages) or "nothing to do")
        click.echo(f"  {get_repository_indicator(result.snapshot, engine.inactivity_days)}  {result.name}: {detail}")

    summary = engine.summarize(results['results'])
    click.echo(f"\n📊 {summary['repositories']} repositories, {summary['actions']} actions, "
               f"{summary['degraded']} degraded, {summary['failures']} failed, {summary['skipped']} skipped")
    if results['report_file']:
        click.echo(f"📄 Report: {results['report_file']}")
    if summary['failures']:
        sys.exit(1)


@cli.command()
@click.option('--output', '-o', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.option('--repo', type=click.Path(exists=True, file_okay=False), help='Show a single repository')
@click.pass_context
def status(ctx, output: str, repo: Optional[str]):
    """Show the state of every repository without changing anything."""
    try:
        engine = _load_engine(ctx)
        results = engine.inspect_all(repo)
    except Exception as e:
        _fail(f"Error reading repository status: {e}")

    if output == 'json':
        payload = [
            r.snapshot.to_dict() if r.snapshot else {'path': r.path, 'name': r.name, 'error': r.error}
            for r in results
        ]
        click.echo(json.dumps(payload, indent=2))
        return

    if not results:
        click.echo("No git repositories found")
        return

    click.echo(f"{'Repository':<28} {'Branch':<20} {'Status':<14} {'Ahead':>5} {'Behind':>6} {'Stash':>5} {'Idle':>5}")
    click.echo("-" * 90)
    for result in results:
        snapshot = result.snapshot
        if snapshot is None:
            click.echo(f"{truncate_string(result.name, 28):<28} {'-':<20} {'ERROR':<14} "
                       f"{truncate_string(result.error or '', 60)}")
            continue
        days = "-" if snapshot.days_inactive is None else f"{snapshot.days_inactive}d"
        click.echo(
            f"{truncate_string(snapshot.name, 28):<28} {truncate_string(snapshot.branch, 20):<20} "
            f"{get_repository_indicator(snapshot, engine.inactivity_days, use_emoji=False):<14} "
            f"{format_optional_count(snapshot.ahead):>5} {format_optional_count(snapshot.behind):>6} "
            f"{snapshot.stashes:>5} {days:>5}"
        )


@cli.command()
@click.option('--repo', type=click.Path(exists=True, file_okay=False), help='Scan a single repository')
@click.option('--save/--no-save', default=True, help='Save the security report')
@click.pass_context
def scan(ctx, repo: Optional[str], save: bool):
    """Run secrets, file, dependency and integrity checks."""
    try:
        engine = _load_engine(ctx)
        results = engine.run_security_scan(repo=repo, cancel_event=_cancel_on_signal(), save_report=save)
    except Exception as e:
        _fail(f"Error during security scan: {e}")

    if results['locked']:
        click.echo("⏭️  Another security scan is in progress - skipped")
        return

    for result in results['results']:
        cells = []
        for check in SECURITY_CHECKS:
            check_result = result.checks.get(check) or CheckResult(CheckStatus.NOT_RUN)
            label = get_check_indicator(check_result.status, check_result.count, use_emoji=False)
            cells.append(f"{check}={label}")
        click.echo(f"  {result.name}: {', '.join(cells)}")
        for check, check_result in result.checks.items():
            if check_result.status == CheckStatus.FAILED:
                click.echo(f"      {check} error: {truncate_string(check_result.error or 'unknown error', 100)}")

    flagged = sum(1 for r in results['results']
                  if any(c.status in (CheckStatus.FINDINGS, CheckStatus.CHANGED) for c in r.checks.values()))
    failed = sum(1 for r in results['results']
                 if any(c.status == CheckStatus.FAILED for c in r.checks.values()))
    click.echo(f"\n📊 Scanned {len(results['results'])} repositories, {flagged} with findings, "
               f"{failed} with failed checks")
    if results['report_file']:
        click.echo(f"📄 Report: {results['report_file']}")
    elif not save:
        click.echo("")
        click.echo(results['report'])


@cli.group()
def archive():
    """Encrypted archives of sensitive files."""


@archive.command('create')
@click.option('--set', 'set_names', multiple=True, help='Backup set to archive (repeatable, default: all)')
@click.option('--prune/--no-prune', default=True, help='Apply archive retention afterwards')
@click.pass_context
def archive_create(ctx, set_names, prune: bool):
    """Archive and encrypt the configured backup sets."""
    try:
        engine = _load_engine(ctx)
        results = engine.run_archive(list(set_names) or None, prune=prune, cancel_event=_cancel_on_signal())
    except Exception as e:
        _fail(f"Error creating archives: {e}")

    if results['locked']:
        click.echo("⏭️  Another archive run is in progress - skipped")
        return

    failed = 0
    for result in results['results']:
        if result.error:
            failed += 1
            click.echo(f"  ❌ {result.backup_set}: {result.error}")
        elif result.skipped:
            click.echo(f"  ⏭️  {result.backup_set}: no files found")
        else:
            click.echo(f"  ✅ {result.backup_set}: {result.archive.name} ({result.file_count} files)")
    if results['pruned']:
        click.echo(f"🧹 Removed {len(results['pruned'])} old archives")
    if failed:
        sys.exit(1)


@archive.command('list')
@click.pass_context
def archive_list(ctx):
    """List archives, newest first."""
    try:
        engine = _load_engine(ctx)
        entries = engine.archive_manager.list_archives()
    except Exception as e:
        _fail(f"Error listing archives: {e}")

    if not entries:
        click.echo("No archives found")
        return

    click.echo(f"{'Archive':<48} {'Date':<17} {'Size':>8}  Backup Set")
    click.echo("-" * 90)
    for entry in entries:
        click.echo(f"{entry.name:<48} {format_date(entry.created_at, short=True):<17} "
                   f"{format_file_size(entry.size):>8}  {entry.backup_set}")
        if entry.manifest is not None:
            state = "complete" if entry.valid else "incomplete manifest"
            click.echo(f"  └─ {len(entry.manifest.paths)} paths, {state}")
        else:
            click.echo("  └─ manifest missing")


@archive.command('verify')
@click.argument('archive_name')
@click.pass_context
def archive_verify(ctx, archive_name: str):
    """Check an archive's checksum and test-decrypt it."""
    try:
        engine = _load_engine(ctx)
        result = engine.archive_manager.verify(engine.archive_manager.find_archive(archive_name))
    except Exception as e:
        _fail(f"Error verifying archive: {e}")

    click.echo(f"Checksum: {'passed' if result.checksum_ok else 'FAILED'}")
    if result.decrypt_ok is not None:
        click.echo(f"Decryption test: {'passed' if result.decrypt_ok else 'FAILED'}")
    if not result.verified:
        _fail(f"❌ Verification failed{': ' + result.error if result.error else ''}")
    click.echo("✅ Archive verified")


@archive.command('restore')
@click.argument('archive_name')
@click.option('--output', '-o', 'output_dir', help='Empty directory to restore into')
@click.pass_context
def archive_restore(ctx, archive_name: str, output_dir: Optional[str]):
    """Decrypt and unpack an archive."""
    try:
        engine = _load_engine(ctx)
        target = engine.archive_manager.restore(engine.archive_manager.find_archive(archive_name), output_dir)
    except Exception as e:
        _fail(f"Error restoring archive: {e}")
    click.echo(f"✅ Restored to: {target}")


@archive.command('prune')
@click.option('--dry-run', is_flag=True, help='Only show what would be removed')
@click.pass_context
def archive_prune(ctx, dry_run: bool):
    """Apply the daily/weekly/monthly retention policy."""
    try:
        engine = _load_engine(ctx)
        removed = engine.archive_manager.prune(dry_run=dry_run)
    except Exception as e:
        _fail(f"Error pruning archives: {e}")

    verb = "Would remove" if dry_run else "Removed"
    for entry in removed:
        click.echo(f"  {verb}: {entry.name}")
    click.echo(f"{verb} {len(removed)} archives")


@archive.command('status')
@click.pass_context
def archive_status(ctx):
    """Show key presence and archive totals."""
    try:
        engine = _load_engine(ctx)
        info = engine.archive_manager.status()
    except Exception as e:
        _fail(f"Error reading archive status: {e}")

    click.echo("Encrypted Backup System Status")
    click.echo("=" * 30)
    if info['key']['exists']:
        click.echo("✅ Encryption key: Available")
    else:
        click.echo("⚠️  Encryption key: Not generated")
    click.echo(f"Archive directory: {info['archive_dir']}")
    click.echo(f"Total archives: {info['archive_count']}")
    if info['archive_count']:
        click.echo(f"Total size: {format_file_size(info['total_size'])}")
        newest = info['newest']
        click.echo(f"Latest archive: {newest.name} ({format_date(newest.created_at)})")
    for name in info['incomplete']:
        click.echo(f"⚠️  Incomplete manifest: {name}")


@archive.command('key')
@click.pass_context
def archive_key(ctx):
    """Show where the archive key lives."""
    try:
        engine = _load_engine(ctx)
        info = engine.key_store.info()
    except Exception as e:
        _fail(f"Error reading key information: {e}")

    click.echo(f"Archive key location: {info['path']}")
    if info['exists']:
        click.echo(f"⚠️  Key exists (mode {info['mode']}). Keep this file secure!")
    else:
        click.echo("Key will be generated on first archive run")


@cli.group()
def quarantine():
    """Copy suspicious files aside, then remove originals explicitly."""


@quarantine.command('add')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--reason', required=True, help='Why the file is quarantined')
@click.pass_context
def quarantine_add(ctx, path: str, reason: str):
    """Copy a file into quarantine. The original is left in place."""
    try:
        engine = _load_engine(ctx)
        entry = engine.quarantine.copy(path, reason)
    except Exception as e:
        _fail(f"Error quarantining file: {e}")
    click.echo(f"✅ Copied to {entry.copy}")
    click.echo("The original is untouched; use 'quarantine remove' to delete it.")


@quarantine.command('remove')
@click.argument('copy_path', type=click.Path(exists=True, dir_okay=False))
@click.confirmation_option(prompt='Delete the original file?')
@click.pass_context
def quarantine_remove(ctx, copy_path: str):
    """Delete the original of a quarantined copy after verifying it."""
    try:
        engine = _load_engine(ctx)
        entry = engine.quarantine.load_entry(copy_path)
        if entry is None:
            _fail(f"No quarantine record for {copy_path}")
        engine.quarantine.remove_original(entry)
    except Exception as e:
        _fail(f"Error removing original: {e}")
    click.echo(f"✅ Removed {entry.original}")


@quarantine.command('list')
@click.pass_context
def quarantine_list(ctx):
    """List quarantined copies."""
    try:
        engine = _load_engine(ctx)
        entries = engine.quarantine.list_entries()
    except Exception as e:
        _fail(f"Error listing quarantine: {e}")
    if not entries:
        click.echo("Quarantine is empty")
    for path in entries:
        click.echo(str(path))


@cli.command()
@click.pass_context
def validate_config(ctx):
    """Validate configuration file."""
    try:
        config_manager = ConfigManager(ctx.obj.get('config_path'))
        config_manager.load_config()
    except Exception as e:
        _fail(f"❌ Configuration validation failed: {e}")

    click.echo("✅ Configuration loaded successfully")

    git_config = config_manager.get_git_config()
    email_config = config_manager.get_email_config()
    policy = config_manager.get_retention_policy()

    click.echo("\n📊 Configuration Summary:")
    click.echo(f"   Search roots: {len(config_manager.get_search_roots())}")
    for root in config_manager.get_search_roots():
        marker = "" if Path(root).is_dir() else " (missing)"
        click.echo(f"     - {root}{marker}")
    click.echo(f"   Auto-commit branches: {', '.join(git_config['auto_commit_branches'])}")
    click.echo(f"   Max backup branches: {policy.keep_count}")
    click.echo(f"   Archive retention: {policy.daily} daily / {policy.weekly} weekly / {policy.monthly} monthly")
    click.echo(f"   Backup sets: {', '.join(config_manager.get_backup_sets())}")

    if email_config:
        email_errors = EmailReporter.from_config(email_config).validate_configuration()
        if email_errors:
            click.echo("\n⚠️  Email configuration issues:")
            for error in email_errors:
                click.echo(f"     • {error}")
        else:
            click.echo("\n✅ Email configuration valid")
    else:
        click.echo("   📧 Email: Not configured (notifications are logged)")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
