"""CLI interface for pygsync."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click

from .api import DriveClient
from .auth import OAuthTokenProvider, require_token_provider
from .config import SyncSettings, config
from .exceptions import GSyncAPIError, GSyncConfigError, GSyncError, SyncBusyError
from .output import OutputFormatter
from .sync.models import ConflictPolicy, RunOutcome, RunResult, SyncPlan
from .utils import format_size, format_timestamp

logger = logging.getLogger(__name__)

POLICY_CHOICES = [p.value for p in ConflictPolicy] + ["local", "remote", "newer", "ask"]

# Minutes between runs of the watch command
DEFAULT_WATCH_INTERVAL = 30.0


def _resolve_vault(ctx: Any, out: OutputFormatter, path: str) -> Path:
    """Validate that PATH is an existing directory."""
    local_path = Path(path)
    if not local_path.exists():
        out.error(f"Path does not exist: {path}")
        ctx.exit(1)
    if not local_path.is_dir():
        out.error(f"Path is not a directory: {path}")
        ctx.exit(1)
    return local_path.resolve()


def build_settings(
    local_path: Path,
    remote_folder: Optional[str] = None,
    policy: Optional[str] = None,
    workers: Optional[int] = None,
    include_hidden: bool = False,
    exclude_folders: tuple[str, ...] = (),
    exclude_extensions: tuple[str, ...] = (),
) -> SyncSettings:
    """Merge stored sync defaults with command line overrides.

    Args:
        local_path: Vault directory (its name is the default remote folder)
        remote_folder: Sync-root folder name on Drive
        policy: Conflict policy name
        workers: Parallel workers
        include_hidden: Sync dot-files and dot-folders
        exclude_folders: Extra folder prefixes to exclude
        exclude_extensions: Extra extensions to exclude

    Returns:
        Validated SyncSettings

    Raises:
        GSyncConfigError: If a value is invalid
    """
    data = dict(config.get_sync_defaults())
    folder_name = (
        remote_folder
        or data.get("folder_name")
        or data.get("syncFolderName")
        or local_path.name
    )
    settings = SyncSettings.from_dict({**data, "folder_name": folder_name})

    if policy:
        settings.conflict_policy = ConflictPolicy.parse(policy).value
    if workers is not None:
        if workers < 1:
            raise GSyncConfigError("Number of workers must be at least 1")
        settings.max_workers = workers
    if include_hidden:
        settings.include_hidden = True
    settings.excluded_folders = settings.excluded_folders + list(exclude_folders)
    settings.excluded_extensions = settings.excluded_extensions + list(
        exclude_extensions
    )
    return settings


def _create_session(settings: SyncSettings, local_path: Path, client: DriveClient):
    """Build the SyncSession for a vault and its Drive folder."""
    from .sync import LocalStore, SyncSession, SyncStateStore

    return SyncSession(
        settings=settings,
        remote=client,
        local=LocalStore(local_path, use_trash=settings.use_trash),
        state_store=SyncStateStore(
            local_path, settings.folder_name, config.get_state_dir()
        ),
    )


def _watch_interval(interval: Optional[float]) -> float:
    """Minutes between watch runs: option, then stored default, then 30."""
    if interval is None:
        defaults = config.get_sync_defaults()
        interval = defaults.get(
            "auto_sync_interval",
            defaults.get("autoSyncInterval", DEFAULT_WATCH_INTERVAL),
        )
    try:
        minutes = float(interval)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise GSyncConfigError(f"Invalid sync interval: {interval!r}") from e
    if minutes < 0:
        raise GSyncConfigError("Sync interval must not be negative")
    return minutes


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pygsync")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """pygsync - Keep a notes vault in sync with a Google Drive folder."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pygsync").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option("--client-id", prompt="OAuth client ID", help="OAuth client ID")
@click.option(
    "--client-secret",
    prompt="OAuth client secret",
    hide_input=True,
    help="OAuth client secret",
)
@click.option(
    "--refresh-token",
    prompt="Refresh token",
    hide_input=True,
    help="OAuth refresh token with the drive.file scope",
)
@click.pass_context
def init(ctx: Any, client_id: str, client_secret: str, refresh_token: str) -> None:
    """Initialize Google Drive credentials.

    Stores the OAuth client and refresh token in
    ~/.config/pygsync/config.json for future use.
    """
    out: OutputFormatter = ctx.obj["out"]

    provider = OAuthTokenProvider(
        client_id=client_id,
        client_secret=client_secret,
        refresh_token=refresh_token,
    )

    out.info("Validating credentials...")
    validated = False
    try:
        provider.refresh()
        validated = True
        out.success("✓ Credentials are valid")
    except GSyncAPIError as e:
        out.error(f"Credential validation failed: {e}")
        if not click.confirm("Save credentials anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    try:
        config.save_credentials(client_id, client_secret, refresh_token)
        if validated and provider.access_token:
            config.save_access_token(provider.access_token, provider.expires_at)
    except OSError as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)

    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "✓ Configuration saved successfully"),
            ("Config file", str(config.get_config_path())),
            ("Note", "You can now run 'pygsync sync <vault>'"),
        ],
    )


def _display_plan(out: OutputFormatter, plan: SyncPlan) -> None:
    """Show what a run would do."""
    if plan.is_empty:
        out.info("No changes needed - everything is in sync!")
        return

    labels = {
        "uploads": "↑ Upload",
        "downloads": "↓ Download",
        "delete_local": "✗ Delete local",
        "delete_remote": "✗ Delete remote",
        "conflicts": "⚠ Conflict",
    }
    transfers = {"uploads": plan.uploads, "downloads": plan.downloads}
    for category, paths in plan.paths().items():
        if not paths:
            continue
        line = f"  {labels[category]}: {len(paths)} item(s)"
        if category in transfers:
            line += f" ({format_size(sum(e.size for e in transfers[category]))})"
        out.info(line)
        for path in paths:
            out.info(f"      {path}")


def _display_result(out: OutputFormatter, result: RunResult, dry_run: bool) -> None:
    """Display sync summary."""
    if out.json_output:
        data = result.to_dict()
        if result.plan is not None:
            data["plan"] = result.plan.paths()
        out.output_json(data)
        return

    if dry_run:
        out.info("Planned changes:")
        if result.plan is not None:
            _display_plan(out, result.plan)
        out.print("")
        out.success("Dry run complete!")
        return

    out.print("")
    if result.outcome == RunOutcome.SUCCESS:
        out.success("Sync complete!")
    elif result.outcome == RunOutcome.PARTIAL:
        out.warning(f"Sync finished with {result.failed_count} failure(s)")
    elif result.outcome == RunOutcome.CANCELLED:
        out.warning("Sync cancelled")

    if result.completed_count > 0:
        out.info(f"Total actions: {result.completed_count}")
        if result.uploaded:
            out.info(f"  Uploaded: {result.uploaded}")
        if result.downloaded:
            out.info(f"  Downloaded: {result.downloaded}")
        if result.deleted_local:
            out.info(f"  Deleted locally: {result.deleted_local}")
        if result.deleted_remote:
            out.info(f"  Deleted remotely: {result.deleted_remote}")
        if result.conflicts_resolved:
            out.info(f"  Conflicts resolved: {result.conflicts_resolved}")
    elif result.failed_count == 0:
        out.info("No changes needed - everything is in sync!")

    for failure in result.failures:
        out.warning(f"  {failure.action.value} {failure.path}: {failure.error}")


@main.command()
@click.argument("path", type=str)
@click.option(
    "--remote-folder",
    "-r",
    help="Name of the Drive folder to sync with (default: the vault's name)",
)
@click.option(
    "--policy",
    "-p",
    type=click.Choice(POLICY_CHOICES, case_sensitive=False),
    default=None,
    help="Conflict policy (default: prefer-newer)",
)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be synced without syncing"
)
@click.option(
    "--full",
    is_flag=True,
    help="Ignore the last sync time and compare everything (nothing is deleted)",
)
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Number of parallel workers for transfers (default: 4)",
)
@click.option("--include-hidden", is_flag=True, help="Also sync dot-files")
@click.option(
    "--exclude-folder",
    "-e",
    multiple=True,
    help="Folder to exclude, relative to the vault (repeatable)",
)
@click.option(
    "--exclude-ext",
    "-x",
    multiple=True,
    help="File extension to exclude, e.g. .tmp (repeatable)",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Disable progress bars",
)
@click.pass_context
def sync(
    ctx: Any,
    path: str,
    remote_folder: Optional[str],
    policy: Optional[str],
    dry_run: bool,
    full: bool,
    workers: Optional[int],
    include_hidden: bool,
    exclude_folder: tuple[str, ...],
    exclude_ext: tuple[str, ...],
    no_progress: bool,
) -> None:
    """Sync a local vault with a Google Drive folder.

    PATH: Local vault directory

    Examples:
        pygsync sync ~/notes
        pygsync sync ~/notes -r "Notes backup" --policy keep-both
        pygsync sync ~/notes --dry-run
        pygsync sync ~/notes -e Archive -x .tmp
    """
    from .cli_progress import run_sync_with_progress

    out: OutputFormatter = ctx.obj["out"]
    local_path = _resolve_vault(ctx, out, path)

    try:
        settings = build_settings(
            local_path,
            remote_folder=remote_folder,
            policy=policy,
            workers=workers,
            include_hidden=include_hidden,
            exclude_folders=exclude_folder,
            exclude_extensions=exclude_ext,
        )
    except (GSyncConfigError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)
        return  # Unreachable, but helps type checker

    token_provider = require_token_provider(ctx, out)

    if not out.quiet:
        out.info(f"Local path: {local_path}")
        out.info(f"Remote folder: {settings.folder_name}")
        out.info(f"Conflict policy: {settings.conflict_policy}")
        out.info("")  # Empty line for readability

    try:
        with DriveClient(token_provider) as client:
            session = _create_session(settings, local_path, client)
            if no_progress or out.quiet or out.json_output:
                result = session.run(dry_run=dry_run, full=full)
            else:
                result = run_sync_with_progress(session, dry_run=dry_run, full=full)

    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
        return
    except GSyncError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
        return

    if result.outcome == RunOutcome.ABORTED:
        if out.json_output:
            out.output_json(result.to_dict())
        out.error(f"Sync aborted: {result.error}")
        ctx.exit(1)
        return

    _display_result(out, result, dry_run)


def _run_interruptible(session: Any) -> RunResult:
    """Run one sync on a worker thread so Ctrl-C can cancel it cleanly.

    On KeyboardInterrupt the session is asked to stop starting new items,
    the items in flight finish, and the interrupt is re-raised.
    """
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(session.run)
        try:
            return future.result()
        except KeyboardInterrupt:
            session.cancel()
            future.result()
            raise


def _watch_once(out: OutputFormatter, session: Any, number: int) -> None:
    """Run and report one pass of the watch loop; errors do not stop it."""
    out.info(f"[{datetime.now():%H:%M:%S}] Run {number}")
    try:
        result = _run_interruptible(session)
    except SyncBusyError as e:
        out.warning(f"Skipped: {e}")
        return
    except GSyncError as e:
        out.error(f"Sync failed: {e}")
        return

    if result.outcome == RunOutcome.ABORTED:
        out.error(f"Sync aborted: {result.error}")
        return
    _display_result(out, result, dry_run=False)


@main.command()
@click.argument("path", type=str)
@click.option(
    "--remote-folder",
    "-r",
    help="Name of the Drive folder to sync with (default: the vault's name)",
)
@click.option(
    "--policy",
    "-p",
    type=click.Choice(POLICY_CHOICES, case_sensitive=False),
    default=None,
    help="Conflict policy (default: prefer-newer)",
)
@click.option(
    "--interval",
    "-i",
    type=float,
    default=None,
    help="Minutes between runs (default: 30)",
)
@click.option(
    "--runs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many runs (default: until interrupted)",
)
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Number of parallel workers for transfers (default: 4)",
)
@click.option("--include-hidden", is_flag=True, help="Also sync dot-files")
@click.option(
    "--exclude-folder",
    "-e",
    multiple=True,
    help="Folder to exclude, relative to the vault (repeatable)",
)
@click.option(
    "--exclude-ext",
    "-x",
    multiple=True,
    help="File extension to exclude, e.g. .tmp (repeatable)",
)
@click.pass_context
def watch(
    ctx: Any,
    path: str,
    remote_folder: Optional[str],
    policy: Optional[str],
    interval: Optional[float],
    runs: Optional[int],
    workers: Optional[int],
    include_hidden: bool,
    exclude_folder: tuple[str, ...],
    exclude_ext: tuple[str, ...],
) -> None:
    """Sync a vault repeatedly at a fixed interval.

    PATH: Local vault directory

    The first run starts immediately. A run that fails, aborts or finds
    another sync in progress is reported and the next run happens as
    scheduled. Press Ctrl-C to stop; a run in progress finishes its
    current items and keeps the previous sync time.

    Examples:
        pygsync watch ~/notes
        pygsync watch ~/notes --interval 5
    """
    out: OutputFormatter = ctx.obj["out"]
    local_path = _resolve_vault(ctx, out, path)

    try:
        settings = build_settings(
            local_path,
            remote_folder=remote_folder,
            policy=policy,
            workers=workers,
            include_hidden=include_hidden,
            exclude_folders=exclude_folder,
            exclude_extensions=exclude_ext,
        )
        minutes = _watch_interval(interval)
    except (GSyncConfigError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)
        return

    token_provider = require_token_provider(ctx, out)
    out.info(
        f"Watching {local_path} <-> {settings.folder_name} "
        f"every {minutes:g} minute(s). Press Ctrl-C to stop."
    )

    with DriveClient(token_provider) as client:
        session = _create_session(settings, local_path, client)
        completed = 0
        try:
            while runs is None or completed < runs:
                if completed:
                    time.sleep(minutes * 60)
                completed += 1
                _watch_once(out, session, completed)
        except KeyboardInterrupt:
            out.warning("\nWatch stopped by user")
            ctx.exit(130)
            return

    out.info(f"Finished after {completed} run(s)")


@main.command()
@click.argument("path", type=str)
@click.option("--remote-folder", "-r", help="Name of the Drive folder")
@click.pass_context
def status(ctx: Any, path: str, remote_folder: Optional[str]) -> None:
    """Show the stored sync state of a vault."""
    from .sync import SyncStateStore

    out: OutputFormatter = ctx.obj["out"]
    local_path = _resolve_vault(ctx, out, path)

    try:
        settings = build_settings(local_path, remote_folder=remote_folder)
    except GSyncConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    store = SyncStateStore(local_path, settings.folder_name, config.get_state_dir())
    state = store.state

    if out.json_output:
        out.output_json(
            {
                **state.to_dict(),
                "state_file": str(store.state_file),
                "credentials_configured": config.is_configured(),
            }
        )
        return

    out.print_summary(
        "Sync Status",
        [
            ("Local path", str(local_path)),
            ("Remote folder", settings.folder_name),
            ("Folder ID", state.root_id or "(not resolved yet)"),
            ("Last sync", format_timestamp(state.watermark)),
            ("Conflict policy", settings.conflict_policy),
            ("Excluded folders", ", ".join(settings.excluded_folders) or "-"),
            ("Credentials", "configured" if config.is_configured() else "missing"),
            ("State file", str(store.state_file)),
        ],
    )


@main.command()
@click.argument("path", type=str)
@click.option("--remote-folder", "-r", help="Name of the Drive folder")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx: Any, path: str, remote_folder: Optional[str], yes: bool) -> None:
    """Forget the last sync time and folder ID of a vault.

    The next sync then behaves like a first sync: everything missing on
    either side is copied and nothing is deleted.
    """
    from .sync import SyncStateStore

    out: OutputFormatter = ctx.obj["out"]
    local_path = _resolve_vault(ctx, out, path)

    try:
        settings = build_settings(local_path, remote_folder=remote_folder)
    except GSyncConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if not yes and not click.confirm(
        f"Reset sync state for {local_path} <-> {settings.folder_name}?",
        default=False,
    ):
        out.warning("Reset cancelled.")
        ctx.exit(1)
        return

    store = SyncStateStore(local_path, settings.folder_name, config.get_state_dir())
    if store.clear():
        out.success("✓ Sync state cleared")
    else:
        out.info("No sync state stored for this vault")


if __name__ == "__main__":
    main()
