"""CLI interface for the Puter cloud filesystem."""

import fnmatch
import logging
import posixpath
from pathlib import Path
from typing import Any, Optional

import click

from . import __version__
from .api import PuterClient
from .config import SessionContext, config
from .exceptions import (
    InsufficientSpaceError,
    PuterAPIError,
    PuterConfigError,
    PuterError,
    PuterNotFoundError,
)
from .models import DiskUsage, FileEntry
from .output import OutputFormatter
from .sync import (
    ConflictResolution,
    SyncEngine,
    SyncStateManager,
    fixed_resolution,
)
from .transfer import TEXT_CONTENT_TYPE
from .utils import format_timestamp, resolve_remote_path

logger = logging.getLogger(__name__)

GLOB_CHARS = "*?["


def require_client(ctx: Any, out: OutputFormatter) -> PuterClient:
    """Build an API client or exit when no token is configured."""
    token = ctx.obj.get("token")
    if not config.is_configured() and not token:
        out.error("Auth token not configured.")
        out.info("Run 'puter init' to configure your credentials")
        ctx.exit(1)
    try:
        return PuterClient(auth_token=token)
    except PuterConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        raise  # Unreachable, but helps type checker


def get_session(client: PuterClient) -> SessionContext:
    """Session from the config, asking the server for the username if unknown."""
    session = config.session()
    if not session.username:
        info = client.whoami()
        username = str(info.get("username", ""))
        session = SessionContext(username=username, cwd=config.cwd)
    return session


def remote_path(path: str) -> str:
    """Resolve a user-supplied remote path against the working directory."""
    return resolve_remote_path(config.cwd, path)


def show_disk_usage(out: OutputFormatter, usage: DiskUsage) -> None:
    out.print(
        f"Used: {out.format_size(usage.used)} | "
        f"Capacity: {out.format_size(usage.capacity)} | "
        f"Free: {out.format_size(usage.free)} | "
        f"Usage: {usage.percent:.1f}%"
    )


def match_remote(client: PuterClient, pattern: str, files_only: bool = False) -> list[FileEntry]:
    """Expand a remote path that may contain wildcards in its last segment.

    Args:
        client: Puter API client
        pattern: Absolute remote path or pattern
        files_only: Ignore directories

    Returns:
        Matching entries (empty when nothing matches)
    """
    parent, name = posixpath.split(pattern)
    if not any(c in name for c in GLOB_CHARS):
        try:
            entry = client.stat(pattern)
        except PuterNotFoundError:
            return []
        return [] if files_only and entry.is_dir else [entry]

    entries = client.list_directory(parent or "/")
    return [
        e
        for e in entries
        if fnmatch.fnmatchcase(e.name, name) and not (files_only and e.is_dir)
    ]


@click.group()
@click.option(
    "--token", "-t", envvar="PUTER_AUTH_TOKEN", help="Puter auth token"
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: Any,
    token: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """pyputer - Manage and sync files on the Puter cloud."""
    ctx.ensure_object(dict)
    ctx.obj["token"] = token
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyputer").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--token",
    "-t",
    prompt="Enter your Puter auth token",
    hide_input=True,
    help="Puter auth token",
)
@click.option("--username", "-u", help="Puter username (read from the server if omitted)")
@click.pass_context
def init(ctx: Any, token: str, username: Optional[str]) -> None:
    """Initialize Puter configuration.

    Stores your auth token in ~/.config/pyputer/config.json for future use.
    """
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating auth token...")
    try:
        user_info = PuterClient(auth_token=token).whoami()
        username = username or user_info.get("username")
        out.success("✓ Auth token is valid")
    except PuterAPIError as e:
        out.error(f"Auth token validation failed: {e}")
        if not click.confirm("Save auth token anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    if not username:
        username = click.prompt("Enter your Puter username")

    config.save_credentials(token, str(username))
    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "✓ Configuration saved successfully"),
            ("User", str(username)),
            ("Config file", str(config.get_config_path())),
        ],
    )


@main.command()
@click.pass_context
def whoami(ctx: Any) -> None:
    """Show the user owning the auth token."""
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    try:
        info = client.whoami()
    except PuterAPIError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(info)
        return
    out.print_summary(
        "Account",
        [
            ("Username", str(info.get("username", "-"))),
            ("Email", str(info.get("email") or "-")),
            ("UUID", str(info.get("uuid", "-"))),
            ("Temporary", "Yes" if info.get("is_temp") else "No"),
        ],
    )


@main.command()
@click.pass_context
def pwd(ctx: Any) -> None:
    """Print the current remote directory."""
    out: OutputFormatter = ctx.obj["out"]
    if out.json_output:
        out.output_json({"cwd": config.cwd})
    else:
        out.print(config.cwd)


@main.command()
@click.argument("path", type=str, required=False, default=None)
@click.pass_context
def cd(ctx: Any, path: Optional[str]) -> None:
    """Change the current remote directory.

    PATH: Directory to change to (home when omitted). Supports "..", "~"
    and absolute paths.
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    target = remote_path(path or "~")
    try:
        entry = client.stat(target)
    except PuterAPIError as e:
        out.error(f'Cannot access "{target}": {e}')
        ctx.exit(1)
        return

    if not entry.is_dir:
        out.error(f'"{target}" is not a directory')
        ctx.exit(1)

    # The server returns the canonical spelling of the name
    new_cwd = entry.path or target
    config.save_cwd(new_cwd)
    out.print(new_cwd)


@main.command()
@click.argument("path", type=str, required=False, default=None)
@click.pass_context
def ls(ctx: Any, path: Optional[str]) -> None:
    """List a remote directory.

    PATH: Directory to list (current directory when omitted)
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    target = remote_path(path or ".")
    try:
        entries = client.list_directory(target)
    except PuterAPIError as e:
        out.error(f"Failed to list {target}: {e}")
        ctx.exit(1)
        return

    entries.sort(key=lambda e: (not e.is_dir, e.name.lower()))
    if out.json_output:
        out.output_json([e.to_dict() for e in entries])
        return
    if not entries:
        out.info(f"{target} is empty")
        return

    rows = [
        {
            "type": "d" if e.is_dir else "-",
            "name": f"{e.name}/" if e.is_dir else e.name,
            "size": "-" if e.is_dir else out.format_size(e.size),
            "modified": format_timestamp(e.modified),
            "writable": "rw" if e.writable else "r-",
        }
        for e in entries
    ]
    out.output_table(
        rows,
        ["type", "writable", "size", "modified", "name"],
        {
            "type": "Type",
            "writable": "Mode",
            "size": "Size",
            "modified": "Modified",
            "name": "Name",
        },
    )


@main.command()
@click.argument("paths", nargs=-1, type=str)
@click.pass_context
def stat(ctx: Any, paths: tuple[str, ...]) -> None:
    """Show information about remote files or directories.

    PATHS: Paths to inspect (current directory when omitted)
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    failed = False
    for path in paths or (".",):
        target = remote_path(path)
        try:
            entry = client.stat(target)
        except PuterAPIError as e:
            out.error(f"Failed to get stat info for {target}: {e}")
            failed = True
            continue

        if out.json_output:
            out.output_json(entry.to_dict())
            continue
        out.print_summary(
            "File/Directory Information",
            [
                ("Name", entry.name),
                ("Path", entry.path),
                ("Type", "Directory" if entry.is_dir else "File"),
                ("Size", out.format_size(entry.size) if entry.size else "N/A"),
                ("Created", format_timestamp(entry.created)),
                ("Modified", format_timestamp(entry.modified)),
                ("Writable", "Yes" if entry.writable else "No"),
                ("Owner", entry.owner or "-"),
                ("UID", entry.uid or "-"),
            ],
        )

    if failed:
        ctx.exit(1)


@main.command()
@click.argument("path", type=str)
@click.option(
    "--parents", "-p", is_flag=True, help="Create missing parent directories"
)
@click.pass_context
def mkdir(ctx: Any, path: str, parents: bool) -> None:
    """Create a remote directory.

    PATH: Directory to create
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    target = remote_path(path)
    try:
        entry = client.mkdir(
            target,
            overwrite=False,
            dedupe_name=True,
            create_missing_parents=parents,
        )
    except PuterAPIError as e:
        out.error(f"Failed to create directory {target}: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(entry.to_dict())
    else:
        out.success(f"Directory created: {entry.path or target}")


@main.command()
@click.argument("source", type=str)
@click.argument("destination", type=str)
@click.pass_context
def mv(ctx: Any, source: str, destination: str) -> None:
    """Move or rename a remote file or directory.

    When DESTINATION is an existing directory the source is moved into it;
    otherwise the source takes the name (and parent) of DESTINATION.
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    source_path = remote_path(source)
    dest_path = remote_path(destination)

    try:
        source_entry = client.stat(source_path)
        try:
            dest_entry: Optional[FileEntry] = client.stat(dest_path)
        except PuterNotFoundError:
            dest_entry = None

        if dest_entry is not None and dest_entry.is_dir:
            result = client.move(
                source_entry.uid, dest_path, overwrite=False, new_name=source_entry.name
            )
        else:
            dest_parent, new_name = posixpath.split(dest_path)
            if dest_parent == posixpath.dirname(source_path):
                result = client.rename(source_entry.uid, new_name)
            else:
                result = client.move(
                    source_entry.uid, dest_parent, overwrite=False, new_name=new_name
                )
    except PuterAPIError as e:
        out.error(f"Failed to move {source_path}: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(result.to_dict())
    else:
        out.success(f'Moved "{source_path}" to "{result.path}"')


@main.command()
@click.argument("source", type=str)
@click.argument("destination", type=str)
@click.option("--overwrite", is_flag=True, help="Replace an existing destination")
@click.pass_context
def cp(ctx: Any, source: str, destination: str, overwrite: bool) -> None:
    """Copy a remote file or directory into DESTINATION."""
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    source_path = remote_path(source)
    dest_path = remote_path(destination)
    try:
        copied = client.copy(
            source_path, dest_path, overwrite=overwrite, dedupe_name=not overwrite
        )
    except PuterAPIError as e:
        out.error(f"Failed to copy {source_path}: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json([entry.to_dict() for entry in copied])
        return
    for entry in copied:
        out.success(f'Copied "{source_path}" to "{entry.path}"')


@main.command()
@click.argument("names", nargs=-1, type=str, required=True)
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def rm(ctx: Any, names: tuple[str, ...], force: bool) -> None:
    """Move remote files or directories to Trash.

    NAMES: Paths to remove; the last segment may contain wildcards
    (quote them so the local shell does not expand them).

    Run "puter clean" to empty the Trash.
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    try:
        session = get_session(client)
        matched: list[FileEntry] = []
        for name in names:
            matched.extend(match_remote(client, remote_path(name)))
    except PuterAPIError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if not matched:
        out.error("No files or directories found matching the pattern.")
        ctx.exit(1)

    if not force:
        out.warning("The following items will be moved to Trash:")
        for entry in matched:
            out.warning(f"- {entry.path}")
        if not click.confirm(
            f"Are you sure you want to move these {len(matched)} item(s) to Trash?",
            default=False,
        ):
            out.warning("Operation cancelled.")
            return

    failed = 0
    for entry in matched:
        try:
            moved = client.move(entry.uid, session.trash, overwrite=False, new_name=entry.uid)
            out.success(f'✓ Moved "{entry.path}" to Trash')
            logger.debug(f"Trashed {entry.path} as {moved.path}")
        except PuterAPIError as e:
            out.error(f'Failed to remove "{entry.path}": {e}')
            failed += 1

    if failed:
        ctx.exit(1)


@main.command()
@click.pass_context
def clean(ctx: Any) -> None:
    """Permanently delete everything in Trash."""
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    try:
        session = get_session(client)
        client.delete([session.trash], recursive=True, descendants_only=True)
    except PuterAPIError as e:
        out.error(f"Failed to empty Trash: {e}")
        ctx.exit(1)
        return
    out.success(f"✓ Emptied {session.trash}")


@main.command()
@click.argument("path", type=str)
@click.pass_context
def cat(ctx: Any, path: str) -> None:
    """Print the content of a remote file."""
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    target = remote_path(path)
    try:
        content = client.read(target)
    except PuterAPIError as e:
        out.error(f"Failed to read {target}: {e}")
        ctx.exit(1)
        return

    if not content:
        out.warning("File is empty.")
        return
    click.echo(content.decode("utf-8", errors="replace"), nl=not content.endswith(b"\n"))


@main.command()
@click.argument("path", type=str)
@click.argument("content", nargs=-1, type=str)
@click.pass_context
def touch(ctx: Any, path: str, content: tuple[str, ...]) -> None:
    """Create or replace a remote text file.

    PATH: File to create; missing parent directories are created

    CONTENT: Optional text written to the file (words are joined by spaces)
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    target = remote_path(path)
    parent, name = posixpath.split(target)
    text = " ".join(content)

    try:
        client.ensure_directory(parent)
        entry = client.write(
            text.encode("utf-8"),
            destination=parent,
            name=name,
            dedupe_name=False,
            overwrite=True,
            content_type=TEXT_CONTENT_TYPE,
        )
    except InsufficientSpaceError as e:
        out.error(str(e))
        show_disk_usage(out, e.usage)
        ctx.exit(1)
        return
    except PuterAPIError as e:
        out.error(f"Failed to create {target}: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(entry.to_dict())
    else:
        out.success(f'File "{entry.name}" created: {entry.path}')


@main.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, path_type=Path), required=True)
@click.option("--to", "destination", default=".", help="Remote directory (default: current)")
@click.option(
    "--dedupe/--no-dedupe",
    default=True,
    help="Let the server rename on name collision (default: on)",
)
@click.option("--overwrite", is_flag=True, help="Replace existing remote files")
@click.pass_context
def push(
    ctx: Any,
    files: tuple[Path, ...],
    destination: str,
    dedupe: bool,
    overwrite: bool,
) -> None:
    """Upload local files to a remote directory.

    FILES: Local files to upload (directories are skipped; use "sync")
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    target = remote_path(destination)
    uploaded: list[dict] = []
    failed = 0
    for file_path in files:
        if file_path.is_dir():
            out.warning(f"Skipping directory {file_path} (use 'puter sync')")
            continue
        try:
            entry = client.upload_file(
                file_path, target, dedupe_name=dedupe, overwrite=overwrite
            )
        except InsufficientSpaceError as e:
            out.error(str(e))
            show_disk_usage(out, e.usage)
            ctx.exit(1)
            return
        except (PuterAPIError, OSError) as e:
            out.error(f"Failed to upload {file_path}: {e}")
            failed += 1
            continue
        uploaded.append(entry.to_dict())
        out.success(f'✓ Uploaded "{file_path}" to {entry.path}')

    if out.json_output:
        out.output_json(uploaded)
    if failed:
        ctx.exit(1)


@main.command()
@click.argument("remote", type=str)
@click.argument("local", type=click.Path(path_type=Path), required=False, default=None)
@click.option("--overwrite", is_flag=True, help="Replace existing local files")
@click.pass_context
def pull(ctx: Any, remote: str, local: Optional[Path], overwrite: bool) -> None:
    """Download remote files.

    REMOTE: Remote file; the last segment may contain wildcards

    LOCAL: Destination file or directory (default: current directory)
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    pattern = remote_path(remote)
    try:
        matched = match_remote(client, pattern, files_only=True)
    except PuterAPIError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if not matched:
        out.error("No files found matching the pattern.")
        ctx.exit(1)

    local = local or Path(".")
    into_directory = local.is_dir() or len(matched) > 1
    failed = 0
    for entry in matched:
        output_path = local / entry.name if into_directory else local
        try:
            client.download_file(entry.path, output_path, overwrite=overwrite)
        except PuterError as e:
            out.error(f"Failed to download {entry.path}: {e}")
            failed += 1
            continue
        out.success(
            f'✓ Downloaded "{entry.path}" to {output_path} '
            f"({out.format_size(output_path.stat().st_size)})"
        )

    if failed:
        ctx.exit(1)


@main.command()
@click.pass_context
def df(ctx: Any) -> None:
    """Display storage space usage information."""
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    try:
        usage = client.get_disk_usage()
    except PuterAPIError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(usage.to_dict())
    else:
        show_disk_usage(out, usage)


def prompt_conflict_resolution(conflicts: list[str]) -> ConflictResolution:
    """Ask once how to resolve every conflicting path."""
    choice = click.prompt(
        f"{len(conflicts)} file(s) changed on both sides. Keep which version?",
        type=click.Choice([r.value for r in ConflictResolution]),
        default=ConflictResolution.SKIP.value,
    )
    return ConflictResolution(choice)


@main.command()
@click.argument("local", type=click.Path(path_type=Path))
@click.argument("remote", type=str)
@click.option(
    "--delete", is_flag=True, help="Move remote files missing locally to Trash"
)
@click.option(
    "--recursive/--no-recursive",
    default=True,
    help="Descend into subdirectories (default: on)",
)
@click.option(
    "--on-conflict",
    type=click.Choice(["ask"] + [r.value for r in ConflictResolution]),
    default="ask",
    help="How to resolve files changed on both sides (default: ask)",
)
@click.option(
    "--overwrite",
    is_flag=True,
    help="Local versions win conflicts (same as --on-conflict keep-local)",
)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be synced without syncing"
)
@click.option(
    "--no-state",
    is_flag=True,
    help="Do not read or record the last-sync baseline",
)
@click.option(
    "--reset-state",
    is_flag=True,
    help="Forget the last-sync baseline of this pair before syncing (ignored with --dry-run)",
)
@click.option(
    "--exclude-dot-files", is_flag=True, help="Ignore files and folders starting with a dot"
)
@click.pass_context
def sync(
    ctx: Any,
    local: Path,
    remote: str,
    delete: bool,
    recursive: bool,
    on_conflict: str,
    overwrite: bool,
    dry_run: bool,
    no_state: bool,
    reset_state: bool,
    exclude_dot_files: bool,
) -> None:
    """Sync a local directory with a remote directory.

    LOCAL: Local directory

    REMOTE: Remote directory (created on first upload if missing)

    The newer side of each file wins. Files changed on both sides since the
    last sync are conflicts, resolved together with --on-conflict.

    Examples:
        puter sync ./site ~/site
        puter sync ./site /alice/site --delete --dry-run
        puter sync ./docs docs --on-conflict keep-remote
    """
    out: OutputFormatter = ctx.obj["out"]
    client = require_client(ctx, out)

    if overwrite:
        handler = fixed_resolution(ConflictResolution.KEEP_LOCAL)
    elif on_conflict == "ask" and out.json_output:
        # stdout carries only the JSON document
        handler = fixed_resolution(ConflictResolution.SKIP)
    elif on_conflict == "ask":
        handler = prompt_conflict_resolution
    else:
        handler = fixed_resolution(ConflictResolution(on_conflict))

    target = remote_path(remote)
    state_manager = None if no_state else SyncStateManager()
    if state_manager is not None and reset_state and not dry_run:
        if state_manager.clear_state(local, target):
            out.info("Cleared the last-sync baseline")

    try:
        session = get_session(client)
        engine = SyncEngine(
            client,
            session,
            output=OutputFormatter(json_output=out.json_output, quiet=out.quiet or out.json_output),
            state_manager=state_manager,
        )
        result = engine.sync(
            local,
            target,
            delete=delete,
            recursive=recursive,
            conflict_handler=handler,
            dry_run=dry_run,
            exclude_dot_files=exclude_dot_files,
        )
    except KeyboardInterrupt:
        ctx.exit(130)
        return
    except ValueError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    except PuterError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(result.to_dict())
    if result.failed:
        ctx.exit(1)


if __name__ == "__main__":
    main()
