"""SKGraft CLI — apply skill packages to a project from the terminal.

Commands:
    init        Prepare a project for skills (data dir + empty state)
    new         Scaffold a new skill package
    check       Validate a skill package without applying it
    apply       Apply a skill package, all or nothing
    status      Show applied skills and path remaps
    remap       Redirect where a declared path is written
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import MANIFEST_FILE, SKILLS_SYSTEM_VERSION, __version__
from .apply import SkillApplier
from .config import EngineConfig
from .errors import SkillApplyError
from .models import SkillManifest, generate_manifest_yaml, parse_semver
from .sandbox import sanitize_remap
from .state import ProjectStateStore
from .validator import load_manifest

console = Console()


def _config(project: Optional[str], **overrides) -> EngineConfig:
    try:
        return EngineConfig.from_env(Path(project) if project else None, **overrides)
    except ValueError as exc:
        console.print(f"[red]Bad configuration:[/red] {escape(str(exc))}")
        sys.exit(1)


def _store(config: EngineConfig) -> ProjectStateStore:
    return ProjectStateStore(config.root, config.state_path, (".git", config.data_dir))


@contextmanager
def apply_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive lock file for the duration of an apply.

    Raises:
        RuntimeError: If another process holds the lock.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError as exc:
        holder = path.read_text().strip() if path.exists() else "?"
        raise RuntimeError(
            f"another apply is in progress (pid {holder}); remove {path} if it is stale"
        ) from exc
    try:
        with os.fdopen(fd, "w") as fh:
            fh.write(str(os.getpid()))
        yield
    finally:
        path.unlink(missing_ok=True)


@click.group()
@click.version_option(__version__, prog_name="skgraft")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool) -> None:
    """SKGraft — transactional skill packages for assistant projects.

    Graft skills onto a project checkout: new files, replaced files and
    post-install commands, rolled back as a whole if anything fails.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@main.command()
@click.option("--project", default=None, help="Project root (default: SKGRAFT_PROJECT or cwd).")
@click.option("--core-version", default=None, help="Version of the host core in this project.")
def init(project: Optional[str], core_version: Optional[str]) -> None:
    """Prepare a project for skills.

    Creates the data directory and an empty state.json.
    """
    config = _config(project)
    if core_version:
        try:
            parse_semver(core_version)
        except ValueError as exc:
            console.print(f"[red]Init failed:[/red] {escape(str(exc))}")
            sys.exit(1)

    store = _store(config)
    existed = store.exists()
    state = store.initialize(core_version=core_version)
    if existed:
        console.print(f"[yellow]Already initialized:[/yellow] {config.state_path}")
    else:
        console.print(f"[green]Initialized:[/green] {config.state_path}")
    console.print(f"  Skills system: {state.skills_system_version}")
    console.print(f"  Core version:  {state.core_version or '-'}")
    console.print(f"\nAdd [cyan]{config.data_dir}/[/cyan] to .gitignore to keep snapshots untracked.")


@main.command()
@click.argument("name")
@click.option("--dir", "directory", default=".", help="Parent directory for the package.")
@click.option("--core-version", default="0.1.0", help="Core version the skill targets.")
@click.option("--description", "desc", default="", help="Skill description.")
def new(name: str, directory: str, core_version: str, desc: str) -> None:
    """Scaffold a new skill package.

    Creates manifest.yaml plus empty add/ and modify/ payload trees.
    """
    base = Path(directory) / name
    if base.exists():
        console.print(f"[red]Directory already exists:[/red] {base}")
        sys.exit(1)

    try:
        manifest = SkillManifest(
            skill=name,
            version="0.1.0",
            core_version=core_version,
            min_skills_system_version=SKILLS_SYSTEM_VERSION,
            description=desc or f"{name} skill",
        )
    except ValueError as exc:
        console.print(f"[red]Scaffold failed:[/red] {escape(str(exc))}")
        sys.exit(1)

    base.mkdir(parents=True)
    (base / "add").mkdir()
    (base / "modify").mkdir()
    (base / MANIFEST_FILE).write_text(generate_manifest_yaml(manifest))

    console.print(f"\n[green]Skill scaffolded:[/green] {base}")
    console.print(f"  {MANIFEST_FILE}    — adds, modifies, post_apply")
    console.print("  add/             — payloads for new files")
    console.print("  modify/          — replacement content for existing files")
    console.print(f"\nNext: fill in the manifest, then [cyan]skgraft apply {base}[/cyan]")


@main.command()
@click.argument("package", type=click.Path(exists=True, file_okay=False))
def check(package: str) -> None:
    """Validate a skill package without touching any project."""
    try:
        manifest = load_manifest(Path(package), SKILLS_SYSTEM_VERSION)
    except SkillApplyError as exc:
        console.print(f"[red]Invalid ({exc.kind}):[/red] {escape(str(exc))}")
        sys.exit(1)

    console.print(f"\n[green]Valid:[/green] {manifest.skill} v{manifest.version}")
    console.print(f"  Core:      {manifest.core_version}")
    console.print(f"  Adds:      {len(manifest.adds)}")
    console.print(f"  Modifies:  {len(manifest.modifies)}")
    console.print(f"  Post-apply commands: {len(manifest.post_apply)}")


@main.command()
@click.argument("package", type=click.Path(exists=True, file_okay=False))
@click.option("--project", default=None, help="Project root (default: SKGRAFT_PROJECT or cwd).")
@click.option("--timeout", "timeout", type=float, default=None, help="Per-command post_apply timeout (s).")
def apply(package: str, project: Optional[str], timeout: Optional[float]) -> None:
    """Apply a skill package to the project, all or nothing."""
    config = _config(project, hook_timeout_s=timeout)
    try:
        with apply_lock(config.lock_path):
            result = SkillApplier(config).apply(Path(package))
    except RuntimeError as exc:
        console.print(f"[red]Apply failed:[/red] {escape(str(exc))}")
        sys.exit(1)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    if result.success and result.already_applied:
        console.print(f"[dim]Already applied:[/dim] {result.skill} v{result.version}")
        return
    if result.success:
        console.print(f"\n[green]Applied:[/green] {result.skill} v{result.version}")
        for path in result.files:
            console.print(f"  {path}")
        return

    if result.fatal:
        console.print(f"[red bold]{escape(result.error or '')}[/red bold]")
        console.print("[red]The project may be inconsistent; inspect it with git status.[/red]")
        sys.exit(2)
    console.print(f"[red]Apply failed:[/red] {escape(result.error or '')}")
    console.print("[dim]The project was restored to its previous state.[/dim]")
    sys.exit(1)


@main.command()
@click.option("--project", default=None, help="Project root (default: SKGRAFT_PROJECT or cwd).")
def status(project: Optional[str]) -> None:
    """Show applied skills and path remaps."""
    config = _config(project)
    store = _store(config)
    try:
        state = store.read()
    except ValueError as exc:
        console.print(f"[red]Status failed:[/red] {escape(str(exc))}")
        sys.exit(1)

    if not state.applied_skills:
        console.print("[dim]No skills applied.[/dim]")
    else:
        table = Table(title="Applied Skills")
        table.add_column("Name", style="cyan")
        table.add_column("Version")
        table.add_column("Applied", style="green")
        table.add_column("Files", justify="right")
        for name in sorted(state.applied_skills):
            s = state.applied_skills[name]
            table.add_row(
                s.name, s.version, s.applied_at.strftime("%Y-%m-%d %H:%M"), str(len(s.file_hashes))
            )
        console.print(table)

    if state.path_remap:
        honoured = sanitize_remap(config.root, state.path_remap, (".git", config.data_dir))
        table = Table(title="Path Remap")
        table.add_column("Declared", style="cyan")
        table.add_column("Written to")
        table.add_column("Honoured", style="magenta")
        for src, dst in sorted(state.path_remap.items()):
            table.add_row(src, dst, "yes" if src in honoured else "[red]no (escapes root)[/red]")
        console.print(table)


@main.command()
@click.argument("source")
@click.argument("target", required=False)
@click.option("--project", default=None, help="Project root (default: SKGRAFT_PROJECT or cwd).")
@click.option("--remove", is_flag=True, help="Remove the remap for SOURCE.")
def remap(source: str, target: Optional[str], project: Optional[str], remove: bool) -> None:
    """Write files declared as SOURCE to TARGET instead."""
    config = _config(project)
    store = _store(config)

    if remove:
        if store.remove_remap(source):
            console.print(f"[green]Removed remap:[/green] {source}")
        else:
            console.print(f"[red]Not found:[/red] {source}")
            sys.exit(1)
        return

    if not target:
        console.print("[red]Remap failed:[/red] TARGET is required unless --remove is given")
        sys.exit(1)
    try:
        store.set_remap(source, target)
    except (SkillApplyError, ValueError) as exc:
        console.print(f"[red]Remap failed:[/red] {escape(str(exc))}")
        sys.exit(1)
    console.print(f"[green]Remapped:[/green] {source} -> {target}")


if __name__ == "__main__":
    main()
