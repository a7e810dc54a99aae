"""CLI entry point for daybook."""

import logging
import threading
import time
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import DEFAULT_CONFIG, ensure_directories, ensure_gitignore, load_config
from .errors import ConfigError, MalformedDocument, RebuildError, StorageError

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """daybook - Daily notes with a searchable index."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _get_config(ctx) -> dict:
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        raise click.ClickException(str(e))


def _open_store(config: dict):
    from .index.store import IndexStore

    try:
        return IndexStore.open(config)
    except StorageError as e:
        raise click.ClickException(str(e))


def _engine(config: dict, store):
    from .query.engine import SearchEngine

    return SearchEngine(store, max_results=config["search"]["max_results"])


def _print_results(results, title: str = "Search Results"):
    if not results:
        console.print("[yellow]No matching notes.[/]")
        return

    table = Table(title=title)
    table.add_column("Date", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Tags", style="magenta")
    table.add_column("Snippet", max_width=70)

    for r in results:
        tags = " ".join(f"#{t}" for t in r.tags)
        table.add_row(r.date, r.title, tags, r.snippet.replace("\n", " "))

    console.print(table)


@cli.command()
@click.option("--path", default=None, help="Notes directory (default: ~/notes)")
@click.pass_context
def init(ctx, path):
    """Create the notes directory, its index and a config file."""
    cfg = dict(DEFAULT_CONFIG)
    cfg["notes_path"] = str(Path(path or DEFAULT_CONFIG["notes_path"]).expanduser().resolve())

    console.print(f"[bold green]Initializing daybook at {cfg['notes_path']}[/]")
    ensure_directories(cfg)
    ensure_gitignore(cfg)

    config_file = Path("~/.daybook/config.yaml").expanduser()
    if not config_file.exists():
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(yaml.safe_dump(cfg, default_flow_style=False, sort_keys=False))
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ daybook initialized![/]")
    console.print("  Run: daybook add \"Title\" \"What happened\"")


@cli.command()
@click.argument("title")
@click.argument("content")
@click.option("--date", "note_date", default=None, help="YYYY-MM-DD (default: today)")
@click.option("--category", default=None, help="Entry category")
@click.option("--tag", "tags", multiple=True, help="Extra tag (repeatable)")
@click.pass_context
def add(ctx, title, content, note_date, category, tags):
    """Add an entry to a daily note and index it."""
    from .notes.manager import NoteManager

    config = _get_config(ctx)
    manager = NoteManager.from_config(config)
    try:
        note = manager.create_note(title, content, note_date=note_date, category=category, tags=list(tags))
    except (ValueError, MalformedDocument) as e:
        raise click.ClickException(str(e))

    with _open_store(config) as store:
        store.upsert(note)
    console.print(f"[green]✓ Added to {note.path}[/]")


@cli.command()
@click.argument("note_date", required=False)
@click.pass_context
def show(ctx, note_date):
    """Print a daily note (default: today)."""
    from .notes.manager import NoteManager

    config = _get_config(ctx)
    manager = NoteManager.from_config(config)
    summary = manager.get_daily_summary(note_date)
    if summary is None:
        console.print("[yellow]No note for that day.[/]")
        return

    console.print(f"[bold]{summary.date}[/] - {len(summary.entries)} entr{'y' if len(summary.entries) == 1 else 'ies'}")
    for entry in summary.entries:
        console.print(f"\n[cyan]{entry.time}[/] [bold]{entry.title}[/] [dim]({entry.category})[/]")
        console.print(entry.content)
    if summary.mentions:
        console.print(f"\n[dim]Mentions: {', '.join('@' + m for m in summary.mentions)}[/]")


@cli.command()
@click.argument("query", nargs=-1)
@click.option("--n", "-n", default=None, type=int, help="Number of results")
@click.pass_context
def search(ctx, query, n):
    """Search notes: free text plus @person, #tag, category:x and date phrases."""
    config = _get_config(ctx)
    text = " ".join(query)
    with _open_store(config) as store:
        results = _engine(config, store).search(text, limit=n)
    _print_results(results, title=f"Results for '{text}'" if text else "Recent notes")


@cli.command()
@click.argument("name")
@click.option("--from", "start", default=None, help="Start date YYYY-MM-DD")
@click.option("--to", "end", default=None, help="End date YYYY-MM-DD")
@click.pass_context
def person(ctx, name, start, end):
    """Notes mentioning a person."""
    config = _get_config(ctx)
    with _open_store(config) as store:
        results = _engine(config, store).search_by_person(name, start, end)
    _print_results(results, title=f"Notes mentioning @{name.lstrip('@').lower()}")


@cli.command()
@click.argument("tag")
@click.pass_context
def tag(ctx, tag):
    """Notes carrying a tag."""
    config = _get_config(ctx)
    with _open_store(config) as store:
        results = store.query_by_tag(tag, limit=config["search"]["max_results"])
    _print_results(results, title=f"Notes tagged #{tag.lstrip('#')}")


@cli.command()
@click.argument("category")
@click.pass_context
def category(ctx, category):
    """Notes in a category."""
    config = _get_config(ctx)
    with _open_store(config) as store:
        results = store.query_by_category(category, limit=config["search"]["max_results"])
    _print_results(results, title=f"Category: {category}")


@cli.command()
@click.option("--type", "entity_type", default=None, help="Entity type (e.g. person)")
@click.pass_context
def entities(ctx, entity_type):
    """List mentioned people by mention count."""
    config = _get_config(ctx)
    with _open_store(config) as store:
        found = store.list_entities(entity_type)

    if not found:
        console.print("[yellow]No entities indexed yet.[/]")
        return

    table = Table(title="Entities")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Mentions", justify="right", style="green")
    table.add_column("Last seen", style="dim")
    for e in found:
        table.add_row(e.name, e.type, str(e.mention_count), e.last_seen[:10])
    console.print(table)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show index statistics."""
    config = _get_config(ctx)
    with _open_store(config) as store:
        s = store.stats()

    console.print(f"\n[bold]📊 Index Statistics[/]")
    console.print(f"  Notes: {s.note_count}")
    console.print(f"  Entities: {s.entity_count}")
    console.print(f"  Last indexed: {s.last_indexed or 'never'}")


@cli.command()
@click.pass_context
def rebuild(ctx):
    """Rebuild the index from every note on disk."""
    from .notes.manager import NoteManager

    config = _get_config(ctx)
    manager = NoteManager.from_config(config)
    console.print("[blue]Reading notes...[/]")
    notes = manager.get_all_notes()

    with _open_store(config) as store:
        try:
            count = store.rebuild(notes)
        except RebuildError as e:
            raise click.ClickException(str(e))
    console.print(f"[green]✓ Indexed {count} note(s)[/]")


@cli.command()
@click.option("--quiet-period", default=None, type=float, help="Seconds a file must be unchanged before indexing")
@click.pass_context
def watch(ctx, quiet_period):
    """Keep the index in sync with the notes directory (Ctrl+C to stop)."""
    from .ingest.pipeline import IngestionPipeline
    from .ingest.watcher import NoteWatcher

    config = _get_config(ctx)
    if quiet_period is not None:
        config["watcher"]["quiet_period"] = quiet_period

    store = _open_store(config)
    watcher = NoteWatcher.from_config(config)
    pipeline = IngestionPipeline.from_config(store, watcher.events, config)
    stop = threading.Event()
    consumer = threading.Thread(target=pipeline.run, args=(stop,), daemon=True)
    consumer.start()

    if not watcher.start():
        console.print(f"[red]Cannot watch {config['notes_path']}[/]")
    else:
        console.print(f"[bold]👀 Watching {config['notes_path']}... (Ctrl+C to stop)[/]")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping watcher...[/]")
    watcher.stop()
    stop.set()
    consumer.join()
    store.close()
    c = pipeline.counts
    console.print(f"[green]✓ Watcher stopped.[/] indexed: {c['indexed']}, removed: {c['removed']}, skipped: {c['skipped']}")


if __name__ == "__main__":
    cli()
