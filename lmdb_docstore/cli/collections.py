"""
Collection management CLI commands.

Provides commands for listing, creating, sizing and clearing collections,
and for checking the environment.
"""

from pathlib import Path

from rich.table import Table

from lmdb_docstore.cli.common import PATH_OPTION, console, exit_on_error, open_store


__all__ = ["collections_command", "create_command", "size_command", "clear_command", "check_command"]


def collections_command(path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """
    List all collections with their document count.

    Example:
        lmdb-docstore collections
        lmdb-docstore collections --path /data/mydb
    """
    store = open_store(path)
    with exit_on_error(store):
        names = store.collections_available()
        if not names:
            console.print("[yellow]No collections found[/yellow]")
            return

        table = Table(title="Collections")
        table.add_column("Name", style="cyan")
        table.add_column("Documents", justify="right")
        for name in names:
            table.add_row(name, f"{store.collection_size(name):,}")
        console.print(table)


def create_command(name: str, path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """
    Create a new collection.

    Example:
        lmdb-docstore create users
    """
    store = open_store(path)
    with exit_on_error(store):
        store.collection_allocate(name)
        console.print(f"[green]Created collection '{name}'[/green]")


def size_command(name: str, path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """Print the number of documents in a collection."""
    store = open_store(path)
    with exit_on_error(store):
        console.print(store.collection_size(name))


def clear_command(name: str, path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """
    Remove all documents from a collection.

    The collection itself is kept.
    """
    store = open_store(path)
    with exit_on_error(store):
        store.collection_clear(name)
        console.print(f"[green]Cleared collection '{name}'[/green]")


def check_command(path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """Run the environment self-check."""
    store = open_store(path)
    with exit_on_error(store):
        store.platform_check()
        console.print("[green]Platform check passed[/green]")
