"""
Document CLI commands.

Read, write, delete and dump JSON documents of a collection.
"""

import json
from pathlib import Path

import typer

from lmdb_docstore.cli.common import PATH_OPTION, console, exit_on_error, open_store


__all__ = ["get_command", "put_command", "delete_command", "dump_command"]


def get_command(name: str, key: str, path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """
    Print a document as JSON.

    Example:
        lmdb-docstore get users alice
    """
    store = open_store(path)
    with exit_on_error(store):
        document = store.fetch(name, key)
        if document is None:
            console.print(f"[red]Document not found: {key}[/red]")
            raise typer.Exit(code=1)
        console.print_json(json.dumps(document))


def put_command(name: str, key: str, document: str, path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """
    Insert or replace a document given as JSON text.

    Example:
        lmdb-docstore put users alice '{"age": 42}'
    """
    store = open_store(path)
    with exit_on_error(store):
        value = store.codec.decode(document.encode("utf-8"))
        state = store.upsert_overwrite(name, key, value)
        status = "updated" if state.previous is not None else "created"
        console.print(f"[green]Document '{key}' {status}[/green]")


def delete_command(name: str, key: str, path: Path | None = PATH_OPTION):
    # type: (...) -> None
    """Delete a document and print it."""
    store = open_store(path)
    with exit_on_error(store):
        document = store.delete(name, key)
        if document is None:
            console.print(f"[yellow]Document not found: {key}[/yellow]")
            return
        console.print_json(json.dumps(document))


def dump_command(
    name: str,
    prefix: str | None = typer.Option(None, "--prefix", help="Only dump keys starting with this prefix"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Maximum number of documents"),
    path: Path | None = PATH_OPTION,
):
    # type: (...) -> None
    """
    Stream documents of a collection as JSON lines.

    Example:
        lmdb-docstore dump users --prefix a --limit 10
    """
    key_filter = None if prefix is None else (lambda key: key.startswith(prefix))
    store = open_store(path)
    with exit_on_error(store):
        with store.stream(name, key_filter) as documents:
            for count, document in enumerate(documents, start=1):
                console.print(json.dumps(document, separators=(",", ":")), markup=False, highlight=False)
                if limit is not None and count >= limit:
                    break
