"""
Shared utilities for lmdb-docstore CLI.

Common functionality used across multiple CLI commands.
"""

from contextlib import contextmanager
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from lmdb_docstore.config import LmdbConfig
from lmdb_docstore.errors import StorageSystemError, StorageUserError
from lmdb_docstore.store import LmdbStore


__all__ = ["console", "open_store", "exit_on_error", "PATH_OPTION"]


# Shared console instance for all CLI commands
console = Console()


# Configure loguru to use rich's console for proper output coordination
logger.remove()  # Remove default handler
logger.add(
    RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=True,
        show_time=False,  # Use custom time format
        show_level=False,  # Use custom level format
        show_path=False,  # Don't show file path on right
    ),
    format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {module}:{function}:{line} - {message}",
    level="WARNING",
)


PATH_OPTION = typer.Option(
    None,
    "--path",
    "-p",
    help="Database directory (defaults to LMDB_DOCSTORE_DATABASE_PATH or the user data dir)",
)


def open_store(path=None):
    # type: (Path|None) -> LmdbStore
    """
    Open a store owning its environment.

    :param path: Database directory, settings default if None
    :return: LmdbStore to be closed by the caller
    """
    config = LmdbConfig() if path is None else LmdbConfig(database_path=path)
    return LmdbStore(config)


@contextmanager
def exit_on_error(store=None):
    # type: (LmdbStore|None) -> Iterator[None]
    """
    Print storage errors and exit with code 1, closing store in all cases.

    :param store: Store to close when the block exits
    """
    try:
        yield
    except StorageUserError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except StorageSystemError as e:
        console.print(f"[red]Storage failure: {escape(str(e))}[/red]")
        raise typer.Exit(code=2)
    finally:
        if store is not None:
            store.close()
