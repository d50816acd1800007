"""
lmdb-docstore CLI.

Command-line interface for inspecting and editing document collections.
"""

import typer

import lmdb_docstore
from lmdb_docstore.cli.collections import (
    check_command,
    clear_command,
    collections_command,
    create_command,
    size_command,
)
from lmdb_docstore.cli.documents import delete_command, dump_command, get_command, put_command
from lmdb_docstore.cli.common import console

__all__ = ["app", "main"]


app = typer.Typer(
    name="lmdb-docstore",
    help="LMDB document collections CLI",
    no_args_is_help=True,
)

# Register commands
app.command(name="collections")(collections_command)
app.command(name="create")(create_command)
app.command(name="size")(size_command)
app.command(name="clear")(clear_command)
app.command(name="check")(check_command)
app.command(name="get")(get_command)
app.command(name="put")(put_command)
app.command(name="delete")(delete_command)
app.command(name="dump")(dump_command)


@app.command()
def version():
    # type: () -> None
    """Show version information."""
    console.print(f"lmdb-docstore version {lmdb_docstore.__version__}")


def main():
    # type: () -> None
    """CLI entry point."""
    app()
