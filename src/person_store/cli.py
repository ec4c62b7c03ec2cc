"""CLI entry point for person-store commands.

The CLI is the process entry point: it builds the ConnectionManager, hands the
database to a PersonRepository, and closes every connection on the way out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import typer

from person_store.connections import DEFAULT_CONNECTIONS_PATH, ConnectionManager
from person_store.exceptions import PersistenceError
from person_store.repository import FOOD_TO_SEARCH, NAME_TO_REMOVE, PersonRepository

app = typer.Typer(name="person-store", help="Query and maintain the Person collection.", no_args_is_help=True)


def _setup_logging(verbose: bool) -> None:
    logger = logging.getLogger("person_store")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[%(asctime)s] [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _build_manager(connections: Path) -> ConnectionManager:
    """Profiles come from the connections file when it exists, else from ``MONGO_URI``."""
    if connections.exists():
        return ConnectionManager.from_file(connections)
    return ConnectionManager.from_env()


def _run(ctx: typer.Context, action: Callable[[PersonRepository], Awaitable[Any]]) -> Any:
    """Connect, run *action* against a fresh repository, and always close the connection."""
    connections: Path = ctx.obj["connections"]
    profile: str = ctx.obj["profile"]

    async def _main() -> Any:
        manager = _build_manager(connections)
        try:
            database = await manager.connect(profile)
            return await action(PersonRepository(database))
        finally:
            await manager.close_all()

    try:
        return asyncio.run(_main())
    except (PersistenceError, ValueError, KeyError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    ctx: typer.Context,
    connections: Path = typer.Option(
        Path(DEFAULT_CONNECTIONS_PATH),
        "--connections",
        "-c",
        help="Connection profiles file. Falls back to $MONGO_URI when missing.",
    ),
    profile: str = typer.Option("default", "--profile", "-p", help="Connection profile name."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log repository and connection activity."),
) -> None:
    """Person collection tools."""
    _setup_logging(verbose)
    ctx.obj = {"connections": connections, "profile": profile}


@app.command()
def ping(ctx: typer.Context) -> None:
    """Check that the configured MongoDB server is reachable."""

    async def _noop(repo: PersonRepository) -> None:
        return None

    _run(ctx, _noop)
    typer.echo("Successfully connected to MongoDB")


@app.command()
def find(ctx: typer.Context, name: str = typer.Argument(..., help="Exact name to match.")) -> None:
    """Print every person with the given name, one JSON document per line."""
    people = _run(ctx, lambda repo: repo.find_people_by_name(name))
    for person in people:
        typer.echo(json.dumps(person.to_document()))


@app.command("query-chain")
def query_chain(
    ctx: typer.Context,
    food: str = typer.Argument(FOOD_TO_SEARCH, help="Favourite food to match."),
) -> None:
    """Print the first two people (by name) who like FOOD, without their age."""
    people = _run(ctx, lambda repo: repo.query_chain(food))
    for person in people:
        typer.echo(json.dumps(person.to_document()))


@app.command("remove-many")
def remove_many(
    ctx: typer.Context,
    name: str = typer.Argument(NAME_TO_REMOVE, help="Exact name to delete."),
) -> None:
    """Delete every person with the given name."""
    summary = _run(ctx, lambda repo: repo.remove_many_people(name))
    typer.echo(f"Deleted {summary.deleted_count} document(s)")
