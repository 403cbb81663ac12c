"""Click command group for duckdb-mcp.

Commands stay thin - they delegate to the server and agent modules.
"""

import asyncio
import logging
import os
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import click
import duckdb
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from duckdb_mcp.agent import AgentError, DuckDBAgent
from duckdb_mcp.config import get_settings

console = Console()


def _get_cli_version() -> str:
    """Get installed package version.

    Falls back to "unknown" when package metadata isn't available
    (e.g. running from a source checkout without installation).
    """
    try:
        return version("duckdb-mcp")
    except PackageNotFoundError:
        return "unknown"


def _configure_cli_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else os.environ.get("LOG_LEVEL", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_rows(rows: list[dict]) -> None:
    if not rows:
        console.print("[dim]No rows.[/dim]")
        return

    table = Table(show_lines=False)
    columns = list(rows[0].keys())
    for column in columns:
        table.add_column(str(column))
    for row in rows:
        table.add_row(*(str(row.get(column, "")) for column in columns))
    console.print(table)
    console.print(f"[dim]{len(rows)} row(s)[/dim]")


async def _run_with_agent(operation):
    """Connect an agent, run ``operation(agent)``, always disconnect."""
    agent = DuckDBAgent()
    await agent.initialize()
    try:
        return await operation(agent)
    finally:
        await agent.disconnect()


def _run(operation):
    # serve configures its own logging; only agent commands log from here
    verbose = click.get_current_context().find_root().params.get("verbose", False)
    _configure_cli_logging(verbose)
    try:
        return asyncio.run(_run_with_agent(operation))
    except AgentError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        console.print("\n[dim]Cancelled.[/dim]")
        raise SystemExit(130)


@click.group()
@click.version_option(version=_get_cli_version())
@click.option("-v", "--verbose", is_flag=True, help="Log agent and protocol activity")
def main(verbose: bool):
    """duckdb-mcp - natural-language queries over DuckDB through MCP."""


@main.command()
@click.option("--database", "database_path", default=None, help="DuckDB file or ':memory:'")
@click.option(
    "--transport",
    type=click.Choice(["stdio", "http"]),
    default=None,
    help="MCP transport (default: from settings)",
)
def serve(database_path: str | None, transport: str | None):
    """Start the MCP server."""
    from duckdb_mcp.server import main as server_main

    server_main(database_path=database_path, transport=transport)


@main.command()
@click.argument("question")
@click.option("--show-sql", is_flag=True, help="Print the generated SQL")
def ask(question: str, show_sql: bool):
    """Answer QUESTION: generate SQL with Bedrock and run it on the server."""

    async def operation(agent: DuckDBAgent):
        rows = await agent.call_bedrock(question)
        return agent.last_sql, rows

    sql, rows = _run(operation)
    if show_sql and sql:
        console.print(Panel(sql, title="SQL", border_style="cyan"))
    if rows is None:
        console.print("[red]The query failed on the server. Run with -v for details.[/red]")
        raise SystemExit(1)
    _print_rows(rows)


@main.command()
@click.argument("question")
@click.option("--context", default=None, help="Additional context about the query")
def suggest(question: str, context: str | None):
    """Print the schema + QUESTION payload from the generate-sql tool."""
    payload = _run(lambda agent: agent.get_sql_suggestion(question, context))
    console.print(payload)


@main.command()
@click.argument("sql")
@click.option("--issues", default=None, help="Known performance issues")
def optimize(sql: str, issues: str | None):
    """Ask the model to optimize SQL using the optimize-query prompt."""
    answer = _run(lambda agent: agent.optimize_query(sql, issues))
    console.print(answer)


@main.command()
def inspect():
    """List the server's resources, tools and prompts."""

    async def operation(agent: DuckDBAgent):
        return (
            await agent.list_available_resources(),
            await agent.list_available_tools(),
            await agent.list_available_prompts(),
        )

    resources, tools, prompts = _run(operation)

    table = Table(title="MCP endpoints")
    table.add_column("Kind", style="cyan")
    table.add_column("Name")
    table.add_column("Description", style="dim")
    for resource in resources:
        table.add_row("resource", str(resource.uri), resource.description or "")
    for tool in tools:
        table.add_row("tool", tool.name, tool.description or "")
    for prompt in prompts:
        table.add_row("prompt", prompt.name, prompt.description or "")
    console.print(table)


@main.command("import-parquet")
@click.argument("parquet", type=click.Path(exists=True, dir_okay=False))
@click.option("--table", "table_name", default="tripdata", show_default=True, help="Target table")
@click.option("--database", "database_path", default=None, help="DuckDB file (default: settings)")
def import_parquet(parquet: str, table_name: str, database_path: str | None):
    """Create a table from a Parquet file."""
    database_path = database_path or get_settings().database_path
    if database_path != ":memory:":
        Path(database_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    source = parquet.replace("'", "''")
    target = table_name.replace('"', '""')
    conn = duckdb.connect(database_path)
    try:
        conn.execute(f"CREATE TABLE \"{target}\" AS SELECT * FROM read_parquet('{source}')")
        count = conn.execute(f'SELECT COUNT(*) FROM "{target}"').fetchone()[0]
    except duckdb.Error as e:
        console.print(f"[red]Error importing Parquet: {e}[/red]")
        raise SystemExit(1) from e
    finally:
        conn.close()

    console.print(
        f"[green]✓[/green] Parquet imported into table '{table_name}' ({count} rows) "
        f"in {database_path}"
    )


if __name__ == "__main__":
    main()
