"""Command line entry point: route, execute, list tools, REPL."""
import asyncio
import json
import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, settings as default_settings
from .runtime import Runtime, build_runtime
from .tools.contract import ToolResult, exit_code_for

app = typer.Typer(add_completion=False, help="assistant: route text to permission-checked local tools.")
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def _runtime(permissions: Optional[str]) -> Runtime:
    return build_runtime(_settings(), permissions_path=permissions)


def _settings() -> Settings:
    return default_settings


def _parse_kv(pairs: List[str]) -> dict:
    args = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got: {pair}")
        # JSON values for numbers/booleans, raw string otherwise
        try:
            args[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            args[key.strip()] = value
    return args


def _emit(result: ToolResult, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
        return
    if result.ok:
        body = result.result
        if isinstance(body, (dict, list)):
            body = json.dumps(body, indent=2, ensure_ascii=False, default=str)
        console.print(body if body is not None else "ok")
    else:
        console.print(f"[bold red]{result.error.code.value}[/bold red]: {result.error.message}")


@app.command()
def run(
    text: str = typer.Argument(..., help="Free-text command, e.g. 'remember: buy milk'."),
    agent: str = typer.Option(None, "--agent", "-a", help="Agent name (system/supervisor/coder/organizer/assistant)."),
    as_json: bool = typer.Option(False, "--json", help="Print the full ToolResult as JSON."),
    permissions: str = typer.Option(None, "--permissions", help="Path to permissions.json."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log routing and execution."),
):
    """Route TEXT to a tool and execute it."""
    _setup_logging(verbose)
    rt = _runtime(permissions)
    result = asyncio.run(rt.run(text, agent))
    _emit(result, as_json)
    raise typer.Exit(code=exit_code_for(result))


@app.command("exec")
def exec_tool(
    tool: str = typer.Argument(..., help="Tool name."),
    arg: List[str] = typer.Option([], "--arg", help="Tool argument as key=value (repeatable)."),
    agent: str = typer.Option(None, "--agent", "-a", help="Agent name."),
    as_json: bool = typer.Option(False, "--json", help="Print the full ToolResult as JSON."),
    permissions: str = typer.Option(None, "--permissions", help="Path to permissions.json."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log execution."),
):
    """Execute TOOL directly with --arg key=value pairs."""
    _setup_logging(verbose)
    rt = _runtime(permissions)
    result = asyncio.run(rt.execute(tool, _parse_kv(arg), agent))
    _emit(result, as_json)
    raise typer.Exit(code=exit_code_for(result))


@app.command()
def tools(
    permissions: str = typer.Option(None, "--permissions", help="Path to permissions.json."),
):
    """List registered tools."""
    rt = _runtime(permissions)
    table = Table(show_header=True, header_style="bold")
    table.add_column("tool")
    table.add_column("status")
    table.add_column("params")
    table.add_column("description")
    for spec in rt.registry.list():
        params = ", ".join(
            f"{name}{'' if name in spec.required else '?'}:{p.type}" for name, p in spec.parameters.items()
        )
        table.add_row(spec.name, spec.status, params, spec.description)
    console.print(table)


@app.command()
def repl(
    agent: str = typer.Option(None, "--agent", "-a", help="Agent name."),
    permissions: str = typer.Option(None, "--permissions", help="Path to permissions.json."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log routing and execution."),
):
    """Interactive loop; one invocation per line. 'exit' to quit."""
    _setup_logging(verbose)
    rt = _runtime(permissions)
    console.print("[bold]assistant[/bold] ready. Type 'exit' to quit, ':reload' to reload permissions.")

    async def loop():
        while True:
            try:
                line = await asyncio.to_thread(typer.prompt, "You")
            except (EOFError, KeyboardInterrupt, typer.Abort):
                break
            line = line.strip()
            if line.lower() in {"exit", "quit"}:
                break
            if line == ":reload":
                rt.reload_permissions(permissions)
                console.print("permissions reloaded")
                continue
            _emit(await rt.run(line, agent), as_json=False)

    asyncio.run(loop())


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address."),
    port: int = typer.Option(None, "--port", help="Bind port."),
):
    """Serve the HTTP API with uvicorn."""
    import uvicorn
    from .api import create_app

    _setup_logging(True)
    cfg = _settings()
    uvicorn.run(create_app(build_runtime(cfg)), host=host or cfg.http_host, port=port or cfg.http_port)


def main():
    app()


if __name__ == "__main__":
    main()
