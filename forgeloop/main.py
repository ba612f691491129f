#!/usr/bin/env python3
"""
ForgeLoop CLI - Main Entry Point

Usage:
    forgeloop generate "a todo app with filters" [--name todo]
    forgeloop update todo "add a dark mode toggle"
    forgeloop validate ./user-projects/todo [--requirement-file PRD.md]
    forgeloop start ./user-projects/todo [--name todo]
    forgeloop stop todo
    forgeloop list

`generate` and `start` stay in the foreground streaming dev-server output;
Ctrl+C (or SIGTERM) stops every supervised server before exiting.
"""

import argparse
import asyncio
import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from forgeloop.core.exceptions import ForgeLoopError
from forgeloop.core.logging_config import logger
from forgeloop.modules.orchestrator.project_pipeline import ProjectPipeline
from forgeloop.modules.orchestrator.repair_loop import RepairLoop
from forgeloop.modules.runtime.process_supervisor import ProcessEventKind, ProcessSupervisor
from forgeloop.modules.runtime.state_store import ProjectStateStore

console = Console()


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="forgeloop",
        description="ForgeLoop - generate, validate, repair and run web projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  forgeloop generate "a recipe browser with search" --name recipes
  forgeloop update recipes "add a favourites page"
  forgeloop validate ./user-projects/recipes
  forgeloop start ./user-projects/recipes
  forgeloop list
  forgeloop stop recipes
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show tracebacks on errors")
    parser.add_argument("--version", action="version", version="%(prog)s 1.0.0")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    generate_parser = subparsers.add_parser("generate", help="Generate a new project from a requirement")
    generate_parser.add_argument("requirement", help="Requirement text")
    generate_parser.add_argument("--name", "-n", help="Project name (derived from the requirement if omitted)")
    generate_parser.add_argument("--no-start", action="store_true", help="Do not start the dev server")

    update_parser = subparsers.add_parser("update", help="Apply a follow-up requirement to a project")
    update_parser.add_argument("name", help="Project name")
    update_parser.add_argument("requirement", help="Requirement text")

    validate_parser = subparsers.add_parser("validate", help="Run the validate/repair loop on a project")
    validate_parser.add_argument("path", help="Project directory")
    validate_parser.add_argument("--requirement-file", "-r", help="Requirement document for the LLM fixer")

    start_parser = subparsers.add_parser("start", help="Start a project's dev server")
    start_parser.add_argument("path", help="Project directory")
    start_parser.add_argument("--name", "-n", help="Project name (defaults to the directory name)")

    stop_parser = subparsers.add_parser("stop", help="Stop a project's dev server")
    stop_parser.add_argument("name", help="Project name")

    subparsers.add_parser("list", help="List running projects")

    return parser


@asynccontextmanager
async def supervised(long_running: bool = True) -> AsyncIterator[ProcessSupervisor]:
    """
    State store + supervisor for the lifetime of one command.

    Short commands skip the periodic tasks and the final flush; add and
    remove already persist, and a late flush would overwrite entries a
    foreground process recorded in the meantime.
    """
    store = ProjectStateStore()
    await store.initialize()
    if long_running:
        store.start()
    try:
        yield ProcessSupervisor(store)
    finally:
        await store.close(persist=long_running)


def print_repair_result(result: Dict[str, Any]) -> None:
    """Render RepairResult.to_dict() output"""
    success = result["success"]
    colour = "green" if success else "yellow"
    console.print(
        f"\n[{colour}]{'✓' if success else '✗'} {escape(result['message'])}[/{colour}] "
        f"[dim](state={result['state']}, attempts={result['attempts']}, "
        f"llm_calls={result['llm_invocations']})[/dim]"
    )
    for fix in result["fixes"]:
        console.print(f"  [cyan]•[/cyan] {escape(fix['description'])}")
    for error in result["errors"]:
        location = f"{error['file']}:{error['line']}: " if error.get("file") else ""
        console.print(f"  [red]•[/red] {escape(location + error['message'])}")


def error_text(result: Dict[str, Any]) -> str:
    """The error of a result dict, whether a plain string or error_response() payload"""
    error = result.get("error")
    if isinstance(error, dict):
        return error.get("message", "")
    return str(error)


async def serve_until_interrupted(supervisor: ProcessSupervisor, name: str) -> None:
    """Stream a project's events until it exits or the user interrupts"""
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; KeyboardInterrupt still applies
            pass

    async def follow() -> None:
        async for event in supervisor.events(name):
            if event.kind == ProcessEventKind.OUTPUT:
                console.print(f"[dim]{escape(event.line or '')}[/dim]")
            elif event.kind == ProcessEventKind.EXITED:
                console.print(f"[yellow]Dev server exited (code {event.code})[/yellow]")
            elif event.kind == ProcessEventKind.ERROR:
                console.print(f"[red]{escape(event.reason or 'error')}[/red]")

    console.print("[dim]Press Ctrl+C to stop[/dim]")
    follower = asyncio.create_task(follow())
    waiter = asyncio.create_task(stop_requested.wait())
    try:
        await asyncio.wait({follower, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopped = await supervisor.stop_all()
        for task in (follower, waiter):
            task.cancel()
        await asyncio.gather(follower, waiter, return_exceptions=True)
        if stopped:
            console.print(f"[green]✓ Stopped {stopped} server(s)[/green]")


async def cmd_generate(args) -> int:
    async with supervised() as supervisor:
        pipeline = ProjectPipeline(supervisor=supervisor)
        result = await pipeline.generate(args.requirement, name=args.name, start=not args.no_start)

        generation = result["generation"]
        console.print(
            f"\n[bold]Generated {result['project']}[/bold]: "
            f"{generation['successful']}/{generation['total']} task(s), "
            f"{generation['generated_file_count']} file(s)"
        )
        print_repair_result(result["repair"])

        server = result.get("server")
        if server and server.get("success"):
            console.print(f"[green]✓ Running at {server['url']}[/green]")
            await serve_until_interrupted(supervisor, result["project"])
        elif server:
            console.print(f"[red]✗ Dev server did not start: {escape(error_text(server))}[/red]")

        return 0 if result["success"] else 1


async def cmd_update(args) -> int:
    async with supervised() as supervisor:
        pipeline = ProjectPipeline(supervisor=supervisor)
        result = await pipeline.update(args.name, args.requirement)

        if "generation" not in result:
            console.print(f"[red]✗ {escape(result.get('error', 'Update failed'))}[/red]")
            return 1

        if result.get("validation_skipped"):
            console.print(f"[green]✓ {escape(result['message'])}[/green]")
        else:
            print_repair_result(result["repair"])

        server = result.get("server")
        if server and server.get("success") and not server.get("already_running"):
            console.print(f"[green]✓ Restarted at {server['url']}[/green]")
            await serve_until_interrupted(supervisor, args.name)
        return 0 if result["success"] else 1


async def cmd_validate(args) -> int:
    requirement = ""
    if args.requirement_file:
        requirement = Path(args.requirement_file).read_text(encoding="utf-8")

    loop = RepairLoop()
    result = await loop.run(Path(args.path).resolve(), requirement)
    print_repair_result(result.to_dict())
    return 0 if result.success else 1


async def cmd_start(args) -> int:
    async with supervised() as supervisor:
        path = Path(args.path).resolve()
        name = args.name or path.name
        result = await supervisor.start(path, name)
        if not result.get("success"):
            console.print(f"[red]✗ {escape(error_text(result))}[/red]")
            return 1
        if result.get("already_running"):
            console.print(f"[yellow]{name} is already running at {result['url']}[/yellow]")
            return 0

        console.print(f"[green]✓ {name} running at {result['url']}[/green]")
        await serve_until_interrupted(supervisor, name)
        return 0


async def cmd_stop(args) -> int:
    async with supervised(long_running=False) as supervisor:
        result = await supervisor.stop(args.name)
        if result.get("success"):
            console.print(f"[green]✓ Stopped {args.name} (port {result['port']})[/green]")
            return 0
        console.print(f"[yellow]{args.name}: {result.get('error')}[/yellow]")
        return 1


async def cmd_list(args) -> int:
    async with supervised(long_running=False) as supervisor:
        projects = supervisor.get_running_projects()
        if not projects:
            console.print("[dim]No running projects[/dim]")
            return 0

        table = Table(title="Running projects")
        table.add_column("Name", style="cyan")
        table.add_column("Port", justify="right")
        table.add_column("URL")
        table.add_column("Started", style="dim")
        for project in projects:
            table.add_row(project["name"], str(project["port"]), project["url"], project["startTime"])
        console.print(table)
        return 0


COMMANDS = {
    "generate": cmd_generate,
    "update": cmd_update,
    "validate": cmd_validate,
    "start": cmd_start,
    "stop": cmd_stop,
    "list": cmd_list,
}


def main(argv: Optional[list] = None) -> None:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(2)

    try:
        exit_code = asyncio.run(handler(args))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")
        exit_code = 130
    except ForgeLoopError as e:
        logger.error(f"{e.code}: {e.message}")
        console.print(f"\n[red]✗ {escape(e.message)}[/red]")
        exit_code = 1
    except Exception as e:
        if args.verbose:
            console.print_exception()
        else:
            console.print(f"\n[red]✗ Error: {escape(str(e))}[/red]")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
