"""CLI commands for deepshell."""

import asyncio
from pathlib import Path

import typer
from loguru import logger

from deepshell import __logo__, __version__
from deepshell.cli.render import console, print_event

app = typer.Typer(
    name="deepshell",
    help=f"{__logo__} deepshell - terminal assistant that runs model-issued shell commands",
    no_args_is_help=True,
)

EXIT_INTERRUPTED = 130

GENERIC_PROMPT_PATH = "prompts/Generic.md"


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} deepshell v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """deepshell - language-model driven shell assistant."""
    pass


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard(
    config: Path | None = typer.Option(None, "--config", "-c", help="Config file to create"),
):
    """Initialize deepshell configuration and the default agent prompt."""
    from deepshell.config.loader import get_config_path, load_config, save_config

    config_path = config or get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if typer.confirm("Overwrite?"):
            save_config(_default_config(), config_path)
            console.print(f"[green]✓[/green] Config reset to defaults: {config_path}")
        else:
            current = load_config(config_path, apply_env=False)
            save_config(current, config_path)
            console.print(f"[green]✓[/green] Config refreshed, existing values preserved: {config_path}")
    else:
        save_config(_default_config(), config_path)
        console.print(f"[green]✓[/green] Created config at {config_path}")

    _create_prompt_templates(config_path.parent)

    console.print(f"\n{__logo__} deepshell is ready!")
    console.print("\nNext steps:")
    console.print("  1. Set your API key: [cyan]export DEEPSEEK_API_KEY=sk-...[/cyan]")
    console.print("     (or add [cyan]apiKey[/cyan] to the config file)")
    console.print('  2. Start a session: [cyan]deepshell chat[/cyan] or [cyan]deepshell chat -m "..."[/cyan]')


def _default_config():
    from deepshell.config.schema import AgentDefinition, Config

    return Config(
        agents=[
            AgentDefinition(
                id="Generic",
                system_prompt=GENERIC_PROMPT_PATH,
                description="General-purpose shell assistant",
            )
        ]
    )


def _create_prompt_templates(base_dir: Path):
    """Create the default agent prompt file if missing."""
    from deepshell.agent.context import DEFAULT_SYSTEM_PROMPT

    prompt_file = base_dir / GENERIC_PROMPT_PATH
    if prompt_file.exists():
        return
    prompt_file.parent.mkdir(parents=True, exist_ok=True)
    prompt_file.write_text(DEFAULT_SYSTEM_PROMPT + "\n", encoding="utf-8")
    console.print(f"  [dim]Created {GENERIC_PROMPT_PATH}[/dim]")


# ============================================================================
# Chat
# ============================================================================


@app.command()
def chat(
    message: str | None = typer.Option(None, "--message", "-m", help="Task to run right away"),
    working_directory: Path | None = typer.Option(
        None, "--working-directory", "-w", help="Directory commands run in"
    ),
    agent: str | None = typer.Option(None, "--agent", "-a", help="Agent to run the task with"),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Exit after the task instead of opening the prompt"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help="Config file path"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show deepshell runtime logs"),
):
    """Run a task or open the interactive prompt."""
    from deepshell.config.loader import load_config, resolve_config_path
    from deepshell.errors import ConfigError

    if logs:
        logger.enable("deepshell")
    else:
        logger.disable("deepshell")

    config_path = resolve_config_path(config)
    try:
        cfg = load_config(config_path, strict=config is not None)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    workdir = (working_directory or Path.cwd()).expanduser().resolve()
    if not workdir.is_dir():
        console.print(f"[red]Error: working directory {workdir} does not exist[/red]")
        raise typer.Exit(1)

    if not cfg.get_api_key():
        console.print("[red]Error: No API key configured.[/red]")
        console.print("Set DEEPSEEK_API_KEY or add apiKey to your config (see [cyan]deepshell onboard[/cyan]).")
        raise typer.Exit(1)

    code = asyncio.run(
        _run_chat(cfg, config_path, workdir, message, agent, non_interactive)
    )
    raise typer.Exit(code)


async def _run_chat(cfg, config_path: Path, workdir: Path, message, agent_id, non_interactive) -> int:
    from deepshell.agent.interrupt import InterruptController
    from deepshell.agent.registry import AgentRegistry
    from deepshell.agent.stack import AgentContextStack
    from deepshell.cli.repl import InteractiveSession
    from deepshell.errors import AgentNotFound
    from deepshell.providers.deepseek_provider import DeepSeekProvider
    from deepshell.utils.helpers import get_data_path

    provider = DeepSeekProvider(
        api_key=cfg.get_api_key(),
        api_base=cfg.provider.api_base,
        default_model=cfg.provider.model,
        max_tokens=cfg.provider.max_tokens,
        temperature=cfg.provider.temperature,
        timeout=cfg.provider.timeout,
    )
    registry = AgentRegistry.from_config(cfg, config_path)
    interrupt = InterruptController()

    try:
        stack = AgentContextStack(
            registry, provider, workdir, interrupt=interrupt, config=cfg, on_progress=print_event
        )
    except AgentNotFound as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    repl = InteractiveSession(
        stack, interrupt, console, history_path=get_data_path() / "history" / "cli_history"
    )
    console.print(f"{__logo__} deepshell - agent [cyan]{stack.current().agent_id}[/cyan] in {workdir}")

    interrupted = False
    if agent_id or message:
        try:
            if agent_id and agent_id != stack.current().agent_id:
                outcome = await repl.run_guarded(stack.push(agent_id, message or None))
            elif message:
                outcome = await repl.run_guarded(stack.run_task(message))
            else:
                outcome = None
        except AgentNotFound as e:
            available = ", ".join(e.available) or "none"
            console.print(f"[red]❌ {e}. Available agents: {available}[/red]")
            if non_interactive:
                return 1
            outcome = None
        interrupted = outcome is not None and outcome.interrupted

        if not non_interactive:
            if interrupted:
                console.print("↩️ Agent interrupted. Back to the interactive prompt.")
            elif outcome is not None:
                console.print("✅ Agent finished. You can continue from the prompt.")

    if non_interactive:
        return EXIT_INTERRUPTED if interrupted else 0

    await repl.run()
    return 0


# ============================================================================
# Archives
# ============================================================================


@app.command()
def archives(
    working_directory: Path | None = typer.Option(
        None, "--working-directory", "-w", help="Directory whose sessions to list"
    ),
):
    """List archived sessions."""
    from deepshell.cli.repl import print_archives
    from deepshell.session.manager import SessionManager

    logger.disable("deepshell")
    workdir = (working_directory or Path.cwd()).expanduser().resolve()
    print_archives(console, SessionManager(workdir).list_archives())


if __name__ == "__main__":
    app()
