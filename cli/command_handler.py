"""Command handler with command pattern."""

import logging
import sys
from pathlib import Path
from typing import Callable, Dict

from fleet.dependencies import get_plugin_registry
from fleet.services.pipeline import FleetPipeline, RepairResult

from cli.prompter import PromptToolkitCollector
from cli.renderer import (
    RichProgress,
    console,
    show_plugin_info,
    show_plugins,
    show_secret_status,
    show_setup_result,
)

logger = logging.getLogger(__name__)


class CommandHandler:
    """Dispatches parsed CLI arguments to pipeline operations.

    Each command returns a process exit status; fatal engine errors propagate
    to ``cli.main`` which renders them.
    """

    def __init__(self, project_dir: Path):
        self.project_dir = Path(project_dir).resolve()
        self.commands = self._register_commands()

    def _register_commands(self) -> Dict[str, Callable]:
        return {
            "init": self._cmd_init,
            "repair": self._cmd_repair,
            "setup": self._cmd_setup,
            "onboard": self._cmd_onboard,
            "secrets": self._cmd_secrets,
            "plugins": self._cmd_plugins,
        }

    def handle(self, args) -> int:
        handler = self.commands.get(args.command)
        if handler is None:
            console.print(f"[red]Unknown command: {args.command}[/red]")
            return 2
        logger.info(f"Running command '{args.command}' in {self.project_dir}")
        return handler(args)

    def _pipeline(self, interactive: bool = False) -> FleetPipeline:
        collector = PromptToolkitCollector() if interactive and sys.stdin.isatty() else None
        return FleetPipeline(
            self.project_dir,
            registry=get_plugin_registry(),
            collector=collector,
            progress=RichProgress(),
        )

    def _cmd_init(self, args) -> int:
        manifest = self._pipeline().init_project(
            references=args.identities or None,
            provider=args.provider,
            stack_name=args.stack_name,
            region=args.region,
            instance_type=args.instance_type,
            owner_name=args.owner_name or "",
        )
        console.print(f"[green]✓[/green] {len(manifest.agents)} agent(s) in fleet.yaml. "
                      "Next: copy .env.example to .env, fill it in, run `fleet setup`.")
        return 0

    def _cmd_repair(self, args) -> int:
        result: RepairResult = self._pipeline().repair()
        if result.flagged_agents or result.orphaned_sources:
            console.print("[yellow]Review the flagged entries above before running `fleet setup`.[/yellow]")
        return 0

    def _cmd_setup(self, args) -> int:
        result = self._pipeline(interactive=args.onboard).setup(
            env_file=args.env_file,
            onboard=args.onboard,
            skip_hooks=args.skip_hooks,
        )
        show_setup_result(result)
        return 0

    def _cmd_onboard(self, args) -> int:
        result = self._pipeline(interactive=True).onboard(env_file=args.env_file)
        ran = [o for o in result.hook_outcomes if o.kind == "onboard" and not o.skipped]
        console.print(f"[green]✓[/green] Onboarding complete ({len(ran)} hook(s) run)")
        return 0

    def _cmd_secrets(self, args) -> int:
        statuses = self._pipeline().secrets_status(env_file=args.env_file)
        show_secret_status(statuses)
        return 1 if any(s.status == "missing" for s in statuses) else 0

    def _cmd_plugins(self, args) -> int:
        registry = get_plugin_registry()
        if args.plugins_command == "info":
            entry = registry.get(args.name)
            if entry is None:
                console.print(f"[red]Plugin '{args.name}' not found.[/red]")
                return 1
            show_plugin_info(entry)
            return 0
        show_plugins(registry.get_all())
        return 0
