"""Rich output for fleet commands."""

from typing import List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from fleet.errors import FleetError, HookFailure, SecretResolutionGap
from fleet.plugins.registry import PluginEntry
from fleet.services.pipeline import PipelineProgress, SecretStatus, SetupResult

console = Console(
    legacy_windows=False,
    force_interactive=False,
    tab_size=4
)

STATUS_STYLES = {
    "set": "green",
    "missing": "red",
    "auto": "cyan",
    "optional": "dim",
}


class RichProgress(PipelineProgress):
    """Pipeline progress rendered to the terminal (and still logged)."""

    def info(self, message: str) -> None:
        super().info(message)
        console.print(f"[dim]•[/dim] {message}")

    def success(self, message: str) -> None:
        super().success(message)
        console.print(f"[green]✓[/green] {message}")

    def warn(self, message: str) -> None:
        # not logged: the WARNING console handler would print it a second time
        console.print(f"[yellow]⚠ {message}[/yellow]")

    def instructions(self, title: str, text: str) -> None:
        super().instructions(title, text)
        console.print()
        console.print(Panel(Text(text), title=title, border_style="cyan"))
        console.print()


def show_error(error: FleetError) -> None:
    """Render a fatal engine error."""
    if isinstance(error, SecretResolutionGap):
        console.print(f"[red]✗ {len(error.missing)} required secret(s) missing:[/red]")
        console.print(error.report, markup=False)
        console.print("[dim]Fill these in your .env file.[/dim]")
        return
    if isinstance(error, HookFailure):
        console.print(f"[red]✗ {error.kind.capitalize()} hook for {error.plugin} ({error.agent}) failed[/red]")
        console.print(error.error, markup=False, style="red")
        if error.remediation:
            console.print(error.remediation, markup=False, style="yellow")
        return
    console.print(f"✗ {error}", style="red", markup=False)


def show_setup_result(result: SetupResult) -> None:
    table = Table(title=f"Fleet '{result.manifest.stack_name}' ({result.manifest.provider})")
    table.add_column("Agent", style="cyan")
    table.add_column("Role")
    table.add_column("Plugins")
    table.add_column("Secrets", justify="right")
    table.add_column("Auto-resolved")
    for agent in result.agents:
        auto = result.auto_resolved.for_role(agent.role)
        table.add_row(
            f"{agent.display_name} ({agent.name})",
            agent.role,
            ", ".join(agent.plugins) or "-",
            str(len(result.resolved.for_agent(agent.name))),
            ", ".join(sorted(auto)) or "-",
        )
    console.print(table)
    if result.warnings:
        console.print(f"[yellow]{len(result.warnings)} validation warning(s)[/yellow]")
    console.print("[green]✓ Setup complete[/green]")


def show_secret_status(statuses: List[SecretStatus]) -> None:
    table = Table(title="Secrets")
    table.add_column("Env var", style="bold")
    table.add_column("Key")
    table.add_column("Owner")
    table.add_column("Status")
    table.add_column("Hint", style="dim")
    for s in statuses:
        style = STATUS_STYLES.get(s.status, "")
        table.add_row(s.env_var, s.key, s.agent or "global", f"[{style}]{s.status}[/{style}]", s.hint)
    console.print(table)


def show_plugins(entries: List[PluginEntry]) -> None:
    table = Table(title="Plugins")
    table.add_column("Name", style="cyan")
    table.add_column("Display name")
    table.add_column("Source")
    table.add_column("Config path")
    table.add_column("Secrets")
    table.add_column("Hooks")
    for entry in entries:
        data = entry.to_dict()
        hooks = []
        if data["hooks"]["resolve"]:
            hooks.append("resolve")
        if data["hooks"]["onboard"]:
            hooks.append("onboard")
        table.add_row(
            data["name"],
            data["displayName"],
            data["source"],
            data["configPath"],
            ", ".join(data["secrets"].values()) or "-",
            ", ".join(hooks) or "-",
        )
    console.print(table)


def show_plugin_info(entry: PluginEntry) -> None:
    m = entry.manifest
    lines = [
        f"[bold]Source:[/bold]       {entry.source.value}" + (f" ({entry.path})" if entry.path else ""),
        f"[bold]Config path:[/bold]  {m.config_path}",
        f"[bold]Installable:[/bold]  {m.installable}",
        f"[bold]Needs funnel:[/bold] {m.needs_funnel}",
    ]
    for key, secret in m.secrets.items():
        flags = [secret.scope]
        if secret.auto_resolvable:
            flags.append("auto")
        if not secret.required:
            flags.append("optional")
        if secret.validator:
            flags.append(f"prefix {secret.validator}")
        lines.append(f"  {key:<16} {secret.env_var:<26} {', '.join(flags)}")
    if m.internal_keys:
        lines.append(f"[bold]Internal keys:[/bold] {', '.join(m.internal_keys)}")
    if m.resolve_hooks:
        lines.append(f"[bold]Resolve hooks:[/bold] {', '.join(m.resolve_hooks)}")
    if m.onboard_hook:
        lines.append(f"[bold]Onboard hook:[/bold]  {m.onboard_hook.description}")
    if m.webhook_setup:
        hook = m.webhook_setup
        lines.append(f"[bold]Webhook:[/bold]      https://<tailnet-dns-name>{hook.url_path}")
        target = f" ({hook.config_json_path})" if hook.config_json_path else ""
        lines.append(f"  signing secret -> {hook.secret_key}{target}")
        lines.extend(f"  {escape(step)}" for step in hook.instructions)
    console.print(Panel("\n".join(lines), title=f"{m.display_name or m.name} ({m.name})", border_style="blue"))
