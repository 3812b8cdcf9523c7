"""Themed terminal display and the terminal frontend."""

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.theme import Theme

from clash.classifier import Verdict
from clash.config import settings
from clash.preview import PreviewResult

# -- Theme palettes (keyed by theme name) ------------------------------------

_THEMES: dict[str, dict[str, str]] = {
    "dark":  {"status": "yellow",      "info": "cyan", "accent": "bold cyan", "allow": "green", "confirm": "bold orange3", "block": "bold red", "error": "bold red", "success": "green", "warning": "orange3", "hint": "dim"},
    "light": {"status": "dark_orange", "info": "blue", "accent": "bold blue", "allow": "green", "confirm": "bold orange3", "block": "bold red", "error": "bold red", "success": "green", "warning": "orange3", "hint": "dim"},
}

# -- Console (single instance, themed) --------------------------------------

console = Console(theme=Theme(_THEMES.get(settings.theme, _THEMES["light"])))
err_console = Console(stderr=True, theme=Theme(_THEMES.get(settings.theme, _THEMES["light"])))

# -- Indicators ------------------------------------------------------------

BULLET  = "▸"
SUCCESS = "✦"
ERROR   = "✖"
INFO    = "◈"


def set_theme(name: str) -> None:
    """Switch the console theme at runtime (e.g. from --theme flag)."""
    console.push_theme(Theme(_THEMES.get(name, _THEMES["light"])))
    err_console.push_theme(Theme(_THEMES.get(name, _THEMES["light"])))


# -- Display helpers -------------------------------------------------------


def display_error(message: str, hint: str | None = None) -> None:
    """Red-bordered panel with optional recovery hint."""
    body = f"[bold red]{ERROR} {message}[/bold red]"
    if hint:
        body += f"\n[dim]{hint}[/dim]"
    err_console.print(Panel(body, border_style="red", title="Error", title_align="left"))


def display_info(message: str) -> None:
    console.print(f"[info]{INFO} {message}[/info]")


def format_preview(preview: PreviewResult) -> str:
    """One-line preview summary: count, sample, and any preview error."""
    text = f"Preview: {preview.count} items"
    if preview.sample:
        text += f" sample: {', '.join(preview.sample)}"
    if preview.error:
        text += f" (preview error: {preview.error})"
    return text


# -- TerminalFrontend (FrontendProtocol implementation) --------------------


class TerminalFrontend:
    """Rich-based frontend for the gate: verdict rendering and operator prompts."""

    def on_allow(self, verdict: Verdict) -> None:
        console.print("[allow]CLASH: ALLOW (fast path)[/allow]")

    def on_block(self, verdict: Verdict) -> None:
        label = "CLASH: BLOCKED (hard)" if verdict.hard else "CLASH: BLOCKED"
        console.print(f"[block]{label}[/block]")
        for reason in verdict.reasons:
            console.print(f"  {BULLET} {reason}", markup=False, highlight=False)
        if verdict.safer_alternative:
            console.print(f"[hint]Safer:[/hint] {verdict.safer_alternative}")

    def on_confirm(self, verdict: Verdict, preview: PreviewResult | None) -> None:
        console.print("[confirm]CLASH: CONFIRM[/confirm]")
        for signal in verdict.signals:
            console.print(f"  {BULLET} signal: {signal}", markup=False, highlight=False)
        if preview is not None:
            console.print(format_preview(preview), markup=False, highlight=False)
        if verdict.safer_alternative:
            console.print(f"[hint]Safer:[/hint] {verdict.safer_alternative}")

    def on_status(self, message: str) -> None:
        console.print(f"[status]{message}[/status]")

    def confirm(self, prompt: str) -> bool:
        """Ask y/N. Anything but y/yes is a refusal, EOF and Ctrl-C included."""
        try:
            answer = Prompt.ask(
                f"{prompt} [[green]y[/green]/[red]N[/red]]",
                default="", show_default=False, console=console,
            )
        except (EOFError, KeyboardInterrupt):
            console.print()
            return False
        return answer.strip().lower() in ("y", "yes")

    def require_phrase(self, prompt: str, phrase: str) -> bool:
        """Operator must type *phrase* exactly (surrounding whitespace ignored)."""
        console.print(f"[warning]{prompt}[/warning]")
        try:
            typed = Prompt.ask(
                f'Type "[bold]{phrase}[/bold]" to continue',
                default="", show_default=False, console=console,
            )
        except (EOFError, KeyboardInterrupt):
            console.print()
            return False
        return typed.strip() == phrase
