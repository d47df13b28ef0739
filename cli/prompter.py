"""Interactive input collection for onboard hooks."""

import logging
from typing import Callable, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.validation import ValidationError, Validator
from rich.panel import Panel
from rich.text import Text

from cli.renderer import console
from fleet.errors import OnboardCancelled

logger = logging.getLogger(__name__)


class _CheckValidator(Validator):
    """Adapts a ``value -> problem | None`` check to prompt_toolkit."""

    def __init__(self, check: Callable[[str], Optional[str]]):
        self.check = check

    def validate(self, document):
        problem = self.check(document.text.strip())
        if problem:
            raise ValidationError(message=problem, cursor_position=len(document.text))


class PromptToolkitCollector:
    """Prompts the operator one value at a time."""

    def __init__(self, session: Optional[PromptSession] = None):
        self.session = session or PromptSession()

    def show(self, text: str) -> None:
        console.print(Panel(Text(text), border_style="cyan"))

    def ask(self, message: str, validate: Callable[[str], Optional[str]], secret: bool = True) -> str:
        try:
            value = self.session.prompt(
                HTML("<b>{}</b> ").format(message),
                is_password=secret,
                validator=_CheckValidator(validate),
                validate_while_typing=False,
            )
        except (KeyboardInterrupt, EOFError):
            logger.info("Input collection cancelled by operator")
            raise OnboardCancelled()
        return value.strip()
