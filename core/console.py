import logging
import sys
from typing import IO, Optional, Sequence

from rich.console import Console as RichConsole
from rich.prompt import Confirm, Prompt
from rich.text import Text

from core.logger import log_event


class Console:
    """
    Operator-facing writer for the colour-coded status lines:

        [INFO] ...   [OK] ...   [WARNING] ...   [ERROR] ...

    Every line is mirrored into the log file. An instance is passed into the
    provisioner, inventory and installers instead of printing from globals,
    so tests can capture the output by handing in a StringIO.
    """

    def __init__(self, file: Optional[IO[str]] = None, interactive: Optional[bool] = None) -> None:
        self._rich = RichConsole(file=file, highlight=False, soft_wrap=True)
        if interactive is None:
            interactive = sys.stdin.isatty()
        self.interactive = interactive

    def _line(self, flag: str, style: str, message: str, level: int) -> None:
        self._rich.print(Text.assemble((flag, style), " ", message))
        log_event(f"{flag} {message}", level=level)

    def info(self, message: str) -> None:
        self._line("[INFO]", "blue", message, logging.INFO)

    def ok(self, message: str) -> None:
        self._line("[OK]", "green", message, logging.INFO)

    def warning(self, message: str) -> None:
        self._line("[WARNING]", "yellow", message, logging.WARNING)

    def error(self, message: str) -> None:
        self._line("[ERROR]", "red", message, logging.ERROR)

    def echo(self, message: str = "") -> None:
        self._rich.print(Text(message))

    def print(self, renderable) -> None:
        self._rich.print(renderable)

    # ------------------------------------------------------------------
    # Interactive prompts (declined automatically when not on a TTY)
    # ------------------------------------------------------------------
    def confirm(self, question: str) -> bool:
        if not self.interactive:
            log_event(f"[console] Non-interactive session, declining: {question}")
            return False
        return Confirm.ask(question, default=False, console=self._rich)

    def choose(self, question: str, choices: Sequence[str]) -> Optional[str]:
        """
        Let the operator pick one of `choices`. Returns None when there is
        nobody to ask.
        """
        if not self.interactive or not choices:
            return None
        for idx, choice in enumerate(choices, start=1):
            self.echo(f"  {idx}) {choice}")
        answer = Prompt.ask(
            question,
            choices=[str(i) for i in range(1, len(choices) + 1)],
            default="1",
            console=self._rich,
        )
        return choices[int(answer) - 1]
