"""
Terminal output and prompts.

Coloured status lines plus the y/n and free-text prompts used by the
interactive flows. Input and output are injectable so flows can be driven
from tests.
"""

import sys

# ANSI colors for terminal output
RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[0;34m"
CYAN = "\033[0;36m"
RESET = "\033[0m"

RULE = "=" * 46


class Console:
    """Status printer and prompt reader."""

    def __init__(self, input_func=input, stream=None, color: bool | None = None):
        self.input_func = input_func
        self.stream = stream if stream is not None else sys.stdout
        if color is None:
            color = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.color = color

    def paint(self, text: str, color: str) -> str:
        return f"{color}{text}{RESET}" if self.color else text

    def echo(self, text: str = "") -> None:
        print(text, file=self.stream)

    def info(self, msg: str) -> None:
        self.echo(f"{self.paint('[INFO]', BLUE)} {msg}")

    def success(self, msg: str) -> None:
        self.echo(f"{self.paint('[SUCCESS]', GREEN)} {msg}")

    def warning(self, msg: str) -> None:
        self.echo(f"{self.paint('[WARNING]', YELLOW)} {msg}")

    def error(self, msg: str) -> None:
        self.echo(f"{self.paint('[ERROR]', RED)} {msg}")

    def header(self, *lines: str) -> None:
        self.echo()
        self.echo(self.paint(RULE, CYAN))
        for line in lines:
            self.echo(self.paint(f"  {line}", CYAN))
        self.echo(self.paint(RULE, CYAN))
        self.echo()

    def ask(self, prompt: str, default: str | None = None) -> str:
        """
        Read one line of input.

        Args:
            prompt: Text shown before the cursor.
            default: Returned when the answer is blank. Shown as [default].

        Returns:
            The stripped answer, or the default.
        """
        suffix = f" [{default}]" if default not in (None, "") else ""
        answer = self.input_func(f"{prompt}{suffix}: ").strip()
        if not answer and default is not None:
            return default
        return answer

    def confirm(self, prompt: str) -> bool:
        """Ask a (y/n) question. Only y or Y counts as yes."""
        return self.ask(f"{prompt} (y/n)") in ("y", "Y")
