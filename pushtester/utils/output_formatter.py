"""Terminal rendering for the pushtester CLI"""
import json
import sys
from typing import Optional, TextIO


class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    CYAN = '\033[36m'


class OutputFormatter:
    """
    Prints results for humans.

    ANSI colors are only used when the stream is a terminal, so piped
    output stays plain.
    """

    def __init__(self, stream: Optional[TextIO] = None, use_colors: Optional[bool] = None):
        self.stream = stream or sys.stdout
        if use_colors is None:
            isatty = getattr(self.stream, "isatty", None)
            use_colors = bool(isatty and isatty())
        self.use_colors = use_colors

    def _write(self, line: str = "") -> None:
        print(line, file=self.stream)

    def _style(self, text: str, *codes: str) -> str:
        if not self.use_colors:
            return text
        return f"{''.join(codes)}{text}{Colors.RESET}"

    def print_success(self, message: str) -> None:
        self._write(f"{self._style('✓', Colors.GREEN, Colors.BOLD)} {self._style(message, Colors.GREEN)}")

    def print_error(self, message: str, details: Optional[str] = None) -> None:
        self._write(f"{self._style('✗', Colors.RED, Colors.BOLD)} {self._style(message, Colors.RED)}")
        if details:
            self._write(f"  {self._style(details, Colors.DIM)}")

    def print_info(self, message: str) -> None:
        self._write(self._style(message, Colors.CYAN, Colors.BOLD))

    def print_detail(self, label: str, value: str) -> None:
        self._write(f"  {self._style(label + ':', Colors.DIM)} {value}")

    def print_explanation(self, text: str) -> None:
        self._write(f"  {self._style('Explanation:', Colors.YELLOW, Colors.BOLD)}")
        for line in text.splitlines():
            if line:
                self._write(f"  {self._style(line, Colors.DIM)}")

    def blank(self) -> None:
        self._write()


def pretty_print_json(text: str) -> str:
    """Indent JSON with sorted keys; return the input unchanged if it is not JSON."""
    try:
        return json.dumps(json.loads(text), indent=2, sort_keys=True, ensure_ascii=False)
    except ValueError:
        return text
