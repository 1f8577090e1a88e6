"""
PM2 Line Sanitizer
Strips terminal formatting and PM2 chatter from raw `pm2 logs` output.
"""
import re
from typing import Optional


class LineSanitizer:
    """
    Turns raw `pm2 logs --raw` lines into ready-to-send text.

    - Removes ANSI escape sequences
    - Drops PM2 tailing/header lines
    - Marks stderr lines with "[stderr] "
    - Rewrites "name | message" and "[name] message" to "[NAME] message"
    - Prefixes the monitored app name when a single app is watched

    Usage:
        >>> sanitizer = LineSanitizer(app_name="api")
        >>> sanitizer.sanitize("\\x1b[32mready\\x1b[0m")
        '[API] ready'
    """

    ANSI_PATTERN = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")

    # e.g. "/home/app/.pm2/logs/api-error.log last 15 lines:"
    #      "[TAILING] Tailing last 15 lines for [all] processes"
    HEADER_PATTERNS = [
        re.compile(r"last \d+ lines", re.IGNORECASE),
        re.compile(r"^\[?TAILING\]?", re.IGNORECASE),
    ]

    # "api | message", "api│ message", "api: message"
    PROCESS_SEPARATOR_PATTERN = re.compile(r"^([^\s|│\[\]]+)\s*[|│:]\s*(.*)$")
    # "[api] message"
    PROCESS_BRACKET_PATTERN = re.compile(r"^\[([^\]]+)\]\s*(.*)$")

    STDERR_PREFIX = "[stderr] "

    def __init__(self, app_name: str = "all"):
        self.app_name = app_name

    @property
    def app_prefix(self) -> Optional[str]:
        if self.app_name.lower() == "all":
            return None
        return f"[{self.app_name.upper()}] "

    def sanitize(self, raw: Optional[str], is_stderr: bool = False) -> Optional[str]:
        """
        Clean a single raw line.

        Args:
            raw: Line as read from the pm2 process
            is_stderr: Whether the line came from stderr

        Returns:
            Sanitized text, or None when the line should not be sent
        """
        if raw is None:
            return None

        text = self.ANSI_PATTERN.sub("", str(raw)).strip()
        if not text:
            return None

        if any(pattern.search(text) for pattern in self.HEADER_PATTERNS):
            return None

        if is_stderr and not text.startswith(self.STDERR_PREFIX):
            text = self.STDERR_PREFIX + text

        separated = self.PROCESS_SEPARATOR_PATTERN.match(text)
        if separated:
            process, rest = separated.groups()
            if process and rest:
                return f"[{process.upper()}] {rest}"

        bracketed = self.PROCESS_BRACKET_PATTERN.match(text)
        if bracketed:
            process, rest = bracketed.groups()
            if process and rest:
                text = f"[{process.upper()}] {rest}"

        prefix = self.app_prefix
        if prefix and not text.startswith(prefix):
            text = prefix + text

        return text


def sanitize_line(raw: Optional[str], is_stderr: bool = False, app_name: str = "all") -> Optional[str]:
    """Convenience wrapper around LineSanitizer.sanitize."""
    return LineSanitizer(app_name=app_name).sanitize(raw, is_stderr=is_stderr)
