"""Log sources package."""
from pm2relay.sources.pm2 import (
    Pm2LogSource,
    SourceUnavailableError,
    build_launch_commands,
    find_pm2_executable,
)
from pm2relay.sources.sanitizer import LineSanitizer, sanitize_line

__all__ = [
    "Pm2LogSource",
    "SourceUnavailableError",
    "build_launch_commands",
    "find_pm2_executable",
    "LineSanitizer",
    "sanitize_line",
]
