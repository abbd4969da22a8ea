"""Console and colors shared by the tokenshare CLI output."""

from rich.console import Console

CYAN = "#00d4e5"
VIOLET = "#b44dff"
GREEN = "#34d399"
AMBER = "#e5c747"
RED = "#e55a6e"
DIM = "#4a4a60"

STATUS_STYLES: dict[str, str] = {
    "polling": f"dim {CYAN}",
    "success": f"bold {GREEN}",
    "error": RED,
    "timeout": AMBER,
    "rate_limit": AMBER,
}

console = Console(stderr=True)
