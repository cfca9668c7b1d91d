import os
import re
import sys
import json
from datetime import datetime
from typing import Any, Dict

LINE_BREAKS = re.compile(r"[\n\t\r]")

def log_error(message: str) -> None:
    print(f"[ubnt-ssh] {message}", file=sys.stderr, flush=True)

def clamp_float(value: Any, default: float, min_value: float, max_value: float) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        numeric = default
    if numeric < min_value:
        return min_value
    if numeric > max_value:
        return max_value
    return numeric

def iso_now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")

def safe_name(text: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "_", text.strip())
    return cleaned[:80] if cleaned else "unnamed"

def rstrip_output(text: str) -> str:
    """Trim trailing whitespace only; leading and inner text is left alone."""
    if not text:
        return ""
    return text.rstrip()

def strip_line_breaks(text: str) -> str:
    """Remove every newline, tab and carriage return. Spaces are kept."""
    if not text:
        return ""
    return LINE_BREAKS.sub("", text)

def json_line(path: str, payload: Dict[str, Any]) -> None:
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
    except OSError as exc:
        log_error(f"log write failed ({path}): {exc}")

def make_log_dir(log_root: str) -> Dict[str, str]:
    sessions_dir = os.path.join(log_root, "sessions")
    os.makedirs(sessions_dir, exist_ok=True)
    return {
        "log_root": log_root,
        "sessions_dir": sessions_dir,
    }
