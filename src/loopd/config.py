"""Local configuration for loopd."""

from __future__ import annotations

import os
from pathlib import Path


DEFAULT_OUTPUT_DIR = "."
DEFAULT_FETCH_TIMEOUT_S = 10.0
DEFAULT_FETCH_MAX_RETRIES = 0
DEFAULT_FETCH_BACKOFF_S = 0.5
DEFAULT_USER_AGENT = "loopd/0.1 (+https://github.com/stuffbucket/loopd)"
DEFAULT_MIN_IMAGE_PX = 50
DEFAULT_EXPAND_MAX_OPERATIONS = 100
DEFAULT_EXPAND_SETTLE_S = 0.8
DEFAULT_SCROLL_STEP_DELAY_S = 0.1
DEFAULT_NAVIGATION_TIMEOUT_S = 60.0

LOOPD_OUTPUT_DIR = Path(os.getenv("LOOPD_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)).expanduser()
LOOPD_FETCH_TIMEOUT_S = float(os.getenv("LOOPD_FETCH_TIMEOUT_S", str(DEFAULT_FETCH_TIMEOUT_S)))
LOOPD_FETCH_MAX_RETRIES = int(os.getenv("LOOPD_FETCH_MAX_RETRIES", str(DEFAULT_FETCH_MAX_RETRIES)))
LOOPD_FETCH_BACKOFF_S = float(os.getenv("LOOPD_FETCH_BACKOFF_S", str(DEFAULT_FETCH_BACKOFF_S)))
LOOPD_USER_AGENT = os.getenv("LOOPD_USER_AGENT", DEFAULT_USER_AGENT)
LOOPD_MIN_IMAGE_PX = int(os.getenv("LOOPD_MIN_IMAGE_PX", str(DEFAULT_MIN_IMAGE_PX)))
LOOPD_EXPAND_MAX_OPERATIONS = int(os.getenv("LOOPD_EXPAND_MAX_OPERATIONS", str(DEFAULT_EXPAND_MAX_OPERATIONS)))
LOOPD_EXPAND_SETTLE_S = float(os.getenv("LOOPD_EXPAND_SETTLE_S", str(DEFAULT_EXPAND_SETTLE_S)))
LOOPD_SCROLL_STEP_DELAY_S = float(os.getenv("LOOPD_SCROLL_STEP_DELAY_S", str(DEFAULT_SCROLL_STEP_DELAY_S)))
LOOPD_NAVIGATION_TIMEOUT_S = float(os.getenv("LOOPD_NAVIGATION_TIMEOUT_S", str(DEFAULT_NAVIGATION_TIMEOUT_S)))

# Language labels Loop prints above collapsed code snippets. Extend through
# LOOPD_EXTRA_CODE_LANGUAGES as new labels show up in exported pages.
CODE_LANGUAGE_LABELS: tuple[str, ...] = (
    "Shell",
    "PowerShell",
    "Bash",
    "JavaScript",
    "TypeScript",
    "Python",
    "JSON",
    "HTML",
    "CSS",
    "SQL",
    "C#",
    "Java",
    "Go",
    "Rust",
    "Ruby",
    "PHP",
    "Kotlin",
    "Swift",
    "YAML",
    "XML",
    "Markdown",
    "Text",
) + tuple(
    label.strip()
    for label in os.getenv("LOOPD_EXTRA_CODE_LANGUAGES", "").split(",")
    if label.strip()
)

SHOW_MORE_LINES_TEXT = "Show more lines"

# Keyword -> GitHub alert type. Order matters: the first keyword found in the
# callout's class/data-type wins.
CALLOUT_TYPES: tuple[tuple[str, str], ...] = (
    ("note", "NOTE"),
    ("info", "NOTE"),
    ("tip", "TIP"),
    ("hint", "TIP"),
    ("success", "TIP"),
    ("important", "IMPORTANT"),
    ("warning", "WARNING"),
    ("caution", "CAUTION"),
    ("danger", "CAUTION"),
    ("error", "CAUTION"),
)
DEFAULT_CALLOUT_TYPE = "NOTE"

INLINE_CODE_MAX_CHARS = 200
COLLAPSED_SNIPPET_MAX_CHARS = 500
