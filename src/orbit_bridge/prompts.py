"""System-instruction assembly and canned prompt text."""

from __future__ import annotations

import re
from typing import Optional

from orbit_bridge.types import SpecialMode

MAX_SYSTEM_PROMPT_CHARS = 8000

# Sent as the user message of every follow-up turn inside the function calling loop.
CONTINUATION_MESSAGE = (
    "Use the tool results above to answer the original question. "
    "If the results are not sufficient, call more tools."
)

MODE_AUGMENTATION: dict[SpecialMode, str] = {
    SpecialMode.CANVAS: (
        "[Canvas mode] When you produce HTML, CSS or JavaScript, put each part in "
        "its own fenced code block:\n"
        "```html\n(HTML code)\n```\n"
        "```css\n(CSS code)\n```\n"
        "```javascript\n(JavaScript code)\n```\n"
        "The code should be complete enough to render directly in a web page."
    ),
    SpecialMode.SEARCH: (
        "[Search mode] The question needs up-to-date information. "
        "Answer as accurately and with as current information as possible."
    ),
    SpecialMode.ASSISTANT_SUPPORT: (
        "[Support mode] You are a technical support assistant for announcements and "
        "Q&A troubleshooting. Be accurate and friendly, analyse the cause of the "
        "problem and guide the user step by step towards a fix."
    ),
}

_TOOL_INSTRUCTIONS = """\
**Available tools:**
1. search_wikipedia: look up facts about history, people, concepts or technology on Wikipedia.
2. get_weather: current weather for a named city, or for the user's location when no city is given.
3. execute_code: run a short Python, JavaScript, SQL or shell snippet and return its output.

**Code execution:**
- Python: arithmetic, data analysis, algorithms
- JavaScript: JSON handling, string manipulation
- SQL: queries against a small test table named test_table
- Time limit: 10 seconds by default
- No file system, network or system command access

**Guidelines:**
- When the user asks for specific information, use the matching tool instead of guessing.
- Use execute_code for requests to calculate, run code or show results.
- Combine information from several tool results into one balanced answer and cite the source."""


def clean_system_prompt(prompt: Optional[str]) -> str:
    """Trim, cap at ``MAX_SYSTEM_PROMPT_CHARS`` and squeeze blank-line runs."""
    if not prompt or not isinstance(prompt, str):
        return ""
    cleaned = prompt.strip()
    if len(cleaned) > MAX_SYSTEM_PROMPT_CHARS:
        cleaned = cleaned[:MAX_SYSTEM_PROMPT_CHARS] + "..."
    return re.sub(r"\n{3,}", "\n\n", cleaned)


def tool_instructions() -> str:
    return _TOOL_INSTRUCTIONS


def build_system_instruction(
    system_prompt: Optional[str],
    mode: SpecialMode = SpecialMode.NONE,
    *,
    use_tools: bool = False,
) -> Optional[str]:
    """
    Join the caller's system prompt, the mode augmentation and (when tools are
    enabled) the tool-usage instructions. Returns None when all are empty.
    """
    sections = [clean_system_prompt(system_prompt)]
    sections.append(MODE_AUGMENTATION.get(mode, ""))
    if use_tools:
        sections.append(_TOOL_INSTRUCTIONS)
    text = "\n\n".join(s for s in sections if s)
    return text or None


_FENCE = r"```{lang}\s*\n(.*?)```"


def extract_canvas(text: str) -> dict[str, str]:
    """Pull the html/css/javascript fenced blocks out of a canvas-mode answer."""
    found: dict[str, str] = {}
    for key, langs in (("html", "html"), ("css", "css"), ("js", "(?:javascript|js)")):
        match = re.search(_FENCE.format(lang=langs), text or "", re.DOTALL | re.IGNORECASE)
        found[key] = match.group(1).strip() if match else ""
    return found


__all__ = [
    "CONTINUATION_MESSAGE",
    "MODE_AUGMENTATION",
    "build_system_instruction",
    "clean_system_prompt",
    "extract_canvas",
    "tool_instructions",
]
