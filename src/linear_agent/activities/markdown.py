"""Markdown post-processing for activities rendered inside Linear."""

from __future__ import annotations

import re

_PROFILE_URL = re.compile(r"https://linear\.app/[\w-]+/profiles/([\w.-]+)")
_ISSUE_URL = re.compile(r"https://linear\.app/[\w-]+/issue/([A-Za-z][A-Za-z0-9]*-\d+)(?:/[\w-]*)?")
_CODE_FENCE = re.compile(r"```(\w+)?\n([\s\S]*?)```")


def _reflow_code_block(match: re.Match[str]) -> str:
    language = match.group(1) or ""
    code = match.group(2).strip()
    return f"```{language}\n{code}\n```"


def normalize_markdown(text: str) -> str:
    """Rewrite Linear links as mentions and tidy fenced code blocks.

    Profile links become ``@handle`` and issue links become the bare
    identifier, which Linear renders as a mention. Running the function on
    its own output returns the same text.
    """

    text = _PROFILE_URL.sub(lambda match: f"@{match.group(1)}", text)
    text = _ISSUE_URL.sub(lambda match: match.group(1).upper(), text)
    return _CODE_FENCE.sub(_reflow_code_block, text)


__all__ = ["normalize_markdown"]
