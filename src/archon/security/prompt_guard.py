"""
Prompt Guard - Keep untrusted text (notes, tool output, history) safe to send to a model.

Two functions:
  detect_injection_attempt() -- Scans for known injection patterns (logs, doesn't block)
  sanitize_for_prompt()      -- Truncation, null byte removal, length enforcement

Note content and tool results are user data. They are passed to the model
as user/function messages, never spliced into the system prompt.

Reference: OWASP LLM Top 10 (2025) - LLM01: Prompt Injection
"""

import logging
import re

logger = logging.getLogger(__name__)

INJECTION_PATTERNS = [
    r"ignore\s+(all\s+)?previous\s+instructions",
    r"you\s+are\s+now\s+a",
    r"forget\s+(all\s+)?(your|previous)\s+instructions",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|system\|>",
    r"override\s+safety",
    r"jailbreak",
]


def detect_injection_attempt(text: str, source: str = "input") -> list[str]:
    """
    Detect potential prompt injection patterns in untrusted content.

    Returns list of matched patterns (empty = clean). Does NOT block:
    the caller decides what to do with the findings.
    """
    if not text:
        return []

    text_lower = text.lower()
    findings = [p for p in INJECTION_PATTERNS if re.search(p, text_lower)]

    if findings:
        logger.warning(
            f"[PromptGuard] Detected {len(findings)} potential injection pattern(s) "
            f"in {source} ({len(text)} chars)"
        )

    return findings


def sanitize_for_prompt(
    content: str,
    max_length: int = 100_000,
    strip_null: bool = True,
    marker: str = "\n[TRUNCATED]",
) -> str:
    """
    Sanitize content for safe inclusion in model messages.

    - Truncates to max_length and appends the truncation marker
    - Strips null bytes
    - Does NOT remove injection patterns (that would alter user content)
    """
    if not content:
        return ""

    if strip_null:
        content = content.replace("\x00", "")

    if len(content) > max_length:
        content = content[:max_length] + marker
        logger.debug(f"[PromptGuard] Content truncated to {max_length} chars")

    return content
