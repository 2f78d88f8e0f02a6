"""Prompt intent helpers: is the user asking to fix errors, and is the ask too vague to act on?"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List

ERROR_FIX_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"fix\s+(the\s+)?errors?",
        r"review\s+(all\s+)?(the\s+)?(files?|code)",
        r"ensure\s+(there\s+are\s+)?no\s+errors?",
        r"check\s+(for\s+)?errors?",
        r"find\s+(and\s+fix\s+)?errors?",
        r"debug\s+(the\s+)?(code|files?|project)",
        r"what('s|\s+is)\s+wrong",
        r"why\s+is\s+it\s+(not\s+)?working",
        r"make\s+it\s+work",
        r"clean\s+up\s+(the\s+)?(code|files?)",
        r"resolve\s+(the\s+)?issues?",
        r"address\s+(the\s+)?errors?",
    )
]

IMPLEMENTATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(make|add|create|build|implement|set|change|update)\s+",
        r"as\s+(the\s+)?default",
        r"add\s+(a|an|the)\s+",
        r"^(i\s+)?(want|need)\s+",
    )
]

EXPLICIT_ERROR_WORDS = re.compile(r"\b(fix|error|bug|debug|broken|wrong|issue|problem)\b", re.IGNORECASE)

VAGUE_REQUEST_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(it('s|\s+is)?\s+)?(not\s+working|broken|bugged?)$",
        r"^(something('s|\s+is)?\s+)?wrong$",
        r"^help(\s+me)?$",
        r"^fix\s+(it|this)$",
        r"^(there('s|\s+is)?\s+)?(a\s+)?(problem|issue)$",
        r"^(it\s+)?doesn('t|t)\s+work$",
        r"^error$",
        r"^bug$",
        r"^(i\s+)?(got|have|see)\s+(an?\s+)?error$",
        r"^(i\s+)?(need|want)\s+help$",
    )
]


def _normalize(prompt: str) -> str:
    return prompt.strip().lower().rstrip(".!?")


def is_error_fix_intent(prompt: str) -> bool:
    """
    True only when the prompt asks for error fixing.

    Implementation requests ("make the login page the default") do not
    count unless they also use an explicit error word.
    """
    normalized = _normalize(prompt)
    if not any(p.search(normalized) for p in ERROR_FIX_PATTERNS):
        return False
    if any(p.search(normalized) for p in IMPLEMENTATION_PATTERNS):
        return bool(EXPLICIT_ERROR_WORDS.search(normalized))
    return True


def is_vague_request(prompt: str) -> bool:
    normalized = _normalize(prompt)
    return any(p.search(normalized) for p in VAGUE_REQUEST_PATTERNS)


@dataclass
class ClarificationRequest:
    is_vague: bool
    original_request: str
    questions: List[str] = field(default_factory=list)
    response: str = ""


def clarification_request(prompt: str) -> ClarificationRequest:
    if not is_vague_request(prompt):
        return ClarificationRequest(is_vague=False, original_request=prompt)

    normalized = _normalize(prompt)
    if "error" in normalized:
        intro = "I'd like to help you fix this error, but I need a bit more information."
        questions = [
            "What is the exact error message you are seeing?",
            "Where does the error appear (terminal, browser console, or editor)?",
        ]
    elif re.search(r"not\s+working|broken|doesn('t|t)\s+work", normalized):
        intro = "I'd like to help fix this issue, but I need to understand what's happening."
        questions = [
            "What specific behavior are you seeing?",
            "What did you expect to happen instead?",
        ]
    elif "bug" in normalized:
        intro = "I'd like to help fix this bug, but I need more details to investigate."
        questions = [
            "What is the unexpected behavior you are observing?",
            "Can you describe the steps to reproduce this bug?",
        ]
    else:
        intro = "I'd like to help, but I need more information to understand the issue."
        questions = [
            "What specific issue are you experiencing?",
            "Are there any error messages in the terminal or browser console?",
        ]
    questions.append("Which file or feature is affected?")

    numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, start=1))
    response = f"{intro}\n\nPlease provide more details:\n{numbered}"
    return ClarificationRequest(
        is_vague=True, original_request=prompt, questions=questions, response=response
    )
