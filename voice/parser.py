"""
Command Parser — turns recognized utterance text into a ParsedCommand.

Pure and synchronous: the same (text, language) always yields the same
command. Acoustic confidence is not considered here; the confidence on the
result only distinguishes "matched" (1.0) from "not matched" (0.5).
"""
from __future__ import annotations

import re
import structlog
from typing import Optional

from models.schemas import CommandAction, ParsedCommand
from voice.lexicon import CommandLexicon

logger = structlog.get_logger()

MATCHED_CONFIDENCE = 1.0
UNMATCHED_CONFIDENCE = 0.5
DEFAULT_QUANTITY = 1

_QUANTITY_RE = re.compile(r"\d+")


def normalize(text: str) -> str:
    return text.lower().strip()


def extract_quantity(text: str) -> int:
    """First contiguous run of digits, or 1 when the text has none."""
    match = _QUANTITY_RE.search(text)
    return int(match.group(0)) if match else DEFAULT_QUANTITY


class CommandParser:

    def __init__(self, lexicon: Optional[CommandLexicon] = None):
        self.lexicon = lexicon or CommandLexicon()

    def parse(self, text: str, language: str = "en") -> ParsedCommand:
        """
        Classify an utterance.

        Raises:
            UnsupportedLanguageError: language has no lexicon table.
        """
        table = self.lexicon.lookup(language)
        normalized = normalize(text)
        quantity = extract_quantity(normalized)

        for action, phrases in table:
            if any(phrase in normalized for phrase in phrases):
                return ParsedCommand(
                    action=action,
                    quantity=quantity,
                    confidence=MATCHED_CONFIDENCE,
                    original_text=normalized,
                    language=language,
                )

        logger.debug("utterance_unmatched", text=normalized, language=language)
        return ParsedCommand(
            action=CommandAction.UNKNOWN,
            quantity=DEFAULT_QUANTITY,
            confidence=UNMATCHED_CONFIDENCE,
            original_text=normalized,
            language=language,
        )
