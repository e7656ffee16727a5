"""
Command Lexicon — per-language trigger phrases for each picking action.

Each table is an ordered tuple of (action, phrases) pairs. Matching is a
case-insensitive substring scan in table order, so when an utterance
contains phrases of several actions the earliest action wins:

    pick → confirm → skip → repeat → help

The order is part of the contract. "got it, next" resolves to pick because
"got" is scanned before "next"; change the tables with that in mind.
"""
from __future__ import annotations

import structlog
from typing import Optional

from core.errors import UnsupportedLanguageError
from models.schemas import CommandAction

logger = structlog.get_logger()

LexiconTable = tuple[tuple[CommandAction, tuple[str, ...]], ...]

ACTION_ORDER: tuple[CommandAction, ...] = (
    CommandAction.PICK,
    CommandAction.CONFIRM,
    CommandAction.SKIP,
    CommandAction.REPEAT,
    CommandAction.HELP,
)


ENGLISH: LexiconTable = (
    (CommandAction.PICK, ("pick", "picked", "take", "took", "get", "got")),
    (CommandAction.CONFIRM, ("confirm", "yes", "correct", "done", "complete", "next")),
    (CommandAction.SKIP, ("skip", "missing", "not found", "unavailable")),
    (CommandAction.REPEAT, ("repeat", "again", "what", "pardon")),
    (CommandAction.HELP, ("help", "assistance", "support")),
)

JAPANESE: LexiconTable = (
    (CommandAction.PICK, ("ピック", "とる", "とった", "取る", "取った")),
    (CommandAction.CONFIRM, ("確認", "はい", "正しい", "完了", "かんりょう", "次")),
    (CommandAction.SKIP, ("スキップ", "ない", "見つからない", "在庫切れ")),
    (CommandAction.REPEAT, ("繰り返し", "もう一度", "何", "すみません")),
    (CommandAction.HELP, ("ヘルプ", "助け", "サポート")),
)


# Spoken command reference, shown or read to the worker on request.
COMMAND_REFERENCE: dict[str, dict[str, str]] = {
    "en": {
        "Pick [quantity]": "Confirm picking items",
        "Confirm": "Confirm current action",
        "Skip": "Skip item (not found/unavailable)",
        "Repeat": "Repeat last instruction",
        "Help": "Get assistance",
    },
    "ja": {
        "[数量] ピック": "アイテムのピックを確認",
        "確認": "現在のアクションを確認",
        "スキップ": "アイテムをスキップ（見つからない/在庫切れ）",
        "繰り返し": "最後の指示を繰り返し",
        "ヘルプ": "サポートを受ける",
    },
}


class CommandLexicon:
    """Registry of language → ordered action/phrase table."""

    def __init__(self, tables: Optional[dict[str, LexiconTable]] = None):
        self._tables: dict[str, LexiconTable] = {}
        for language, table in (tables if tables is not None else DEFAULT_TABLES).items():
            self.register(language, table)

    def register(self, language: str, table: LexiconTable):
        seen = [action for action, _ in table]
        if len(seen) != len(set(seen)):
            raise ValueError(f"Duplicate action in lexicon for '{language}'")
        if CommandAction.UNKNOWN in seen:
            raise ValueError("'unknown' is the fallback action and cannot carry phrases")
        self._tables[language] = tuple(
            (action, tuple(p.lower() for p in phrases)) for action, phrases in table
        )
        logger.debug("lexicon_registered", language=language, actions=len(table))

    def lookup(self, language: str) -> LexiconTable:
        table = self._tables.get(language)
        if table is None:
            raise UnsupportedLanguageError(language)
        return table

    def supports(self, language: str) -> bool:
        return language in self._tables

    @property
    def languages(self) -> list[str]:
        return list(self._tables)

    def command_reference(self, language: str) -> dict[str, str]:
        self.lookup(language)
        return dict(COMMAND_REFERENCE.get(language, {}))


DEFAULT_TABLES: dict[str, LexiconTable] = {
    "en": ENGLISH,
    "ja": JAPANESE,
}
