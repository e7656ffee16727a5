"""
Spoken message templates per language, keyed by MessageKind.

Templates are str.format strings. Every language must define every kind;
a missing kind is a programming error and raises KeyError at registration.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from core.errors import UnsupportedLanguageError


class MessageKind(str, Enum):
    ITEM_ANNOUNCEMENT = "item_announcement"
    PICK_CONFIRMATION = "pick_confirmation"
    MOVING_NEXT = "moving_next"
    ITEM_SKIPPED = "item_skipped"
    ORDER_COMPLETED = "order_completed"
    NOT_UNDERSTOOD = "not_understood"
    QUANTITY_OVERFLOW = "quantity_overflow"
    ZERO_QUANTITY = "zero_quantity"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NOTHING_TO_CONFIRM = "nothing_to_confirm"
    UNKNOWN_COMMAND = "unknown_command"
    HELP = "help"
    GATEWAY_ERROR = "gateway_error"
    ITEM_NOT_FOUND = "item_not_found"
    BUSY = "busy"
    SESSION_COMPLETED = "session_completed"
    FIRST_ITEM = "first_item"


ENGLISH: dict[MessageKind, str] = {
    MessageKind.ITEM_ANNOUNCEMENT: "Please pick {quantity} units of {name} from location {location}",
    MessageKind.PICK_CONFIRMATION: "Picked {quantity} units. Please confirm or say next.",
    MessageKind.MOVING_NEXT: "Moving to next item.",
    MessageKind.ITEM_SKIPPED: "Item skipped. Moving to next item.",
    MessageKind.ORDER_COMPLETED: "Order picking completed!",
    MessageKind.NOT_UNDERSTOOD: "Sorry, I didn't understand. Please repeat.",
    MessageKind.QUANTITY_OVERFLOW: "Warning: You picked {quantity} but only {ordered} required",
    MessageKind.ZERO_QUANTITY: "Zero is not a valid pick. Say skip if the item is missing.",
    MessageKind.INSUFFICIENT_STOCK: "Warning: only {stock} units in stock at this location",
    MessageKind.NOTHING_TO_CONFIRM: "Nothing to confirm. Say pick followed by the quantity first.",
    MessageKind.UNKNOWN_COMMAND: 'Unknown command. Say "help" for available commands.',
    MessageKind.HELP: (
        "Available commands: Pick followed by quantity, Confirm to proceed, "
        "Skip for missing items, Repeat for instructions."
    ),
    MessageKind.GATEWAY_ERROR: "Error updating item. Please try again.",
    MessageKind.ITEM_NOT_FOUND: "This item could not be found in the system. Please skip or call a supervisor.",
    MessageKind.BUSY: "Please wait, still processing your last command.",
    MessageKind.SESSION_COMPLETED: "This order is already complete.",
    MessageKind.FIRST_ITEM: "Already at the first item.",
}

JAPANESE: dict[MessageKind, str] = {
    MessageKind.ITEM_ANNOUNCEMENT: "場所 {location} から {name} を {quantity} 個ピックしてください",
    MessageKind.PICK_CONFIRMATION: "{quantity} 個ピックしました。確認するか、次と言ってください。",
    MessageKind.MOVING_NEXT: "次のアイテムに移ります。",
    MessageKind.ITEM_SKIPPED: "アイテムをスキップしました。次のアイテムに移ります。",
    MessageKind.ORDER_COMPLETED: "注文のピックが完了しました！",
    MessageKind.NOT_UNDERSTOOD: "すみません、聞き取れませんでした。もう一度お願いします。",
    MessageKind.QUANTITY_OVERFLOW: "警告: {quantity} 個ピックしましたが、必要なのは {ordered} 個です",
    MessageKind.ZERO_QUANTITY: "0 個のピックは無効です。見つからない場合はスキップと言ってください。",
    MessageKind.INSUFFICIENT_STOCK: "警告: この場所の在庫は {stock} 個だけです",
    MessageKind.NOTHING_TO_CONFIRM: "確認するものがありません。先に数量とピックを言ってください。",
    MessageKind.UNKNOWN_COMMAND: "不明なコマンドです。「ヘルプ」と言って利用可能なコマンドを確認してください。",
    MessageKind.HELP: "利用可能なコマンド: 数量の後にピック、確認して進む、アイテムが見つからない場合はスキップ、指示を繰り返す。",
    MessageKind.GATEWAY_ERROR: "アイテムの更新でエラーが発生しました。もう一度お試しください。",
    MessageKind.ITEM_NOT_FOUND: "このアイテムはシステムに見つかりません。スキップするか、監督者を呼んでください。",
    MessageKind.BUSY: "前のコマンドを処理中です。お待ちください。",
    MessageKind.SESSION_COMPLETED: "この注文はすでに完了しています。",
    MessageKind.FIRST_ITEM: "すでに最初のアイテムです。",
}


class MessageCatalog:
    """Per-language message templates."""

    def __init__(self, tables: Optional[dict[str, dict[MessageKind, str]]] = None):
        self._tables: dict[str, dict[MessageKind, str]] = {}
        for language, table in (tables if tables is not None else DEFAULT_TABLES).items():
            self.register(language, table)

    def register(self, language: str, table: dict[MessageKind, str]):
        missing = [k.value for k in MessageKind if k not in table]
        if missing:
            raise KeyError(f"Messages for '{language}' missing kinds: {', '.join(missing)}")
        self._tables[language] = dict(table)

    def render(self, kind: MessageKind, language: str, **params: Any) -> str:
        table = self._tables.get(language)
        if table is None:
            raise UnsupportedLanguageError(language)
        return table[kind].format(**params)

    def supports(self, language: str) -> bool:
        return language in self._tables


DEFAULT_TABLES: dict[str, dict[MessageKind, str]] = {
    "en": ENGLISH,
    "ja": JAPANESE,
}
