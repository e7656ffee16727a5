"""
Voice Subsystem — spoken command interpretation and voice I/O.

Modules:
- lexicon: per-language trigger phrases in fixed match order
- parser: utterance text → ParsedCommand
- messages: localized announcement templates
- adapter: Voice I/O adapters (host speech engine, scripted fake)
"""
from voice.lexicon import CommandLexicon, ACTION_ORDER, COMMAND_REFERENCE
from voice.parser import CommandParser, extract_quantity, normalize
from voice.messages import MessageCatalog, MessageKind
from voice.adapter import (
    VoiceIOAdapter, ScriptedVoiceAdapter, SpeechRecognitionAdapter,
    best_alternative, create_voice_adapter, locale_for,
)

__all__ = [
    "CommandLexicon", "ACTION_ORDER", "COMMAND_REFERENCE",
    "CommandParser", "extract_quantity", "normalize",
    "MessageCatalog", "MessageKind",
    "VoiceIOAdapter", "ScriptedVoiceAdapter", "SpeechRecognitionAdapter",
    "best_alternative", "create_voice_adapter", "locale_for",
]
