"""
Voice I/O Adapters — "listen for an utterance" and "speak a message".

The picking core never touches a recognition or synthesis engine; it sees
only VoiceIOAdapter. Two implementations:

- SpeechRecognitionAdapter: binds to the host's microphone and speakers
  (speech_recognition for listening, pyttsx3 for speaking).
- ScriptedVoiceAdapter: feeds scripted (text, confidence) utterances and
  records everything spoken. Used in tests and demos.

start_listening / stop_listening are idempotent: starting while listening
or stopping while stopped does nothing.
"""
from __future__ import annotations

import abc
import structlog
import threading
from collections import deque
from typing import Any, Callable, Iterable, Optional

from config.settings import VoiceConfig
from core.errors import VoiceUnavailableError

logger = structlog.get_logger()

ResultCallback = Callable[[str, float], None]

# BCP-47 tags handed to recognition and synthesis engines.
LOCALES: dict[str, str] = {
    "en": "en-US",
    "ja": "ja-JP",
}


def locale_for(language: str) -> str:
    return LOCALES.get(language, language)


class VoiceIOAdapter(abc.ABC):
    """Abstract base for all voice input/output backends."""

    def __init__(self):
        self._on_result: Optional[ResultCallback] = None
        self._listening = False
        self._language = "en"

    @property
    def is_listening(self) -> bool:
        return self._listening

    def set_language(self, language: str):
        """Recognition language for subsequent utterances."""
        self._language = language

    def start_listening(self, on_result: ResultCallback):
        if self._listening:
            logger.debug("voice_already_listening", adapter=type(self).__name__)
            return
        self._on_result = on_result
        self._start()
        self._listening = True
        logger.info("voice_listening_started", adapter=type(self).__name__)

    def stop_listening(self):
        if not self._listening:
            return
        self._stop()
        self._listening = False
        self._on_result = None
        logger.info("voice_listening_stopped", adapter=type(self).__name__)

    def _deliver(self, text: str, confidence: float):
        callback = self._on_result
        if callback is None or not self._listening:
            return
        callback(text.lower().strip(), confidence)

    @abc.abstractmethod
    def _start(self):
        ...

    @abc.abstractmethod
    def _stop(self):
        ...

    @abc.abstractmethod
    def speak(self, text: str, language: str = "en"):
        ...

    @abc.abstractmethod
    def is_supported(self) -> bool:
        ...


# ══════════════════════════════════════════════════════════════
#  SCRIPTED (FAKE) ADAPTER
# ══════════════════════════════════════════════════════════════

class ScriptedVoiceAdapter(VoiceIOAdapter):
    """
    Test double: utterances come from a script, speech goes to a list.

        adapter = ScriptedVoiceAdapter([("pick 5", 0.9), ("confirm", 0.9)])
        adapter.start_listening(callback)
        adapter.play()            # delivers both utterances in order
        adapter.spoken            # [("Please pick ...", "en"), ...]
    """

    def __init__(self, script: Iterable[tuple[str, float]] = (), supported: bool = True):
        super().__init__()
        self._script: deque[tuple[str, float]] = deque(script)
        self._supported = supported
        self.spoken: list[tuple[str, str]] = []

    def _start(self):
        if not self._supported:
            raise VoiceUnavailableError("Speech recognition not supported")

    def _stop(self):
        pass

    def queue(self, text: str, confidence: float = 1.0):
        self._script.append((text, confidence))

    def say(self, text: str, confidence: float = 1.0):
        """Deliver one utterance immediately, bypassing the script."""
        self._deliver(text, confidence)

    def play_next(self) -> bool:
        if not self._script or not self._listening:
            return False
        text, confidence = self._script.popleft()
        self._deliver(text, confidence)
        return True

    def play(self) -> int:
        count = 0
        while self.play_next():
            count += 1
        return count

    @property
    def remaining(self) -> int:
        return len(self._script)

    def speak(self, text: str, language: str = "en"):
        self.spoken.append((text, language))

    @property
    def last_spoken(self) -> Optional[str]:
        return self.spoken[-1][0] if self.spoken else None

    def is_supported(self) -> bool:
        return self._supported


# ══════════════════════════════════════════════════════════════
#  MICROPHONE / SPEAKER ADAPTER
# ══════════════════════════════════════════════════════════════

class SpeechRecognitionAdapter(VoiceIOAdapter):
    """
    Host speech adapter.

    Recognition runs on speech_recognition's background listener thread;
    results are handed to the callback on that thread. Consumers that live
    on an event loop must marshal them (see VoicePickingController).
    Synthesis is serialized with a lock since pyttsx3 engines are not
    re-entrant.
    """

    def __init__(self, config: Optional[VoiceConfig] = None):
        super().__init__()
        self.config = config or VoiceConfig()
        self._recognizer: Any = None
        self._microphone: Any = None
        self._stopper: Optional[Callable[..., None]] = None
        self._engine: Any = None
        self._speak_lock = threading.Lock()
        self._language = self.config.language

    # ── Capability ────────────────────────────────────────

    def is_supported(self) -> bool:
        try:
            import pyttsx3  # noqa: F401
            import speech_recognition as sr
            return bool(sr.Microphone.list_microphone_names())
        except (ImportError, OSError, AttributeError) as e:
            logger.warning("voice_not_supported", error=str(e))
            return False

    # ── Listening ─────────────────────────────────────────

    def _start(self):
        try:
            import speech_recognition as sr
        except ImportError as e:
            raise VoiceUnavailableError("Speech recognition not supported") from e

        if self._recognizer is None:
            self._recognizer = sr.Recognizer()
            self._recognizer.pause_threshold = 0.5
            self._recognizer.dynamic_energy_threshold = True
        try:
            self._microphone = sr.Microphone()
            with self._microphone as source:
                self._recognizer.adjust_for_ambient_noise(source, duration=0.5)
        except (OSError, AttributeError) as e:
            raise VoiceUnavailableError(f"No microphone available: {e}") from e

        self._stopper = self._recognizer.listen_in_background(
            self._microphone,
            self._on_audio,
            phrase_time_limit=self.config.phrase_time_limit,
        )

    def _stop(self):
        if self._stopper is not None:
            self._stopper(wait_for_stop=False)
            self._stopper = None

    def _on_audio(self, recognizer: Any, audio: Any):
        import speech_recognition as sr

        try:
            result = recognizer.recognize_google(
                audio, language=locale_for(self._language), show_all=True,
            )
        except sr.UnknownValueError:
            logger.debug("speech_not_recognized")
            return
        except sr.RequestError as e:
            logger.error("speech_service_error", error=str(e))
            return

        text, confidence = best_alternative(result)
        if text:
            logger.debug("speech_recognized", text=text, confidence=confidence)
            self._deliver(text, confidence)

    # ── Speaking ──────────────────────────────────────────

    def speak(self, text: str, language: str = "en"):
        try:
            import pyttsx3
        except ImportError:
            logger.warning("speech_synthesis_unavailable", text=text)
            return

        with self._speak_lock:
            if self._engine is None:
                self._engine = pyttsx3.init()
                base_rate = self._engine.getProperty("rate") or 200
                self._engine.setProperty("rate", int(base_rate * self.config.speech_rate))
                self._engine.setProperty("volume", self.config.volume)
            self._select_voice(language)
            self._engine.say(text)
            self._engine.runAndWait()

    def _select_voice(self, language: str):
        tag = locale_for(language).lower()
        for voice in self._engine.getProperty("voices") or []:
            langs = " ".join(str(l) for l in (getattr(voice, "languages", None) or [])).lower()
            if tag in langs or tag.replace("-", "_") in langs or language in str(voice.id).lower():
                self._engine.setProperty("voice", voice.id)
                return


def best_alternative(result: Any) -> tuple[str, float]:
    """
    Pick the top transcript out of a recognize_google(show_all=True) payload.
    Confidence is 0.0 when the service omits it.
    """
    if not isinstance(result, dict):
        return "", 0.0
    alternatives = result.get("alternative") or []
    if not alternatives:
        return "", 0.0
    best = alternatives[0]
    return str(best.get("transcript", "")), float(best.get("confidence", 0.0))


def create_voice_adapter(config: Optional[VoiceConfig] = None) -> VoiceIOAdapter:
    """Factory function to create the configured voice adapter."""
    config = config or VoiceConfig()
    if config.engine == "scripted":
        return ScriptedVoiceAdapter()
    if config.engine == "speech_recognition":
        return SpeechRecognitionAdapter(config)
    raise ValueError(f"Unknown voice engine '{config.engine}'")
