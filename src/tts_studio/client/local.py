from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import pyttsx3

from tts_studio.client.errors import LocalSpeechError
from tts_studio.core.logging import get_logger

VoicesListener = Callable[[List["LocalVoice"]], None]


@dataclass(frozen=True)
class LocalVoice:
    id: str
    name: str
    languages: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        if self.languages:
            return "%s (%s)" % (self.name, ", ".join(self.languages))
        return self.name


@dataclass(frozen=True)
class UtteranceSettings:
    """
    Browser-style knobs: `rate` and `pitch` are multipliers around 1.0,
    `volume` is 0..1.
    """

    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    voice_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0.5 <= self.rate <= 2.0:
            raise ValueError("rate must be between 0.5 and 2.0")
        if not 0.0 <= self.pitch <= 2.0:
            raise ValueError("pitch must be between 0 and 2")
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError("volume must be between 0 and 1")


class VoiceCatalog:
    """
    Voices known to the local speech engine.

    The list can be empty until the first refresh and can change later;
    listeners are told whenever a refresh yields a different list.
    """

    def __init__(self, engine: Any) -> None:
        self._engine = engine
        self._voices: List[LocalVoice] = []
        self._listeners: List[VoicesListener] = []
        self._lock = threading.Lock()

    def voices(self) -> List[LocalVoice]:
        with self._lock:
            return list(self._voices)

    def subscribe(self, listener: VoicesListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def refresh(self) -> List[LocalVoice]:
        fetched = [_to_local_voice(v) for v in (self._engine.getProperty("voices") or [])]
        with self._lock:
            changed = fetched != self._voices
            if changed:
                self._voices = fetched
            listeners = list(self._listeners)
        if changed:
            for listener in listeners:
                listener(list(fetched))
        return list(fetched)


def pick_voice(voices: Sequence[LocalVoice], current: Optional[str]) -> Optional[str]:
    """Keep the current voice if it still exists, else prefer English, else the first one."""
    if not voices:
        return None
    if current and any(v.id == current for v in voices):
        return current
    for v in voices:
        if any(lang.lower().startswith("en") for lang in v.languages):
            return v.id
    return voices[0].id


class LocalSpeechBackend:
    """
    On-device synthesis through pyttsx3.

    `speak` blocks until the utterance finishes or `stop` is called from
    another thread.
    """

    def __init__(self, *, engine_factory: Callable[[], Any] = pyttsx3.init) -> None:
        self._engine_factory = engine_factory
        self._engine: Any = None
        self._catalog: Optional[VoiceCatalog] = None
        self._base_rate = 200
        self._selected_voice: Optional[str] = None
        self._speaking = False
        self._error: Optional[BaseException] = None
        self._log = get_logger(component="local_backend")

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def selected_voice(self) -> Optional[str]:
        return self._selected_voice

    @property
    def catalog(self) -> VoiceCatalog:
        self._ensure_engine()
        assert self._catalog is not None
        return self._catalog

    def voices(self) -> List[LocalVoice]:
        return self.catalog.refresh()

    def select_voice(self, voice_id: Optional[str]) -> None:
        self._selected_voice = voice_id

    def speak(self, text: str, settings: Optional[UtteranceSettings] = None) -> None:
        settings = settings or UtteranceSettings()
        engine = self._ensure_engine()

        self.stop()
        assert self._catalog is not None
        voices = self._catalog.refresh()

        # pyttsx3 queues property changes; driver errors arrive via the "error" callback during runAndWait.
        self._error = None

        voice_id = settings.voice_id or self._selected_voice
        if voice_id and any(v.id == voice_id for v in voices):
            engine.setProperty("voice", voice_id)
        elif voice_id:
            self._log.warning("voice_not_found", voice=voice_id)

        engine.setProperty("rate", int(round(self._base_rate * settings.rate)))
        engine.setProperty("volume", float(settings.volume))
        self._apply_pitch(engine, settings.pitch)

        try:
            engine.say(text)
            engine.runAndWait()
        except RuntimeError as e:
            raise LocalSpeechError("Local speech failed: %s" % e) from e
        finally:
            self._speaking = False

        if self._error is not None:
            raise LocalSpeechError("Local speech failed: %s" % self._error) from self._error

    def stop(self) -> None:
        was_speaking = self._speaking
        if self._engine is not None:
            self._engine.stop()
        self._speaking = False
        if was_speaking:
            self._log.info("speech_stopped")

    def _ensure_engine(self) -> Any:
        if self._engine is not None:
            return self._engine

        try:
            engine = self._engine_factory()
        except (ImportError, OSError, RuntimeError) as e:
            raise LocalSpeechError("No local speech engine available: %s" % e) from e

        engine.connect("started-utterance", self._on_start)
        engine.connect("finished-utterance", self._on_end)
        engine.connect("error", self._on_error)
        self._base_rate = int(engine.getProperty("rate") or 200)

        self._engine = engine
        self._catalog = VoiceCatalog(engine)
        self._catalog.subscribe(self._on_voices_changed)
        return engine

    def _apply_pitch(self, engine: Any, pitch: float) -> None:
        # espeak takes 0..99 with 50 as neutral; drivers without pitch report a KeyError via "error".
        engine.setProperty("pitch", max(0, min(99, int(round(pitch * 50)))))

    def _on_voices_changed(self, voices: List[LocalVoice]) -> None:
        selected = pick_voice(voices, self._selected_voice)
        if selected != self._selected_voice:
            self._log.info("voice_selected", voice=selected, available=len(voices))
        self._selected_voice = selected

    def _on_start(self, name: Optional[str] = None) -> None:
        self._speaking = True

    def _on_end(self, name: Optional[str] = None, completed: bool = True) -> None:
        self._speaking = False

    def _on_error(self, name: Optional[str] = None, exception: Optional[BaseException] = None) -> None:
        # Drivers reject unknown properties with KeyError; pitch is the only one not every driver has.
        if isinstance(exception, KeyError):
            self._log.debug("pitch_unsupported", details=str(exception))
            return
        self._speaking = False
        self._error = exception or RuntimeError("unknown speech engine error")


def _to_local_voice(raw: Any) -> LocalVoice:
    langs: List[str] = []
    for lang in getattr(raw, "languages", None) or []:
        if isinstance(lang, bytes):
            # espeak reports e.g. b"\x05en-gb" (priority byte + code).
            lang = lang.decode("utf-8", errors="ignore")
        s = "".join(ch for ch in str(lang) if ch.isprintable()).strip()
        if s:
            langs.append(s)
    vid = str(getattr(raw, "id", "") or "")
    name = str(getattr(raw, "name", "") or vid)
    return LocalVoice(id=vid, name=name, languages=tuple(langs))
