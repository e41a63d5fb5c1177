from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from tts_studio.client.cloud import CloudSpeechBackend, GeneratedClip
from tts_studio.client.local import LocalSpeechBackend, UtteranceSettings
from tts_studio.config import AppSettings


class BackendMode(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"


class SynthesisClient:
    """
    One "speak" action over two interchangeable backends.

    Local speech plays straight to the device and returns nothing; cloud
    speech returns the generated clip so the caller can play or save it.
    """

    def __init__(
        self,
        *,
        local: LocalSpeechBackend,
        cloud: CloudSpeechBackend,
        mode: BackendMode = BackendMode.LOCAL,
    ) -> None:
        self._local = local
        self._cloud = cloud
        self.mode = mode

    @classmethod
    def from_settings(cls, settings: AppSettings, *, mode: BackendMode = BackendMode.LOCAL) -> "SynthesisClient":
        return cls(
            local=LocalSpeechBackend(),
            cloud=CloudSpeechBackend(
                gateway_url=settings.client.gateway_url,
                timeout_seconds=settings.client.timeout_seconds,
            ),
            mode=mode,
        )

    @property
    def local(self) -> LocalSpeechBackend:
        return self._local

    @property
    def cloud(self) -> CloudSpeechBackend:
        return self._cloud

    @property
    def busy(self) -> bool:
        if self.mode == BackendMode.LOCAL:
            return self._local.speaking
        return self._cloud.generating

    async def speak(
        self,
        text: str,
        *,
        utterance: Optional[UtteranceSettings] = None,
        cloud_voice: str = "alloy",
        audio_format: str = "mp3",
    ) -> Optional[GeneratedClip]:
        if not text.strip():
            return None

        if self.mode == BackendMode.CLOUD:
            return await self._cloud.synthesize(text=text, voice=cloud_voice, audio_format=audio_format)

        try:
            await asyncio.to_thread(self._local.speak, text, utterance)
        except asyncio.CancelledError:
            # The worker thread keeps running until the engine is told to stop.
            self._local.stop()
            raise
        return None

    def stop(self) -> None:
        self._local.stop()
