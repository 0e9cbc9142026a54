import asyncio
import base64
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from companion_ai import get_openai_client
from settings import OPENAI_TTS_MODEL, OPENAI_TTS_VOICE, openai_configured

logger = logging.getLogger(__name__)

# Roughly how fast the client reads an utterance aloud at rate 0.8.
WORDS_PER_SECOND = 2.2


async def synthesize_speech(text: str, voice: str = OPENAI_TTS_VOICE) -> str:
    """Render text to mp3 with OpenAI TTS and return it base64 encoded."""
    client = get_openai_client()
    response = await client.audio.speech.create(
        model=OPENAI_TTS_MODEL,
        voice=voice,
        input=text[:4000],  # Limit to 4000 chars
        speed=0.9  # Slightly slower for elderly users
    )
    return base64.b64encode(response.content).decode('utf-8')


class SpeechOutput:
    """Sink that turns text into something the patient hears."""

    is_speaking: bool = False

    async def speak(self, text: str) -> bool:
        raise NotImplementedError

    def cancel(self):
        raise NotImplementedError


class AnnouncementSpeechOutput(SpeechOutput):
    """Publishes the current utterance for the patient's device to play.

    Only one utterance is live at a time: a new ``speak`` call cancels the
    one in progress. Failures are logged and count as the utterance ending,
    so ``is_speaking`` never gets stuck.
    """

    def __init__(self, render_audio: bool = False, words_per_second: Optional[float] = WORDS_PER_SECOND):
        self.render_audio = render_audio
        self.words_per_second = words_per_second
        self.current_utterance: Optional[dict] = None
        self.is_speaking = False
        self._task: Optional[asyncio.Task] = None

    def estimate_duration(self, text: str) -> float:
        if not self.words_per_second:
            return 0
        return len(text.split()) / self.words_per_second

    async def _deliver(self, utterance: dict):
        self.current_utterance = utterance
        if self.render_audio and openai_configured():
            utterance["audio"] = await synthesize_speech(utterance["text"])
            utterance["format"] = "mp3"
        await asyncio.sleep(self.estimate_duration(utterance["text"]))

    async def speak(self, text: str) -> bool:
        self.cancel()
        utterance = {
            "id": f"utt_{uuid.uuid4().hex[:12]}",
            "text": text,
            "audio": None,
            "format": None,
            "created_at": datetime.now(timezone.utc).isoformat()
        }
        logger.info("Speaking: %s", text)
        self.is_speaking = True
        task = asyncio.create_task(self._deliver(utterance))
        self._task = task
        try:
            await asyncio.wait({task})
        finally:
            if not task.done():
                task.cancel()
            if self._task is task:
                self._task = None
                self.is_speaking = False

        if task.cancelled():
            logger.info("Utterance %s interrupted", utterance["id"])
            return False
        exc = task.exception()
        if exc is not None:
            logger.error(f"Speech output error: {exc}")
            return False
        return True

    def cancel(self):
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self.is_speaking = False
