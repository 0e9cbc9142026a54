import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from companion_ai import TranscriptStore
from memory_engine import MemoryEngine
from registry import MedicationRegistry
from reminder_engine import ReminderEngine, format_hhmm
from settings import (
    INITIAL_CHECK_DELAY_SECONDS,
    MEDICATION_CHANGE_DEBOUNCE_SECONDS,
    MEMORY_PROMPT_INTERVAL_SECONDS,
    REMINDER_CHECK_INTERVAL_SECONDS,
)
from speech import SpeechOutput

logger = logging.getLogger(__name__)


def seconds_until_midnight(now: datetime) -> float:
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (tomorrow - now).total_seconds()


class CompanionSession:
    """Drives reminders and memory prompts for one logged-in account.

    Created on session start and discarded on stop; the engines it owns
    live exactly as long as the session does.
    """

    def __init__(
        self,
        user_id: str,
        registry: MedicationRegistry,
        speech: SpeechOutput,
        reminder_engine: Optional[ReminderEngine] = None,
        memory_engine: Optional[MemoryEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
        reminder_interval: float = REMINDER_CHECK_INTERVAL_SECONDS,
        initial_delay: float = INITIAL_CHECK_DELAY_SECONDS,
        memory_interval: float = MEMORY_PROMPT_INTERVAL_SECONDS,
        debounce: float = MEDICATION_CHANGE_DEBOUNCE_SECONDS
    ):
        self.user_id = user_id
        self.registry = registry
        self.speech = speech
        self.clock = clock or datetime.now
        self.reminder_engine = reminder_engine or ReminderEngine(clock=self.clock)
        self.memory_engine = memory_engine or MemoryEngine(clock=self.clock)
        self.reminder_interval = reminder_interval
        self.initial_delay = initial_delay
        self.memory_interval = memory_interval
        self.debounce = debounce

        self.profile: Optional[dict] = None
        self.memory_prompts: List[dict] = []
        self.last_reminder_time = ""
        self.running = False
        self._unsaved: Dict[str, dict] = {}
        self._check_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._debounce_task: Optional[asyncio.Task] = None

    # ---------- lifecycle ----------

    async def start(self):
        if self.running:
            return
        self.running = True
        await self.registry.refresh()
        await self.reload_profile()
        self._tasks = [
            asyncio.create_task(self._every(self.reminder_interval, self.run_reminder_check, "reminder check")),
            asyncio.create_task(self._after(self.initial_delay, self.run_reminder_check, "initial reminder check")),
            asyncio.create_task(self._every(self.memory_interval, self.trigger_memory_prompt, "memory prompt")),
            asyncio.create_task(self._midnight_loop()),
        ]
        logger.info("Companion session started for %s", self.user_id)

    async def stop(self):
        self.running = False
        tasks = list(self._tasks)
        if self._debounce_task:
            tasks.append(self._debounce_task)
        for task in tasks:
            task.cancel()
        self.speech.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._debounce_task = None
        logger.info("Companion session stopped for %s", self.user_id)

    async def _run_safely(self, job: Callable[[], Awaitable], label: str):
        try:
            await job()
        except Exception as e:
            logger.error(f"Companion session {self.user_id} {label} failed: {e}")

    async def _every(self, interval: float, job: Callable[[], Awaitable], label: str):
        while True:
            await asyncio.sleep(interval)
            await self._run_safely(job, label)

    async def _after(self, delay: float, job: Callable[[], Awaitable], label: str):
        await asyncio.sleep(delay)
        await self._run_safely(job, label)

    async def _midnight_loop(self):
        while True:
            await asyncio.sleep(seconds_until_midnight(self.clock()))
            await self._run_safely(self.reset_daily_state, "daily reset")

    # ---------- change notifications ----------

    async def medications_changed(self):
        await self.registry.refresh()
        if not self.running:
            return
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(
            self._after(self.debounce, self.run_reminder_check, "medication change check")
        )

    async def reload_profile(self):
        profile = await self.registry.load_profile()
        if profile is not None:
            self.profile = profile
        self.memory_prompts = await self.registry.load_memory_prompts()

    # ---------- jobs ----------

    async def _persist(self, medication: dict):
        try:
            await self.registry.persist_reminded(medication)
            self._unsaved.pop(medication["id"], None)
        except Exception as e:
            self._unsaved[medication["id"]] = medication
            logger.warning(
                f"Failed to save reminder stamp for {medication.get('name')}: {e}. "
                "Continuing with local state"
            )

    async def _retry_unsaved(self):
        for medication in list(self._unsaved.values()):
            await self._persist(medication)

    async def run_reminder_check(self) -> List[dict]:
        async with self._check_lock:
            await self._retry_unsaved()
            current_time = format_hhmm(self.clock())
            self.reminder_engine.set_medications(self.registry.medications)
            due = self.reminder_engine.check_all_due_now()

            reminded = []
            for medication in due:
                text = self.reminder_engine.generate_reminder_text(medication)
                logger.info("Medication reminder triggered for %s at %s", medication.get("name"), current_time)
                updated = self.registry.stamp(medication.get("id"), current_time)
                if updated is None:
                    updated = {**medication, "last_reminded_at": current_time}
                self.last_reminder_time = current_time
                await self.speech.speak(text)
                if updated.get("id"):
                    await self._persist(updated)
                reminded.append(updated)
            return reminded

    async def trigger_memory_prompt(self) -> Optional[str]:
        await self.reload_profile()
        if not self.profile:
            return None
        prompt = self.memory_engine.generate_prompt(self.profile, self.memory_prompts)
        logger.info("Memory prompt triggered for %s", self.user_id)
        await self.speech.speak(prompt)
        return prompt

    async def reset_daily_state(self):
        self.last_reminder_time = ""
        self._unsaved.clear()
        logger.info("Reset daily reminders for %s", self.user_id)
        try:
            await self.registry.clear_stamps()
        except Exception as e:
            logger.warning(f"Failed to clear stored reminder stamps for {self.user_id}: {e}")

    def status(self) -> dict:
        self.reminder_engine.set_medications(self.registry.medications)
        next_med = self.reminder_engine.get_next_reminder()
        return {
            "running": self.running,
            "medication_count": len(self.registry.medications),
            "last_reminder_time": self.last_reminder_time or None,
            "next_reminder": next_med,
            "is_speaking": self.speech.is_speaking
        }


class SessionManager:
    """Active companion sessions keyed by user id."""

    def __init__(
        self,
        session_factory: Callable[[str], CompanionSession],
        transcripts: Optional[TranscriptStore] = None
    ):
        self.session_factory = session_factory
        self.transcripts = transcripts
        self.sessions: Dict[str, CompanionSession] = {}

    def get(self, user_id: str) -> Optional[CompanionSession]:
        return self.sessions.get(user_id)

    async def start(self, user_id: str) -> CompanionSession:
        session = self.sessions.get(user_id)
        if session is None:
            session = self.session_factory(user_id)
            self.sessions[user_id] = session
        await session.start()
        return session

    async def stop(self, user_id: str) -> bool:
        if self.transcripts is not None:
            self.transcripts.discard_user(user_id)
        session = self.sessions.pop(user_id, None)
        if session is None:
            return False
        await session.stop()
        return True

    async def medications_changed(self, user_id: str):
        session = self.sessions.get(user_id)
        if session:
            await session.medications_changed()

    async def profile_changed(self, user_id: str):
        session = self.sessions.get(user_id)
        if session:
            await session.reload_profile()

    async def stop_all(self):
        for user_id in list(self.sessions):
            await self.stop(user_id)
