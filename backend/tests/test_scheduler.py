"""
Companion session and medication registry tests. Everything runs against
in-memory collections and a recording speech sink; no timers are awaited
except in the lifecycle tests, which use tiny intervals.
"""
import asyncio
from datetime import datetime

from companion_ai import TranscriptStore
from conftest import FakeDB, RecordingSpeech, med
from registry import MedicationRegistry
from scheduler import CompanionSession, SessionManager, seconds_until_midnight
from speech import AnnouncementSpeechOutput

TODAY = "2024-05-14"


def make_session(db, clock, speech, **kwargs):
    registry = MedicationRegistry(db, "user_test", clock=clock)
    return CompanionSession("user_test", registry, speech, clock=clock, **kwargs)


def run(coro):
    return asyncio.run(coro)


# ==================== MIDNIGHT ====================

def test_seconds_until_midnight():
    assert seconds_until_midnight(datetime(2024, 5, 14, 23, 59, 30)) == 30
    assert seconds_until_midnight(datetime(2024, 5, 14, 0, 0, 0)) == 24 * 3600
    assert seconds_until_midnight(datetime(2024, 12, 31, 12, 0, 0)) == 12 * 3600


# ==================== REGISTRY ====================

def test_registry_refresh_filters_inactive_and_sorts(clock):
    db = FakeDB(medications=[
        med("med_b", "Statin", "20:00"),
        med("med_a", "Aspirin", "08:00"),
        med("med_x", "Old", "07:00", active=False),
        {**med("med_other", "Other", "06:00"), "user_id": "someone_else"},
    ])
    registry = MedicationRegistry(db, "user_test", clock=clock)
    meds = run(registry.refresh())
    assert [m["id"] for m in meds] == ["med_a", "med_b"]


def test_registry_drops_stamps_from_previous_day(clock):
    db = FakeDB(medications=[
        med("med_a", "Aspirin", "08:00", last_reminded_at="08:00", last_reminded_on="2024-05-13"),
        med("med_b", "Statin", "08:00", last_reminded_at="08:00", last_reminded_on=TODAY),
    ])
    registry = MedicationRegistry(db, "user_test", clock=clock)
    meds = {m["id"]: m for m in run(registry.refresh())}
    assert meds["med_a"]["last_reminded_at"] is None
    assert meds["med_b"]["last_reminded_at"] == "08:00"


def test_registry_refresh_failure_keeps_previous_list(clock):
    db = FakeDB(medications=[med("med_a", "Aspirin", "08:00")])
    registry = MedicationRegistry(db, "user_test", clock=clock)
    run(registry.refresh())
    db.medications.fail_reads = True
    assert [m["id"] for m in run(registry.refresh())] == ["med_a"]


# ==================== REMINDER CHECK ====================

def test_reminder_check_speaks_and_persists(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00", dosage="1 tablet")])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        return await session.run_reminder_check()

    reminded = run(scenario())
    assert [m["id"] for m in reminded] == ["med_1"]
    assert speech.spoken == [
        "It's time for your Aspirin. Please take 1 tablet. Please take your medication now."
    ]
    stored = db.medications.docs[0]
    assert stored["last_reminded_at"] == "08:00"
    assert stored["last_reminded_on"] == TODAY
    assert session.last_reminder_time == "08:00"


def test_reminder_check_does_not_repeat_within_minute(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        await session.run_reminder_check()
        await session.run_reminder_check()

    run(scenario())
    assert len(speech.spoken) == 1


def test_dose_announced_once_across_tolerance_window(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(db, clock, speech)
    ticks = [(7, 59, 30), (8, 0, 0), (8, 0, 30), (8, 1, 0)]

    async def scenario():
        await session.registry.refresh()
        for hour, minute, second in ticks:
            clock.now = datetime(2024, 5, 14, hour, minute, second)
            await session.run_reminder_check()

    run(scenario())
    assert len(speech.spoken) == 1
    assert db.medications.docs[0]["last_reminded_at"] == "07:59"


def test_dose_announced_again_next_day(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        await session.run_reminder_check()
        clock.now = datetime(2024, 5, 15, 8, 0, 0)
        await session.registry.refresh()
        await session.run_reminder_check()

    run(scenario())
    assert len(speech.spoken) == 2


def test_reminder_check_skips_stamped_medication_from_storage(clock, speech):
    db = FakeDB(medications=[
        med("med_1", "Aspirin", "08:00", last_reminded_at="08:00", last_reminded_on=TODAY)
    ])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        return await session.run_reminder_check()

    assert run(scenario()) == []
    assert speech.spoken == []


def test_persistence_failure_keeps_local_stamp_and_retries(clock, speech, caplog):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        db.medications.fail_writes = True
        await session.run_reminder_check()
        local = session.registry.medications[0]["last_reminded_at"]

        # Same minute: no second reminder even though storage never saw the stamp.
        await session.run_reminder_check()

        db.medications.fail_writes = False
        clock.set("08:10")
        await session.run_reminder_check()
        return local

    local_stamp = run(scenario())
    assert local_stamp == "08:00"
    assert len(speech.spoken) == 1
    assert "Continuing with local state" in caplog.text
    assert db.medications.docs[0]["last_reminded_at"] == "08:00"


def test_local_stamp_survives_refresh_after_failed_save(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        db.medications.fail_writes = True
        await session.run_reminder_check()
        await session.registry.refresh()
        await session.run_reminder_check()

    run(scenario())
    assert len(speech.spoken) == 1


def test_malformed_medication_does_not_stop_others(clock, speech):
    db = FakeDB(medications=[
        med("med_bad", "Broken", "morning"),
        med("med_1", "Aspirin", "08:00"),
    ])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        return await session.run_reminder_check()

    assert [m["id"] for m in run(scenario())] == ["med_1"]


# ==================== MEMORY PROMPTS ====================

def test_memory_prompt_requires_profile(clock, speech):
    session = make_session(FakeDB(), clock, speech)
    assert run(session.trigger_memory_prompt()) is None
    assert speech.spoken == []


def test_memory_prompt_spoken_from_profile(clock, speech):
    db = FakeDB(
        patient_profiles=[{"user_id": "user_test", "name": "Margaret", "family_members": []}],
        memory_prompts=[{"id": "p1", "user_id": "user_test", "type": "memory", "content": "the seaside"}],
    )
    session = make_session(db, clock, speech)
    prompt = run(session.trigger_memory_prompt())
    pool = session.memory_engine.candidate_prompts(session.profile, session.memory_prompts)
    assert prompt in pool
    assert speech.spoken == [prompt]


# ==================== DAILY RESET ====================

def test_reset_daily_state_clears_stamps(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        await session.run_reminder_check()
        await session.reset_daily_state()
        return await session.run_reminder_check()

    reminded = run(scenario())
    assert session.last_reminder_time == "08:00"
    assert len(reminded) == 1
    assert len(speech.spoken) == 2


def test_reset_daily_state_tolerates_storage_failure(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00", last_reminded_at="08:00", last_reminded_on=TODAY)])
    session = make_session(db, clock, speech)

    async def scenario():
        await session.registry.refresh()
        db.medications.fail_writes = True
        await session.reset_daily_state()

    run(scenario())
    assert session.last_reminder_time == ""
    assert session.registry.medications[0]["last_reminded_at"] is None


# ==================== LIFECYCLE ====================

def test_session_start_runs_initial_check_and_stop_cancels(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(
        db, clock, speech,
        reminder_interval=60, initial_delay=0.01, memory_interval=60, debounce=0.01
    )

    async def scenario():
        await session.start()
        await asyncio.sleep(0.05)
        tasks = list(session._tasks)
        await session.stop()
        return tasks

    tasks = run(scenario())
    assert len(speech.spoken) == 1
    assert all(t.done() for t in tasks)
    assert session.running is False
    assert speech.cancelled == 1


def test_medication_change_triggers_debounced_check(clock, speech):
    db = FakeDB()
    session = make_session(
        db, clock, speech,
        reminder_interval=60, initial_delay=60, memory_interval=60, debounce=0.01
    )

    async def scenario():
        await session.start()
        db.medications.docs.append(med("med_1", "Aspirin", "08:00"))
        await session.medications_changed()
        await session.medications_changed()
        await asyncio.sleep(0.05)
        await session.stop()

    run(scenario())
    assert len(speech.spoken) == 1


def test_medication_change_during_stop_does_not_speak(clock, speech):
    db = FakeDB(medications=[med("med_1", "Aspirin", "08:00")])
    session = make_session(
        db, clock, speech,
        reminder_interval=60, initial_delay=60, memory_interval=60, debounce=0.01
    )

    async def scenario():
        await session.start()
        stopping = asyncio.create_task(session.stop())
        await asyncio.sleep(0)
        await session.medications_changed()
        await stopping
        await asyncio.sleep(0.05)

    run(scenario())
    assert session.running is False
    assert session._debounce_task is None
    assert speech.spoken == []


def test_stopping_session_discards_transcripts(clock, speech):
    store = TranscriptStore()

    def factory(user_id):
        return make_session(FakeDB(), clock, speech, reminder_interval=60, initial_delay=60, memory_interval=60)

    manager = SessionManager(factory, transcripts=store)

    async def scenario():
        await manager.start("user_test")
        store.add("user_test", "a", "where are my", is_final=False)
        store.add("user_test", "b", "hello", is_final=True)
        store.add("user_other", "c", "good morning", is_final=True)
        await manager.stop("user_test")
        # Stopping without a running session still clears abandoned transcripts.
        store.add("user_test", "d", "still here", is_final=False)
        return await manager.stop("user_test")

    assert run(scenario()) is False
    assert store.pop("user_test", "a") is None
    assert store.pop("user_test", "d") is None
    assert len(store) == 1


def test_session_manager_start_and_stop(clock):
    db = FakeDB()
    spoken = RecordingSpeech()

    def factory(user_id):
        return CompanionSession(
            user_id, MedicationRegistry(db, user_id, clock=clock), spoken, clock=clock,
            reminder_interval=60, initial_delay=60, memory_interval=60
        )

    manager = SessionManager(factory)

    async def scenario():
        first = await manager.start("user_test")
        again = await manager.start("user_test")
        assert first is again
        assert manager.get("user_test").running
        assert await manager.stop("user_test") is True
        assert await manager.stop("user_test") is False

    run(scenario())
    assert manager.get("user_test") is None


# ==================== SPEECH OUTPUT ====================

def test_new_utterance_interrupts_previous():
    speech = AnnouncementSpeechOutput(words_per_second=10)

    async def scenario():
        long_one = asyncio.create_task(speech.speak("one two three four five six seven eight nine ten"))
        await asyncio.sleep(0.01)
        finished = await speech.speak("short")
        return await long_one, finished

    interrupted, finished = run(scenario())
    assert interrupted is False
    assert finished is True
    assert speech.current_utterance["text"] == "short"
    assert speech.is_speaking is False


def test_speech_error_counts_as_ended(monkeypatch):
    speech = AnnouncementSpeechOutput(words_per_second=None)

    async def broken(utterance):
        raise RuntimeError("audio device gone")

    monkeypatch.setattr(speech, "_deliver", broken)
    assert run(speech.speak("hello")) is False
    assert speech.is_speaking is False
