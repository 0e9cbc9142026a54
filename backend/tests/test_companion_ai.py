"""
Companion reply tests. The OpenAI client is replaced with small fakes so
the fallback path and the error handling can be checked offline.
"""
import asyncio
import random
from datetime import datetime
from types import SimpleNamespace

import pytest

from companion_ai import (
    CompanionAI,
    TranscriptBuffer,
    TranscriptStore,
    build_system_prompt,
    classify_fallback_category,
    estimate_sentiment,
)
from conftest import FakeClock, med

PROFILE = {
    "name": "Margaret",
    "age": 82,
    "family_members": [{"name": "Susan", "relationship": "daughter"}],
    "personal_memories": ["Teaching piano"],
}


class FailingCompletions:
    async def create(self, **kwargs):
        raise RuntimeError("service unavailable")


class CannedCompletions:
    def __init__(self, text):
        self.text = text
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.text)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(completions):
    return lambda: SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.fixture
def companion():
    clock = FakeClock(datetime(2024, 5, 14, 9, 30))
    return CompanionAI(clock=clock, rng=random.Random(3))


@pytest.mark.parametrize(
    "text,category",
    [
        ("Did I take my pills?", "medication"),
        ("My knee hurts", "pain"),
        ("Where is my daughter?", "family"),
        ("I forgot where I put things", "confusion"),
        ("What is the date?", "time"),
        ("Hello there", "greeting"),
        ("How are you?", "wellbeing"),
        ("Can you help me", "help"),
        ("The birds are singing", "default"),
    ],
)
def test_classify_fallback_category(text, category):
    assert classify_fallback_category(text) == category


def test_fallback_medication_mentions_next_dose(companion):
    context = {
        "patient_profile": PROFILE,
        "medications": [med("med_a", "Aspirin", "08:00"), med("med_b", "Statin", "20:00")],
    }
    reply = companion.fallback_response("Which pill now?", context)
    assert reply.startswith("Margaret, I see you have 2 medications scheduled.")
    assert "Your next one is Statin at 20:00." in reply


def test_fallback_medication_without_schedule(companion):
    reply = companion.fallback_response("my medicine", {"patient_profile": PROFILE})
    assert "speak with your caregiver" in reply


def test_fallback_greeting_uses_time_of_day(companion):
    reply = companion.fallback_response("hello", {"patient_profile": PROFILE})
    assert reply.startswith("Good morning Margaret!")


def test_fallback_time_reports_clock(companion):
    reply = companion.fallback_response("what day is it", {"patient_profile": PROFILE})
    assert "9:30 AM" in reply
    assert "Tuesday, May 14, 2024" in reply


def test_fallback_without_profile(companion):
    reply = companion.fallback_response("The birds are singing", {})
    assert "I'm here to listen and support you." in reply


def test_generate_response_without_key_uses_fallback(companion, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    reply = asyncio.run(companion.generate_response("My back hurts", {"patient_profile": PROFILE}))
    assert reply.startswith("Margaret, I'm sorry you're not feeling well.")


def test_generate_response_error_falls_back(companion, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    companion.client_factory = fake_client(FailingCompletions())
    reply = asyncio.run(companion.generate_response("I miss my family", {"patient_profile": PROFILE}))
    assert reply.startswith("Margaret, your family loves you very much.")


def test_generate_response_uses_model_reply(companion, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    completions = CannedCompletions("  Hello Margaret, lovely to hear from you.  ")
    companion.client_factory = fake_client(completions)
    reply = asyncio.run(companion.generate_response("hi", {"patient_profile": PROFILE}))
    assert reply == "Hello Margaret, lovely to hear from you."
    system = completions.calls[0]["messages"][0]["content"]
    assert "Susan (daughter)" in system


def test_generate_memory_prompt_fallback(companion, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    companion.client_factory = fake_client(FailingCompletions())
    prompt = asyncio.run(companion.generate_memory_prompt(PROFILE))
    assert "Margaret" in prompt


def test_build_system_prompt_lists_medications():
    prompt = build_system_prompt({
        "medications": [med("med_a", "Aspirin", "08:00", dosage="1 tablet"), med("med_b", "Statin", "20:00")]
    })
    assert "- Aspirin at 08:00 (1 tablet)" in prompt
    assert "- Statin at 20:00" in prompt
    assert "Patient Information" not in prompt


def test_estimate_sentiment():
    assert estimate_sentiment("I feel happy and good today") == "positive"
    assert estimate_sentiment("I am scared and lonely") == "negative"
    assert estimate_sentiment("The bus comes at noon") == "neutral"


def test_transcript_buffer_interim_and_final():
    buffer = TranscriptBuffer()
    buffer.add("where are", is_final=False)
    assert buffer.text == "where are"
    buffer.add("where are my glasses", is_final=True)
    buffer.add("I think", is_final=False)
    assert buffer.text == "where are my glasses I think"
    assert buffer.finalize() == "where are my glasses I think"
    assert buffer.text == ""


def test_transcript_store_expires_idle_buffers():
    now = [0.0]
    store = TranscriptStore(max_age=60, clock=lambda: now[0])
    store.add("user_a", "s1", "where is", is_final=False)
    now[0] = 30
    store.add("user_a", "s2", "hello", is_final=True)
    now[0] = 70
    store.add("user_b", "s3", "good evening", is_final=True)
    assert store.pop("user_a", "s1") is None
    assert store.pop("user_a", "s2").finalize() == "hello"
    assert len(store) == 1


def test_transcript_store_caps_entries():
    now = [0.0]
    store = TranscriptStore(max_entries=2, clock=lambda: now[0])
    for idx in range(3):
        now[0] = idx
        store.add("user_a", f"s{idx}", "words", is_final=True)
    assert len(store) == 2
    assert store.pop("user_a", "s0") is None
