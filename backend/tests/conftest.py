"""
Shared fixtures: a settable clock and an in-memory stand-in for the
motor collections the registry and session touch.
"""
from datetime import datetime

import pytest


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hhmm: str, day: int = None):
        hour, minute = (int(p) for p in hhmm.split(":"))
        self.now = self.now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if day is not None:
            self.now = self.now.replace(day=day)


def _matches(doc: dict, query: dict) -> bool:
    return all(doc.get(k) == v for k, v in query.items())


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction=1):
        self.docs = sorted(self.docs, key=lambda d: d.get(key), reverse=direction < 0)
        return self

    async def to_list(self, length):
        return [dict(d) for d in self.docs[:length]]


class FakeCollection:
    def __init__(self, docs=None):
        self.docs = [dict(d) for d in docs or []]
        self.fail_writes = False
        self.fail_reads = False
        self.updates = []

    def find(self, query=None, projection=None):
        if self.fail_reads:
            raise ConnectionError("storage unavailable")
        return FakeCursor([d for d in self.docs if _matches(d, query or {})])

    async def find_one(self, query=None, projection=None):
        if self.fail_reads:
            raise ConnectionError("storage unavailable")
        for doc in self.docs:
            if _matches(doc, query or {}):
                return dict(doc)
        return None

    async def update_one(self, query, update, upsert=False):
        if self.fail_writes:
            raise ConnectionError("storage unavailable")
        self.updates.append((query, update))
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                return
        if upsert:
            self.docs.append({**query, **update.get("$set", {})})

    async def update_many(self, query, update):
        if self.fail_writes:
            raise ConnectionError("storage unavailable")
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))


class FakeDB:
    def __init__(self, medications=None, patient_profiles=None, memory_prompts=None):
        self.medications = FakeCollection(medications)
        self.patient_profiles = FakeCollection(patient_profiles)
        self.memory_prompts = FakeCollection(memory_prompts)


class RecordingSpeech:
    """Speech sink that records what it was asked to say."""

    def __init__(self):
        self.spoken = []
        self.cancelled = 0
        self.is_speaking = False

    async def speak(self, text):
        self.spoken.append(text)
        return True

    def cancel(self):
        self.cancelled += 1


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 14, 8, 0, 0))


@pytest.fixture
def speech():
    return RecordingSpeech()


def med(med_id, name, time, **extra):
    return {"id": med_id, "user_id": "user_test", "name": name, "time": time, "active": True, **extra}
