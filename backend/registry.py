import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from reminder_engine import parse_hhmm

logger = logging.getLogger(__name__)


def medication_sort_key(medication: dict):
    # Malformed times sort last; the engine skips them anyway.
    return parse_hhmm(medication.get("time")) or (24, 0)


class MedicationRegistry:
    """In-memory medication list for one account, backed by MongoDB.

    Refresh failures keep the previous list; persistence failures are
    raised to the caller, which keeps its local state and retries later.
    """

    def __init__(self, db, user_id: str, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.user_id = user_id
        self.clock = clock or datetime.now
        self.medications: List[dict] = []

    def _today(self) -> str:
        return self.clock().date().isoformat()

    def _drop_stale_stamp(self, medication: dict) -> dict:
        stamped_on = medication.get("last_reminded_on")
        if medication.get("last_reminded_at") and stamped_on != self._today():
            medication = {**medication, "last_reminded_at": None, "last_reminded_on": None}
        return medication

    async def refresh(self) -> List[dict]:
        try:
            docs = await self.db.medications.find(
                {"user_id": self.user_id, "active": True},
                {"_id": 0}
            ).to_list(300)
        except Exception as e:
            logger.error(f"Failed to refresh medications for {self.user_id}: {e}")
            return self.medications

        local = {m.get("id"): m for m in self.medications}
        merged = []
        for doc in docs:
            doc = self._drop_stale_stamp(doc)
            previous = local.get(doc.get("id"))
            # Keep a newer local stamp whose save has not reached storage yet.
            if (
                previous
                and previous.get("time") == doc.get("time")
                and previous.get("last_reminded_on") == self._today()
                and (previous.get("last_reminded_at") or "") > (doc.get("last_reminded_at") or "")
            ):
                doc = {
                    **doc,
                    "last_reminded_at": previous["last_reminded_at"],
                    "last_reminded_on": previous["last_reminded_on"]
                }
            merged.append(doc)
        self.medications = sorted(merged, key=medication_sort_key)
        logger.info("Loaded %d active medication(s) for %s", len(self.medications), self.user_id)
        return self.medications

    def replace(self, medications: List[dict]):
        self.medications = list(medications)

    def stamp(self, medication_id: str, hhmm: str) -> Optional[dict]:
        """Mark a medication as reminded at ``hhmm`` in the local list."""
        for idx, med in enumerate(self.medications):
            if med.get("id") == medication_id:
                updated = {**med, "last_reminded_at": hhmm, "last_reminded_on": self._today()}
                self.medications[idx] = updated
                return updated
        return None

    async def persist_reminded(self, medication: dict):
        await self.db.medications.update_one(
            {"id": medication["id"], "user_id": self.user_id},
            {"$set": {
                "last_reminded_at": medication.get("last_reminded_at"),
                "last_reminded_on": medication.get("last_reminded_on"),
                "updated_at": datetime.now(timezone.utc).isoformat()
            }}
        )

    async def clear_stamps(self):
        self.medications = [
            {**med, "last_reminded_at": None, "last_reminded_on": None} for med in self.medications
        ]
        await self.db.medications.update_many(
            {"user_id": self.user_id},
            {"$set": {"last_reminded_at": None, "last_reminded_on": None}}
        )

    async def load_profile(self) -> Optional[dict]:
        try:
            return await self.db.patient_profiles.find_one({"user_id": self.user_id}, {"_id": 0})
        except Exception as e:
            logger.error(f"Failed to load patient profile for {self.user_id}: {e}")
            return None

    async def load_memory_prompts(self) -> List[dict]:
        try:
            return await self.db.memory_prompts.find({"user_id": self.user_id}, {"_id": 0}).to_list(500)
        except Exception as e:
            logger.error(f"Failed to load memory prompts for {self.user_id}: {e}")
            return []
