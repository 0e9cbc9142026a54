import logging
import os
import random
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from memory_engine import time_of_day
from reminder_engine import ReminderEngine, parse_hhmm
from settings import OPENAI_CHAT_MODEL, openai_configured

logger = logging.getLogger(__name__)

TROUBLE_RESPONSE = "I'm having trouble understanding right now. Please try again later."

# Initialize OpenAI client (lazy initialization)
openai_client = None

def get_openai_client():
    global openai_client
    if openai_client is None:
        openai_client = AsyncOpenAI(api_key=os.environ.get('OPENAI_API_KEY', ''))
    return openai_client

SYSTEM_PROMPT = """You are a compassionate AI companion designed to help elderly patients with Alzheimer's disease. Your role is to:

1. Provide emotional support and companionship
2. Help with medication reminders when appropriate
3. Engage in memory exercises and conversations
4. Maintain a calm, patient, and understanding tone
5. Use simple, clear language
6. Be encouraging and positive
7. Help orient the patient to time, place, and identity when needed

Guidelines:
- Keep responses concise but warm (1-3 sentences)
- Use the patient's name when you know it
- Be patient if they repeat questions
- Redirect gently if they seem confused
- Offer comfort and reassurance
- Avoid complex medical advice
- Focus on the present moment and immediate needs"""

# Keyword groups checked in order; the first hit decides the reply category.
FALLBACK_KEYWORDS = [
    ("medication", ["medication", "medicine", "pill", "take"]),
    ("pain", ["hurt", "pain", "sick", "feel bad"]),
    ("family", ["family", "daughter", "son", "wife", "husband", "children"]),
    ("confusion", ["confused", "remember", "forgot", "lost", "where am i"]),
    ("time", ["time", "day", "date"]),
    ("greeting", ["hello", "hi", "good morning", "good afternoon", "good evening"]),
    ("wellbeing", ["how are you", "feeling", "okay", "alright"]),
    ("help", ["help", "need", "want", "can you"]),
]

POSITIVE_WORDS = {"happy", "good", "great", "wonderful", "love", "thank", "nice", "better"}
NEGATIVE_WORDS = {"sad", "hurt", "pain", "scared", "afraid", "lonely", "confused", "angry", "sick", "bad"}


def classify_fallback_category(text: str) -> str:
    lowered = (text or "").lower()
    for category, keywords in FALLBACK_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "default"

def estimate_sentiment(text: str) -> str:
    words = set((text or "").lower().replace(",", " ").replace(".", " ").split())
    positive = len(words & POSITIVE_WORDS)
    negative = len(words & NEGATIVE_WORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"

def build_system_prompt(context: dict) -> str:
    prompt = SYSTEM_PROMPT
    profile = context.get("patient_profile")
    if profile:
        family = ", ".join(
            f"{m.get('name')} ({m.get('relationship')})" for m in profile.get("family_members") or []
        )
        memories = ", ".join(profile.get("personal_memories") or [])
        prompt += (
            "\n\nPatient Information:"
            f"\n- Name: {profile.get('name')}"
            f"\n- Age: {profile.get('age') or 'Not specified'}"
            f"\n- Family: {family}"
            f"\n- Personal memories: {memories}"
        )

    medications = context.get("medications") or []
    if medications:
        lines = []
        for med in medications:
            line = f"- {med.get('name')} at {med.get('time')}"
            if med.get("dosage"):
                line += f" ({med['dosage']})"
            lines.append(line)
        prompt += "\n\nCurrent Medications:\n" + "\n".join(lines)

    history = context.get("conversation_history") or []
    if history:
        prompt += "\n\nRecent conversation:\n" + "\n".join(history[-10:])
    return prompt


class CompanionAI:
    """Conversational replies for the patient, with a rule-based fallback."""

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client
    ):
        self.clock = clock or datetime.now
        self.rng = rng or random.Random()
        self.client_factory = client_factory

    async def generate_response(self, user_text: str, context: Optional[dict] = None) -> str:
        context = context or {}
        if not openai_configured():
            return self.fallback_response(user_text, context)

        try:
            client = self.client_factory()
            completion = await client.chat.completions.create(
                model=OPENAI_CHAT_MODEL,
                max_tokens=200,
                temperature=0.7,
                messages=[
                    {"role": "system", "content": build_system_prompt(context)},
                    {"role": "user", "content": user_text}
                ]
            )
            reply = (completion.choices[0].message.content or "").strip()
            if reply:
                return reply
            logger.warning("Empty completion from OpenAI, using fallback response")
        except Exception as e:
            logger.error(f"OpenAI companion error: {e}")
        return self.fallback_response(user_text, context)

    def _next_medication(self, medications: List[dict]) -> Optional[dict]:
        engine = ReminderEngine(clock=self.clock)
        engine.set_medications(medications)
        return engine.get_next_reminder()

    def fallback_response(self, user_text: str, context: Optional[dict] = None) -> str:
        context = context or {}
        profile = context.get("patient_profile") or {}
        name = profile.get("name") or ""
        medications = [m for m in context.get("medications") or [] if parse_hhmm(m.get("time"))]
        category = classify_fallback_category(user_text)

        if category == "medication":
            if medications:
                next_med = self._next_medication(medications) or medications[0]
                plural = "s" if len(medications) > 1 else ""
                return (
                    f"{name}, I see you have {len(medications)} medication{plural} scheduled. "
                    f"Your next one is {next_med.get('name')} at {next_med.get('time')}. "
                    "It's important to take your medicines as prescribed."
                )
            return f"{name}, I understand you're asking about medication. Please speak with your caregiver about your medication schedule."

        if category == "pain":
            return (
                f"{name}, I'm sorry you're not feeling well. Your comfort is important. "
                "Please let your caregiver know about any pain or discomfort you're experiencing so they can help you feel better."
            )

        if category == "family":
            return f"{name}, your family loves you very much. They care about you deeply and want you to be comfortable and happy. You mean the world to them."

        if category == "confusion":
            return (
                f"{name}, it's completely okay to feel confused sometimes. You're safe and cared for. "
                "I'm here with you, and you're not alone. Take a deep breath - everything is going to be alright."
            )

        if category == "time":
            now = self.clock()
            time_str = now.strftime("%I:%M %p").lstrip("0")
            date_str = now.strftime("%A, %B %d, %Y")
            return f"{name}, it's {time_str} on {date_str}. You're doing well today."

        if category == "greeting":
            bucket = time_of_day(self.clock().hour)
            greeting = {
                "morning": "Good morning",
                "afternoon": "Good afternoon",
                "evening": "Good evening"
            }.get(bucket, "Hello")
            return f"{greeting} {name}! It's wonderful to see you today. How are you feeling right now?"

        if category == "wellbeing":
            return (
                f"Thank you for asking, {name}. I'm here and ready to help you. "
                "More importantly, how are you feeling today? Is there anything I can do to make you more comfortable?"
            )

        if category == "help":
            return (
                f"{name}, I'm here to help you in any way I can. I can remind you about medications, "
                "chat with you, or help you feel more comfortable. What would you like me to help you with?"
            )

        return (
            f"I hear what you're saying, {name}. Thank you for sharing that with me. "
            "I'm here to listen and support you. Is there anything specific I can help you with right now?"
        )

    async def generate_memory_prompt(self, profile: dict) -> str:
        if not openai_configured():
            return self.fallback_memory_prompt(profile)

        family = ", ".join(
            f"{m.get('name')} ({m.get('relationship')})" for m in profile.get("family_members") or []
        )
        prompt = (
            "Generate a gentle, personalized memory prompt for an elderly patient with Alzheimer's.\n\n"
            "Patient details:\n"
            f"- Name: {profile.get('name')}\n"
            f"- Age: {profile.get('age')}\n"
            f"- Family: {family}\n"
            f"- Memories: {', '.join(profile.get('personal_memories') or [])}\n\n"
            "Create a warm, encouraging prompt that helps them remember something positive. "
            "Keep it simple and comforting."
        )
        try:
            client = self.client_factory()
            completion = await client.chat.completions.create(
                model=OPENAI_CHAT_MODEL,
                max_tokens=120,
                temperature=0.8,
                messages=[{"role": "user", "content": prompt}]
            )
            reply = (completion.choices[0].message.content or "").strip()
            if reply:
                return reply
        except Exception as e:
            logger.error(f"OpenAI memory prompt error: {e}")
        return self.fallback_memory_prompt(profile)

    def fallback_memory_prompt(self, profile: dict) -> str:
        name = profile.get("name") or ""
        prompts = [
            f"Hello {name}! Do you remember any happy times with your family? They think about you often.",
            f"{name}, you have lived such a rich life. What's one thing that always makes you smile?",
            f"Good day, {name}! Your family loves you very much. Can you tell me about a favorite memory?",
        ]
        return self.rng.choice(prompts)


class TranscriptBuffer:
    """Collects interim and final speech-recognition chunks until stop."""

    def __init__(self):
        self.final_parts: List[str] = []
        self.interim = ""

    def add(self, text: str, is_final: bool):
        text = (text or "").strip()
        if is_final:
            if text:
                self.final_parts.append(text)
            self.interim = ""
        else:
            self.interim = text

    @property
    def text(self) -> str:
        parts = list(self.final_parts)
        if self.interim:
            parts.append(self.interim)
        return " ".join(parts).strip()

    def finalize(self) -> str:
        transcript = self.text
        self.final_parts = []
        self.interim = ""
        return transcript


class TranscriptStore:
    """Transcript buffers keyed by (user_id, session_id).

    Buffers idle for longer than ``max_age`` seconds are dropped, and the
    oldest are evicted once ``max_entries`` is reached.
    """

    def __init__(self, max_age: float = 600, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_age = max_age
        self.max_entries = max_entries
        self.clock = clock
        self._buffers: Dict[Tuple[str, str], TranscriptBuffer] = {}
        self._touched: Dict[Tuple[str, str], float] = {}

    def __len__(self):
        return len(self._buffers)

    def prune(self):
        cutoff = self.clock() - self.max_age
        for key in [k for k, seen in self._touched.items() if seen < cutoff]:
            self._drop(key)
        while len(self._buffers) > self.max_entries:
            oldest = min(self._touched, key=self._touched.get)
            self._drop(oldest)

    def add(self, user_id: str, session_id: str, text: str, is_final: bool) -> TranscriptBuffer:
        key = (user_id, session_id)
        buffer = self._buffers.setdefault(key, TranscriptBuffer())
        buffer.add(text, is_final)
        self._touched[key] = self.clock()
        self.prune()
        return buffer

    def pop(self, user_id: str, session_id: str) -> Optional[TranscriptBuffer]:
        self._touched.pop((user_id, session_id), None)
        return self._buffers.pop((user_id, session_id), None)

    def discard_user(self, user_id: str) -> int:
        keys = [k for k in self._buffers if k[0] == user_id]
        for key in keys:
            self._drop(key)
        return len(keys)

    def _drop(self, key):
        self._buffers.pop(key, None)
        self._touched.pop(key, None)
