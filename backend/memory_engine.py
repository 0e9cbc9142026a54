import random
from datetime import datetime
from typing import Callable, List, Optional

DEFAULT_GREETING = "Hello! I'm here with you today. How are you feeling?"

ROUTINE_PROMPTS = {
    "morning": [
        "Good morning! It's a beautiful day to start fresh.",
        "The morning sun is shining just for you today.",
        "What a lovely morning! I hope you slept well."
    ],
    "afternoon": [
        "Good afternoon! How has your day been so far?",
        "The afternoon is perfect for reflecting on happy memories.",
        "It's a peaceful afternoon. Take a moment to relax."
    ],
    "evening": [
        "Good evening! The day is winding down nicely.",
        "What a pleasant evening. Time to take things easy.",
        "The evening is here. Perfect time for some quiet reflection."
    ],
    "night": [
        "It's getting late. Time to rest and recharge.",
        "The night is peaceful. Sweet dreams await you.",
        "Time to wind down for the evening. You've had a good day."
    ]
}

WELLNESS_CHECKS = [
    "How are you feeling right now? Remember, I'm here to help.",
    "Have you had some water recently? Staying hydrated is important.",
    "Are you comfortable? Let me know if you need anything.",
    "Take a deep breath with me. In... and out. You're doing great.",
    "Remember, you are loved and cared for. You're not alone."
]

ENCOURAGEMENTS = [
    "You are strong, capable, and loved.",
    "Every day is a gift, and you make it brighter.",
    "Your presence brings joy to those around you.",
    "You have touched so many lives in wonderful ways.",
    "You are valued, respected, and cherished."
]


def time_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


class MemoryEngine:
    """Picks a spoken prompt from the patient's identity, family and memories."""

    def __init__(self, rng: Optional[random.Random] = None, clock: Optional[Callable[[], datetime]] = None):
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now

    def identity_prompts(self, profile: Optional[dict]) -> List[str]:
        if not profile:
            return []
        prompts = []
        name = profile.get("name")
        if name:
            prompts.extend([
                f"Hello {name}! It's wonderful to see you today.",
                f"Good day, {name}. I hope you're feeling well.",
                f"Hi there, {name}. You're looking great today!"
            ])
        age = profile.get("age")
        if age:
            prompts.extend([
                f"You have so much wisdom from your {age} years of life.",
                f"At {age}, you've experienced so many wonderful things."
            ])
        return prompts

    def family_prompts(self, profile: Optional[dict]) -> List[str]:
        prompts = []
        for member in (profile or {}).get("family_members") or []:
            name = member.get("name")
            relationship = member.get("relationship")
            if not name or not relationship:
                continue
            prompts.extend([
                f"Do you remember {name}? They're your {relationship} and they love you very much.",
                f"{name}, your {relationship}, thinks about you often.",
                f"Your {relationship} {name} cares about you deeply."
            ])
        return prompts

    def personal_memory_prompts(self, memory_prompts: Optional[List[dict]]) -> List[str]:
        return [
            f"Do you remember {prompt.get('content')}? That was such a special time."
            for prompt in memory_prompts or []
            if prompt.get("type") == "memory" and prompt.get("content")
        ]

    def routine_prompts(self) -> List[str]:
        return list(ROUTINE_PROMPTS[time_of_day(self.clock().hour)])

    def candidate_prompts(self, profile: Optional[dict], memory_prompts: Optional[List[dict]]) -> List[str]:
        return (
            self.identity_prompts(profile)
            + self.family_prompts(profile)
            + self.personal_memory_prompts(memory_prompts)
            + self.routine_prompts()
        )

    def generate_prompt(self, profile: Optional[dict], memory_prompts: Optional[List[dict]] = None) -> str:
        candidates = self.candidate_prompts(profile, memory_prompts)
        if not candidates:
            return DEFAULT_GREETING
        return self.rng.choice(candidates)

    def generate_wellness_check(self) -> str:
        return self.rng.choice(WELLNESS_CHECKS)

    def generate_encouragement(self) -> str:
        return self.rng.choice(ENCOURAGEMENTS)
