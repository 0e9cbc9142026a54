from fastapi import FastAPI, APIRouter, HTTPException, Depends, Request, Response
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import asyncio
import logging
import uvicorn
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
import uuid
from datetime import datetime, timezone, timedelta
from passlib.context import CryptContext
from jose import JWTError, jwt

from settings import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    CORS_ORIGINS,
    DB_NAME,
    HOST,
    MONGO_URL,
    OPENAI_TTS_VOICE,
    PORT,
    SECRET_KEY,
    SPEECH_RENDER_AUDIO,
    TRANSCRIPT_MAX_AGE_SECONDS,
    TRANSCRIPT_MAX_BUFFERS,
)
from companion_ai import CompanionAI, TranscriptStore, TROUBLE_RESPONSE, estimate_sentiment
from memory_engine import MemoryEngine
from registry import MedicationRegistry, medication_sort_key
from reminder_engine import ReminderEngine, format_hhmm_for_voice, normalize_hhmm, parse_hhmm
from scheduler import CompanionSession, SessionManager
from speech import AnnouncementSpeechOutput, synthesize_speech

# Password hashing configuration
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# MongoDB connection
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MEMORY_PROMPT_TYPES = {"identity", "family", "memory", "routine"}
MEMORY_PROMPT_FREQUENCIES = {"daily", "weekly", "occasional"}
IMPORTANT_DATE_TYPES = {"birthday", "anniversary", "other"}
CONVERSATION_CONTEXTS = {"general", "medication", "memory"}

companion = CompanionAI()


def build_companion_session(user_id: str) -> CompanionSession:
    return CompanionSession(
        user_id=user_id,
        registry=MedicationRegistry(db, user_id),
        speech=AnnouncementSpeechOutput(render_audio=SPEECH_RENDER_AUDIO)
    )

# Voice transcripts in progress, keyed by (user_id, session_id)
transcripts = TranscriptStore(max_age=TRANSCRIPT_MAX_AGE_SECONDS, max_entries=TRANSCRIPT_MAX_BUFFERS)

session_manager = SessionManager(build_companion_session, transcripts=transcripts)

# Fire-and-forget speech tasks; kept referenced until they finish
background_speech = set()

# ==================== HELPERS ====================

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def normalize_choice(value: Optional[str], allowed: set, fallback: str) -> str:
    if not value:
        return fallback
    cleaned = value.strip().lower()
    return cleaned if cleaned in allowed else fallback

def require_valid_time(value: str) -> str:
    normalized = normalize_hhmm(value or "")
    if parse_hhmm(normalized) is None:
        raise HTTPException(status_code=400, detail="Time must be in HH:MM (24-hour) format")
    return normalized

def speak_in_background(session: Optional[CompanionSession], text: str):
    if not session or not session.running:
        return
    task = asyncio.create_task(session.speech.speak(text))
    background_speech.add(task)
    task.add_done_callback(background_speech.discard)

# ==================== MODELS ====================

class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str
    username: str
    hashed_password: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class UserCreate(BaseModel):
    username: str
    password: str

class UserLogin(BaseModel):
    username: str
    password: str

class FamilyMember(BaseModel):
    name: str
    relationship: str
    photo: Optional[str] = None

class ImportantDate(BaseModel):
    date: str
    description: str
    type: str = "other"  # birthday, anniversary, other

class Preferences(BaseModel):
    favorite_color: Optional[str] = None
    favorite_food: Optional[str] = None
    hobbies: List[str] = []

class PatientProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str
    name: str
    age: Optional[int] = None
    family_members: List[FamilyMember] = []
    personal_memories: List[str] = []
    important_dates: List[ImportantDate] = []
    preferences: Preferences = Field(default_factory=Preferences)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class PatientProfileUpdate(BaseModel):
    name: str
    age: Optional[int] = None
    family_members: List[FamilyMember] = []
    personal_memories: List[str] = []
    important_dates: List[ImportantDate] = []
    preferences: Preferences = Field(default_factory=Preferences)

class Medication(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"med_{uuid.uuid4().hex[:12]}")
    user_id: str
    name: str
    time: str  # HH:MM, 24-hour
    dosage: Optional[str] = None
    notes: Optional[str] = None
    last_reminded_at: Optional[str] = None  # HH:MM of the last spoken reminder
    last_reminded_on: Optional[str] = None  # YYYY-MM-DD of that reminder
    active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class MedicationCreate(BaseModel):
    name: str
    time: str
    dosage: Optional[str] = None
    notes: Optional[str] = None

class MedicationUpdate(BaseModel):
    name: Optional[str] = None
    time: Optional[str] = None
    dosage: Optional[str] = None
    notes: Optional[str] = None
    last_reminded_at: Optional[str] = None
    active: Optional[bool] = None

class MemoryPrompt(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"prompt_{uuid.uuid4().hex[:12]}")
    user_id: str
    type: str  # identity, family, memory, routine
    content: str
    frequency: str  # daily, weekly, occasional
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class MemoryPromptCreate(BaseModel):
    type: str
    content: str
    frequency: str = "occasional"

class ConversationLog(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:12]}")
    user_id: str
    patient_input: str
    ai_response: str
    context: str = "general"  # general, medication, memory
    sentiment: str = "neutral"  # positive, neutral, negative
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class ConversationRequest(BaseModel):
    message: str
    context: str = "general"

class TranscriptChunk(BaseModel):
    session_id: str
    text: str
    is_final: bool = False

class VoiceStopRequest(BaseModel):
    session_id: str

class TTSRequest(BaseModel):
    text: str
    voice: str = OPENAI_TTS_VOICE  # Warm, friendly voice good for elderly

# ==================== AUTHENTICATION ====================

async def get_current_user(request: Request) -> User:
    """Get current user from JWT token in cookie or Authorization header"""
    token = request.cookies.get("access_token")

    # Fallback to Authorization header
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ")[1]

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise HTTPException(status_code=401, detail="Invalid authentication token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    user_doc = await db.users.find_one({"username": username}, {"_id": 0})
    if not user_doc:
        raise HTTPException(status_code=401, detail="User not found")

    return User(**user_doc)

def issue_session(response: Response, user_doc: dict) -> dict:
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user_doc["username"], "user_id": user_doc["user_id"]},
        expires_delta=access_token_expires
    )
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=True,
        samesite="none",
        path="/",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )
    return {
        "token": access_token,
        "user": {"id": user_doc["user_id"], "username": user_doc["username"]}
    }

# ==================== AUTH ROUTES ====================

@api_router.post("/auth/register", status_code=201)
async def register(response: Response, user_data: UserCreate):
    """Register a new caregiver account"""
    username = user_data.username.strip()
    if not username or not user_data.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    existing_user = await db.users.find_one({"username": username})
    if existing_user:
        raise HTTPException(status_code=400, detail="Username already exists")

    new_user = {
        "user_id": f"user_{uuid.uuid4().hex[:12]}",
        "username": username,
        "hashed_password": get_password_hash(user_data.password),
        "created_at": datetime.now(timezone.utc).isoformat()
    }
    await db.users.insert_one(new_user)

    return {"message": "User created successfully", **issue_session(response, new_user)}

@api_router.post("/auth/login")
async def login(response: Response, form_data: UserLogin):
    """Login user and set JWT cookie"""
    user_doc = await db.users.find_one({"username": form_data.username.strip()})
    if not user_doc or not verify_password(form_data.password, user_doc["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return {"message": "Login successful", **issue_session(response, user_doc)}

@api_router.get("/auth/me")
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info"""
    return current_user.model_dump(exclude={"hashed_password"})

@api_router.post("/auth/logout")
async def logout(response: Response, current_user: User = Depends(get_current_user)):
    """Logout user and end the companion session"""
    await session_manager.stop(current_user.user_id)
    response.delete_cookie(key="access_token", path="/")
    return {"message": "Logged out"}

# ==================== PATIENT PROFILE ====================

@api_router.get("/profile")
async def get_profile(current_user: User = Depends(get_current_user)):
    """Get the patient profile, or null when none is set up yet"""
    return await db.patient_profiles.find_one({"user_id": current_user.user_id}, {"_id": 0})

@api_router.post("/profile", response_model=dict)
async def save_profile(
    profile: PatientProfileUpdate,
    current_user: User = Depends(get_current_user)
):
    """Create or replace the patient profile"""
    if not profile.name.strip():
        raise HTTPException(status_code=400, detail="Patient name is required")

    profile_obj = PatientProfile(user_id=current_user.user_id, **profile.model_dump())
    doc = profile_obj.model_dump()
    doc["updated_at"] = doc["updated_at"].isoformat()
    for item in doc["important_dates"]:
        item["type"] = normalize_choice(item.get("type"), IMPORTANT_DATE_TYPES, "other")

    await db.patient_profiles.update_one(
        {"user_id": current_user.user_id},
        {"$set": doc},
        upsert=True
    )
    await session_manager.profile_changed(current_user.user_id)
    return doc

# ==================== MEDICATIONS ====================

@api_router.get("/medications", response_model=List[dict])
async def get_medications(current_user: User = Depends(get_current_user)):
    """Active medications, earliest first"""
    meds = await db.medications.find(
        {"user_id": current_user.user_id, "active": True},
        {"_id": 0}
    ).to_list(300)
    return sorted(meds, key=medication_sort_key)

@api_router.post("/medications", response_model=dict, status_code=201)
async def create_medication(
    medication: MedicationCreate,
    current_user: User = Depends(get_current_user)
):
    if not medication.name.strip():
        raise HTTPException(status_code=400, detail="Medication name is required")
    med_obj = Medication(
        user_id=current_user.user_id,
        **{**medication.model_dump(), "name": medication.name.strip(), "time": require_valid_time(medication.time)}
    )
    doc = med_obj.model_dump()
    doc["created_at"] = doc["created_at"].isoformat()
    doc["updated_at"] = doc["updated_at"].isoformat()
    await db.medications.insert_one(doc)
    if "_id" in doc:
        del doc["_id"]

    await session_manager.medications_changed(current_user.user_id)
    return doc

@api_router.put("/medications/{medication_id}", response_model=dict)
async def update_medication(
    medication_id: str,
    medication: MedicationUpdate,
    current_user: User = Depends(get_current_user)
):
    update_data = {k: v for k, v in medication.model_dump().items() if v is not None}
    if "time" in update_data:
        update_data["time"] = require_valid_time(update_data["time"])
        # A rescheduled dose has not been announced yet.
        update_data.setdefault("last_reminded_at", None)
        update_data["last_reminded_on"] = None
    if "name" in update_data and not update_data["name"].strip():
        raise HTTPException(status_code=400, detail="Medication name is required")
    if update_data.get("last_reminded_at"):
        update_data["last_reminded_at"] = require_valid_time(update_data["last_reminded_at"])
        update_data["last_reminded_on"] = datetime.now().date().isoformat()
    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()

    result = await db.medications.update_one(
        {"id": medication_id, "user_id": current_user.user_id},
        {"$set": update_data}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Medication not found")

    await session_manager.medications_changed(current_user.user_id)
    updated = await db.medications.find_one(
        {"id": medication_id, "user_id": current_user.user_id},
        {"_id": 0}
    )
    return updated

@api_router.delete("/medications/{medication_id}")
async def delete_medication(
    medication_id: str,
    current_user: User = Depends(get_current_user)
):
    """Soft delete: the record is kept but no longer scheduled"""
    result = await db.medications.update_one(
        {"id": medication_id, "user_id": current_user.user_id},
        {"$set": {"active": False, "updated_at": datetime.now(timezone.utc).isoformat()}}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Medication not found")

    await session_manager.medications_changed(current_user.user_id)
    return {"message": "Medication deleted successfully"}

# ==================== MEMORY PROMPTS ====================

@api_router.get("/memory-prompts", response_model=List[dict])
async def get_memory_prompts(current_user: User = Depends(get_current_user)):
    prompts = await db.memory_prompts.find(
        {"user_id": current_user.user_id},
        {"_id": 0}
    ).to_list(500)
    return prompts

@api_router.post("/memory-prompts", response_model=dict, status_code=201)
async def create_memory_prompt(
    prompt: MemoryPromptCreate,
    current_user: User = Depends(get_current_user)
):
    prompt_type = (prompt.type or "").strip().lower()
    if prompt_type not in MEMORY_PROMPT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid memory prompt type")
    if not prompt.content.strip():
        raise HTTPException(status_code=400, detail="Memory prompt content is required")

    prompt_obj = MemoryPrompt(
        user_id=current_user.user_id,
        type=prompt_type,
        content=prompt.content.strip(),
        frequency=normalize_choice(prompt.frequency, MEMORY_PROMPT_FREQUENCIES, "occasional")
    )
    doc = prompt_obj.model_dump()
    doc["created_at"] = doc["created_at"].isoformat()
    await db.memory_prompts.insert_one(doc)
    if "_id" in doc:
        del doc["_id"]

    await session_manager.profile_changed(current_user.user_id)
    return doc

@api_router.delete("/memory-prompts/{prompt_id}")
async def delete_memory_prompt(
    prompt_id: str,
    current_user: User = Depends(get_current_user)
):
    result = await db.memory_prompts.delete_one({"id": prompt_id, "user_id": current_user.user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Memory prompt not found")

    await session_manager.profile_changed(current_user.user_id)
    return {"message": "Memory prompt deleted successfully"}

# ==================== SCHEDULE ====================

async def load_reminder_engine(user_id: str) -> ReminderEngine:
    registry = MedicationRegistry(db, user_id)
    engine = ReminderEngine()
    engine.set_medications(await registry.refresh())
    return engine

def with_spoken_time(medication: dict) -> dict:
    return {**medication, "spoken_time": format_hhmm_for_voice(medication.get("time", ""))}

@api_router.get("/schedule/upcoming", response_model=List[dict])
async def get_upcoming_medications(
    hours_ahead: float = 2,
    current_user: User = Depends(get_current_user)
):
    if hours_ahead < 0:
        raise HTTPException(status_code=400, detail="hours_ahead must not be negative")
    engine = await load_reminder_engine(current_user.user_id)
    return [with_spoken_time(m) for m in engine.get_upcoming(hours_ahead)]

@api_router.get("/schedule/next")
async def get_next_medication(current_user: User = Depends(get_current_user)):
    engine = await load_reminder_engine(current_user.user_id)
    next_med = engine.get_next_reminder()
    return {"medication": with_spoken_time(next_med) if next_med else None}

@api_router.get("/schedule/summary")
async def get_schedule_summary(current_user: User = Depends(get_current_user)):
    engine = await load_reminder_engine(current_user.user_id)
    return {"summary": engine.get_daily_schedule_summary()}

@api_router.get("/schedule/due", response_model=List[dict])
async def get_due_medications(current_user: User = Depends(get_current_user)):
    engine = await load_reminder_engine(current_user.user_id)
    return [
        {**m, "reminder_text": engine.generate_reminder_text(m)}
        for m in engine.check_all_due_now()
    ]

# ==================== PROMPTS ====================

@api_router.get("/prompts/memory")
async def get_memory_prompt(
    use_ai: bool = False,
    current_user: User = Depends(get_current_user)
):
    profile = await db.patient_profiles.find_one({"user_id": current_user.user_id}, {"_id": 0})
    if use_ai and profile:
        return {"prompt": await companion.generate_memory_prompt(profile)}
    prompts = await db.memory_prompts.find({"user_id": current_user.user_id}, {"_id": 0}).to_list(500)
    return {"prompt": MemoryEngine().generate_prompt(profile, prompts)}

@api_router.get("/prompts/wellness")
async def get_wellness_check(current_user: User = Depends(get_current_user)):
    return {"prompt": MemoryEngine().generate_wellness_check()}

@api_router.get("/prompts/encouragement")
async def get_encouragement(current_user: User = Depends(get_current_user)):
    return {"prompt": MemoryEngine().generate_encouragement()}

# ==================== COMPANION SESSION ====================

@api_router.post("/session/start")
async def start_session(current_user: User = Depends(get_current_user)):
    """Start reminder and memory prompt timers for this account"""
    session = await session_manager.start(current_user.user_id)
    return session.status()

@api_router.post("/session/stop")
async def stop_session(current_user: User = Depends(get_current_user)):
    stopped = await session_manager.stop(current_user.user_id)
    return {"stopped": stopped}

@api_router.get("/session/status")
async def get_session_status(current_user: User = Depends(get_current_user)):
    session = session_manager.get(current_user.user_id)
    if not session:
        return {"running": False}
    return session.status()

@api_router.get("/session/utterance")
async def get_current_utterance(current_user: User = Depends(get_current_user)):
    """What the companion is saying right now, for the patient's device to play"""
    session = session_manager.get(current_user.user_id)
    if not session:
        raise HTTPException(status_code=404, detail="No active session")
    return {
        "is_speaking": session.speech.is_speaking,
        "utterance": session.speech.current_utterance
    }

# ==================== CONVERSATION ====================

async def build_companion_context(user_id: str) -> dict:
    profile = await db.patient_profiles.find_one({"user_id": user_id}, {"_id": 0})
    medications = await db.medications.find({"user_id": user_id, "active": True}, {"_id": 0}).to_list(300)
    recent = await db.conversations.find(
        {"user_id": user_id},
        {"_id": 0}
    ).sort("timestamp", -1).to_list(5)
    history = []
    for entry in reversed(recent):
        history.append(f"Patient: {entry.get('patient_input', '')}")
        history.append(f"Companion: {entry.get('ai_response', '')}")
    return {
        "patient_profile": profile,
        "medications": sorted(medications, key=medication_sort_key),
        "conversation_history": history
    }

async def reply_and_log(user_id: str, message: str, context: str) -> str:
    try:
        companion_context = await build_companion_context(user_id)
        reply = await companion.generate_response(message, companion_context)
    except Exception as e:
        logger.error(f"Conversation error: {e}")
        reply = TROUBLE_RESPONSE

    log = ConversationLog(
        user_id=user_id,
        patient_input=message,
        ai_response=reply,
        context=normalize_choice(context, CONVERSATION_CONTEXTS, "general"),
        sentiment=estimate_sentiment(message)
    )
    try:
        await db.conversations.insert_one(log.model_dump())
    except Exception as e:
        logger.warning(f"Failed to log conversation: {e}")

    speak_in_background(session_manager.get(user_id), reply)
    return reply

@api_router.post("/conversation")
async def converse(
    request: ConversationRequest,
    current_user: User = Depends(get_current_user)
):
    """Reply to something the patient said"""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    reply = await reply_and_log(current_user.user_id, request.message.strip(), request.context)
    return {"response": reply}

@api_router.post("/voice/transcript")
async def add_transcript_chunk(
    chunk: TranscriptChunk,
    current_user: User = Depends(get_current_user)
):
    """Accumulate interim/final speech recognition results"""
    buffer = transcripts.add(current_user.user_id, chunk.session_id, chunk.text, chunk.is_final)
    return {"transcript": buffer.text}

@api_router.post("/voice/stop")
async def stop_listening(
    request: VoiceStopRequest,
    current_user: User = Depends(get_current_user)
):
    """Finalize the transcript and answer it"""
    buffer = transcripts.pop(current_user.user_id, request.session_id)
    transcript = buffer.finalize() if buffer else ""
    if not transcript:
        return {"transcript": "", "response": None}
    reply = await reply_and_log(current_user.user_id, transcript, "general")
    return {"transcript": transcript, "response": reply}

@api_router.get("/analytics")
async def get_analytics(current_user: User = Depends(get_current_user)):
    """Recent conversations and record counts for the caregiver"""
    conversations = await db.conversations.find(
        {"user_id": current_user.user_id},
        {"_id": 0}
    ).sort("timestamp", -1).to_list(50)
    medication_count = await db.medications.count_documents({"user_id": current_user.user_id, "active": True})
    memory_prompt_count = await db.memory_prompts.count_documents({"user_id": current_user.user_id})
    return {
        "recent_conversations": conversations,
        "medication_count": medication_count,
        "memory_prompt_count": memory_prompt_count,
        "total_interactions": len(conversations)
    }

# ==================== VOICE OUTPUT ====================

@api_router.post("/tts")
async def text_to_speech(
    request: TTSRequest,
    current_user: User = Depends(get_current_user)
):
    """Convert text to speech using OpenAI TTS"""
    try:
        audio_base64 = await synthesize_speech(request.text, voice=request.voice)
        return {"audio": audio_base64, "format": "mp3"}
    except Exception as e:
        logger.error(f"TTS error: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate speech")

# ==================== HEALTH ====================

@api_router.get("/health")
async def health():
    try:
        await client.admin.command("ping")
        database = "connected"
    except Exception:
        database = "disconnected"
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database
    }

@api_router.get("/")
async def root():
    return {"message": "HaloCare API"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("shutdown")
async def shutdown_db_client():
    await session_manager.stop_all()
    client.close()

def main():
    uvicorn.run("server:app", host=HOST, port=PORT)

if __name__ == "__main__":
    main()
