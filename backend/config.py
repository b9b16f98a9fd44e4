"""
Central configuration for the collaborative session backend.

All settings loaded from .env file or environment variables.
See .env.example for available options.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from backend directory
load_dotenv(Path(__file__).parent / ".env")

# SQLAlchemy database URL for sessions, files and snapshots
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./collab_sessions.db")

# Logging level for the server and uvicorn
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Comma-separated list of allowed origins ("*" for any)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# User id assigned to connections that join without one
ANONYMOUS_USER_ID = os.getenv("ANONYMOUS_USER_ID", "anonymous")

# Real-time delivery limits
# A peer that cannot accept a frame within SEND_TIMEOUT_SECONDS, or whose
# outbound queue holds more than OUTBOUND_QUEUE_SIZE frames, is dropped.
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", "5"))
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", "256"))

# Delay between frames of a snapshot replay at 1x speed
REPLAY_INTERVAL_SECONDS = float(os.getenv("REPLAY_INTERVAL_SECONDS", "2"))
