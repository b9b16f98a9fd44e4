import asyncio
import logging

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from api.routes import router as sessions_router, initialize_routes
from collab import initialize_collab_manager
from collab import manager as collab_module  # Access collab_manager at runtime
from config import CORS_ORIGINS, HOST, LOG_LEVEL, PORT
from database.database import SessionLocal, create_tables
from snapshots.service import SnapshotService
from storage import DatabaseStorage

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Collaborative Session Backend",
    description="Real-time session synchronization with snapshot versioning",
    version="1.0.0"
)

# Add CORS middleware for frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include session/snapshot REST routes
app.include_router(sessions_router)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Create tables, start the collaboration manager and bind REST routes"""
    create_tables()
    logger.info("Database initialized")

    storage = DatabaseStorage(SessionLocal)

    collab_mgr = initialize_collab_manager()
    await collab_mgr.start()

    async def record_presence(session_id: str, user_id: str, action: str):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, storage.record_presence, session_id, user_id, action)

    collab_mgr.on_presence_change(record_presence)

    initialize_routes(storage, SnapshotService(storage, collab_mgr))


@app.on_event("shutdown")
async def shutdown_event():
    """Close all live connections"""
    if collab_module.collab_manager:
        await collab_module.collab_manager.stop()


# WebSocket endpoint for live sessions
@app.websocket("/ws")
async def collab_websocket_handler(websocket: WebSocket):
    """
    Live session endpoint.

    Clients send join-session, editor-change, cursor-move and leave-session
    frames; the server relays them to the other members of the session.
    """
    if not collab_module.collab_manager:
        await websocket.close(code=1011, reason="Collaboration manager not initialized")
        return

    await collab_module.collab_manager.connect(websocket)


@app.get("/api/collab/sessions")
async def get_active_sessions():
    """Sessions with live connections and their member counts"""
    if not collab_module.collab_manager:
        return {"sessions": {}}
    return {"sessions": await collab_module.collab_manager.get_active_sessions()}


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    connections = collab_module.collab_manager.connection_count if collab_module.collab_manager else 0
    return {"status": "healthy", "service": "collab-session-backend", "connections": connections}


# Root endpoint with API info
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Collaborative Session Backend API",
        "version": "1.0.0",
        "websocket_endpoint": "/ws",
        "api_endpoints": {
            "sessions": "/api/sessions",
            "single_session": "/api/sessions/{id}",
            "session_files": "/api/sessions/{id}/files",
            "session_snapshots": "/api/sessions/{id}/snapshots",
            "snapshot": "/api/snapshots/{id}",
            "snapshot_files": "/api/snapshots/{id}/files",
            "snapshot_diff_stats": "/api/snapshots/{id}/diff-stats",
            "comments": "/api/sessions/{id}/comments",
            "participants": "/api/sessions/{id}/participants",
            "active_sessions": "/api/collab/sessions"
        },
        "documentation": "/docs"
    }

if __name__ == "__main__":
    # Run the server
    uvicorn.run(
        "main:app",
        host=HOST,
        port=PORT,
        reload=True,
        log_level=LOG_LEVEL.lower()
    )
