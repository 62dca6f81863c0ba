import os
import sys
import logging
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware

# ========================================
# FIX: Unicode/Emoji Encoding on Windows
# ========================================
# Runner output and our log lines carry emojis (📸, 🎭, 🩹)
if sys.platform.startswith('win'):
    import io
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')
    os.environ['PYTHONIOENCODING'] = 'utf-8'

from src.healing_dashboard.api.endpoints import router as api_router
from src.healing_dashboard.api.healing_endpoints import router as healing_router
from src.healing_dashboard.core.config import settings
from src.healing_dashboard.core.logging_config import setup_tracking_logging
from src.healing_dashboard.services.tracking_service import get_tracking_service

# --- FastAPI App ---
app = FastAPI(title="Healing Dashboard - Execution Tracking")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- API Routers ---
app.include_router(api_router)
app.include_router(healing_router)

# --- Static Files ---
# Reports, screenshots and videos are written by the runner under the test classes dir
os.makedirs(settings.TEST_CLASSES_DIR, exist_ok=True)
app.mount("/test-classes", StaticFiles(directory=settings.TEST_CLASSES_DIR, check_dir=False), name="test-classes")

@app.on_event("startup")
async def startup_event():
    setup_tracking_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    service = get_tracking_service()
    logging.info(f"Application startup complete. Test classes: {service.supervisor.test_classes_dir}")

@app.on_event("shutdown")
async def shutdown_event():
    await get_tracking_service().shutdown()
    logging.info("Application shutdown complete.")
