import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI

from .db import init_db
from .settings import settings
from .routers import auth
from .routers import assessment


# --- Logging Setup ---
def setup_logging() -> None:
	logger = logging.getLogger("hermes_assessment")
	logger.setLevel(settings.log_level.upper())

	if settings.log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
		log_dir = os.path.dirname(settings.log_file)
		if log_dir:
			os.makedirs(log_dir, exist_ok=True)
		file_handler = RotatingFileHandler(settings.log_file, maxBytes=5_000_000, backupCount=3)
		file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
		logger.addHandler(file_handler)
	# Also configure root logger to see logs from other libraries
	logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
	# Initialize DB schema
	init_db()
	yield


setup_logging()
app = FastAPI(title="Hermes Placement Assessment API", lifespan=lifespan)
app.include_router(auth.router)
app.include_router(assessment.router)


@app.get("/info")
def info():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}
