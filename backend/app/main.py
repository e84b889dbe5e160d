# backend/app/main.py
import logging

from fastapi import FastAPI

from backend.app.api.run import router as run_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="support-triage API")
app.include_router(run_router, prefix="/api")
