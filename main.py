# main.py
"""
Application entrypoint: a seeded in-memory lineup server.

    uvicorn main:app --reload
"""
import logging

from fastapi.middleware.cors import CORSMiddleware

from lineup.config.settings import settings
from lineup.simulation.server import create_app
from lineup.simulation.simulate import build_state

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app(build_state(seed=1))

# Basic CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def index():
    """Health / basic info endpoint."""
    return {"status": "ok", "service": "lineup-server", "env": settings.ENV, "retreat": settings.RETREAT_SLUG}
