from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers import api_router
from config import settings
from database import engine, Base
from event_bus import Broadcaster
from realtime import ConnectionRegistry
import models  # ensure model registration
import os
import logging
from sqlalchemy import inspect

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One registry per process; every handler reaches it through app.state
app.state.registry = ConnectionRegistry()
app.state.broadcaster = Broadcaster(app.state.registry)

# Avoid calling create_all() unconditionally in production; rely on Alembic.
# We only auto-create in explicit test/dev scenarios (SQLite or env flag).
if os.environ.get("TESTING") or engine.url.get_backend_name() == "sqlite" or os.environ.get("DEV_AUTO_CREATE") == "1":
    Base.metadata.create_all(bind=engine)
else:
    # Lightweight runtime check: warn if the lock table is missing so an admin
    # knows to run `alembic upgrade head`.
    try:
        insp = inspect(engine)
        missing = {t for t in ("users", "user_locks", "admin_audit_logs") if t not in insp.get_table_names()}
        if missing:
            logger.warning(
                "Database schema missing tables %s. Run Alembic migrations: `alembic upgrade head`.",
                ", ".join(sorted(missing))
            )
    except Exception as e:
        logger.warning("Schema inspection failed: %s", e)

app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
async def root():
    return {"message": "Admin portal realtime service", "connected_clients": len(app.state.registry)}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
