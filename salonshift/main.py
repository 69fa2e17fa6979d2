import structlog
from fastapi import FastAPI
from sqlalchemy import text

from .api import router
from .config import settings
from .core.logging_config import setup_logging
from .core.middleware import RequestContextMiddleware
from .db import Base, SessionLocal, engine

setup_logging()
logger = structlog.get_logger("salonshift.main")

if settings.DATABASE_URL.startswith("sqlite") or bool(settings.DB_AUTO_CREATE_ALL):
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.APP_NAME,
    description="Branch staff scheduling API",
    version="0.1.0",
)
app.add_middleware(RequestContextMiddleware)
app.include_router(router)


@app.get("/health")
def health():
    db_ok = True
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        db_ok = False
        logger.error("health_db_check_failed", error=str(exc))
    return {"status": "ok" if db_ok else "degraded", "db": db_ok}
