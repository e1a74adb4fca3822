from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from circulation.core.config import configure_logging
from circulation.core.database import Base, engine
from circulation.core.errors import CirculationError
from circulation.api import routes

logger = configure_logging()


@asynccontextmanager
async def lifespan(app):
    logger.info("Creating database tables (if not present)...")
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Asset Circulation Engine", lifespan=lifespan)
app.include_router(routes.router)


@app.exception_handler(CirculationError)
def circulation_error_handler(request: Request, exc: CirculationError):
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logging.getLogger("circulation.api").log(level, f"{request.method} {request.url.path} rejected: {exc.code} {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/health")
def health():
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}
