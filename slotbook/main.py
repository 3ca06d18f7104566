import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import models
from .config import LOG_LEVEL
from .database import engine
from .exceptions import BookingError
from .routers import owner, public

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Slotbook", version="1.0.0")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Domain errors -> {"detail", "code"} with the matching status"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.include_router(public.router)
app.include_router(owner.router)


@app.get("/health")
def health():
    return {"status": "ok"}
