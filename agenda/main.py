import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agenda.core.config import get_settings
from agenda.core.errors import AppError
from agenda.database import create_db_and_tables
from agenda.routers import appointments, attendance, auth, availability_blocks, checkout, payments, users

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.include_router(users.router)
app.include_router(auth.router)
app.include_router(appointments.router)
app.include_router(availability_blocks.router)
app.include_router(checkout.router)
app.include_router(attendance.router)
app.include_router(payments.router)


@app.exception_handler(AppError)
def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code.value, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code.value},
    )


@app.on_event("startup")
def on_startup():
    create_db_and_tables()


@app.get("/")
def root():
    return {"message": f"API {settings.app_name} funcionando"}
