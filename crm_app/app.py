import logging

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from core.catch_error_middleware import ErrorHandlerMiddleware
from core.exception_handler import DomainErrorHandler, ValidationErrorHandler
from core.exceptions import CRMError
from core.lifespan import lifespan
from core.settings import settings
from core.throttling import rate_limiter_manager
from realtime.chat_socket import router as chat_socket_router
from routes.booking_routes import router as booking_router
from routes.chat_routes import router as chat_router

logging.basicConfig(level=logging.INFO)
app = FastAPI(
    lifespan=lifespan,
    title=settings.PROJECT_NAME,
    exception_handlers={429: rate_limiter_manager.limit_exceeded_handler},
    version="1.0.0",
)

app.include_router(booking_router, prefix="/v1")
app.include_router(chat_router, prefix="/v1")
app.include_router(chat_socket_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "ok"}


app.add_exception_handler(
    RequestValidationError,
    ValidationErrorHandler(),
)
app.add_exception_handler(
    CRMError,
    DomainErrorHandler(),
)

app.add_middleware(ErrorHandlerMiddleware)


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8001)
