from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.deps import build_services
from app.api.routes import chat
from app.config import settings
from app.errors import ValidationError
from app.models.schemas import HealthResponse
from app.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.services = build_services(settings)
    log_service.log_event(
        event_type="startup",
        message="Chat services ready",
        model=settings.default_model,
    )
    yield
    # Shutdown
    await app.state.services.close()


app = FastAPI(
    title="Search Chat",
    description="Chat agent with web search, streaming reasoning, tool calls and answers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Routes
app.include_router(chat.router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.message})


@app.get("/api/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", service="search-chat")


if __name__ == "__main__":
    uvicorn.run("app.main:app", host=settings.host, port=settings.port)
