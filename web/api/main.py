"""FastAPI app for Sideout: sessions, registrations, waitlists and the public signup links."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sideout.models.base import init_db

from web.api.auth_routes import limiter
from web.api.auth_routes import router as auth_router
from web.api.public_routes import router as public_router
from web.api.routes import router as api_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="Sideout API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)
app.include_router(public_router)
app.include_router(auth_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
