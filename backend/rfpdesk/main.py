import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
from fastapi.middleware.cors import CORSMiddleware

from rfpdesk.database import engine
from rfpdesk.models.base import Base
import rfpdesk.models  # noqa: F401 - register all tables for create_all
from rfpdesk.api.endpoints import rfps, vendors, proposals, webhooks, emails
from rfpdesk.services.ai_service import ai_provider
from rfpdesk.services.email_service import email_provider


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="RFPDesk API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rfps.router)
app.include_router(vendors.router)
app.include_router(proposals.router)
app.include_router(emails.router)
app.include_router(webhooks.router)


@app.get("/health")
def health():
    """Health check endpoint for load balancers and readiness probes."""
    return {
        "status": "ok",
        "service": "rfpdesk-backend",
        "ai_provider": ai_provider(),
        "email_provider": email_provider(),
    }
