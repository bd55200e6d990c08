# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import logging
import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from vaultqa.database import engine, Base
from vaultqa.models import models  # noqa: F401  registers tables on Base
from vaultqa.routers import item_qa

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Sentry error monitoring, only when a DSN is configured
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        traces_sample_rate=0.1,
        environment=os.getenv("ENVIRONMENT", "development"),
    )

Base.metadata.create_all(bind=engine)

tags_metadata = [
    {
        "name": "item-qa",
        "description": "Item-bank QA scans, item reports, deterministic and deep repair, CSV export.",
    },
]

app = FastAPI(
    title="Vault QA API",
    description="""
## Vault QA - NCLEX item-bank quality assurance

Scores every exam item across twelve quality dimensions and repairs what it can.

### Features
- **Bank scans** - chunked, cancellable full-bank QA with pass/warn/fail verdicts
- **Item reports** - per-dimension scores and coded diagnostics, filterable and sortable
- **Deterministic repair** - safe schema fixes, idempotent
- **Deep repair** - generative rewrite of content defects, re-verified before it is accepted
    """,
    version="1.0.0",
    openapi_tags=tags_metadata,
)

# Admin UI origins; comma separated
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
)

app.include_router(item_qa.router)


@app.get("/")
def root():
    return {
        "message": "Vault QA API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
