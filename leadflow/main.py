import logging

from fastapi import FastAPI
from leadflow.core.config import LOG_LEVEL
from leadflow.routers import agent, assignment, lead, pipeline

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="LeadFlow Lead Scoring & Distribution",
    version="1.0.0"
)

# --- Register Routers ---
app.include_router(lead.router)         # /api/v1/leads/*
app.include_router(assignment.router)   # /api/v1/assignments/*
app.include_router(pipeline.router)     # /api/v1/pipeline/*
app.include_router(agent.router)        # /api/v1/agents/*


# --- Root health check ---
@app.get("/")
async def root():
    return {"message": "LeadFlow API is running"}
