import os
import time
from datetime import datetime
from typing import List, Optional
from fastapi import FastAPI, Request, Header, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict
from dotenv import load_dotenv

# Load environment variables before reading any configuration
load_dotenv()

from config import MatchingConfig
from matching.errors import DuplicateValidationError, WarningNotFoundError, InfrastructureError
from matching.models import CandidateInput, DuplicateAction, UserDecision
from service import DuplicateDetectionService
from tools.crm_gateway import CrmRecordGateway, InMemoryRecordGateway
from tools.warning_store import WarningStore

# Configure logging
logger.add("logs/app.log", rotation="1 day", retention="7 days", level="INFO")

# Initialize FastAPI app
app = FastAPI(
    title="CRM Duplicate Detection",
    description="Warns salespeople before they create duplicate leads or pipeline items",
    version="1.0.0"
)

# Initialize service with its collaborators; without a CRM we match against an empty local list
if os.getenv("CRM_API_URL"):
    gateway = CrmRecordGateway()
else:
    logger.warning("CRM_API_URL not set, using in-memory record gateway")
    gateway = InMemoryRecordGateway()

service = DuplicateDetectionService(
    gateway=gateway,
    store=WarningStore(),
    config=MatchingConfig.from_env(),
)


class CheckDuplicatesRequest(CandidateInput):
    model_config = ConfigDict(extra="forbid")

    action: DuplicateAction = DuplicateAction.LEAD_CREATE


class RecordDecisionRequest(BaseModel):
    warning_id: str
    decision: UserDecision
    reason: Optional[str] = None


@app.post("/duplicates/check")
def check_duplicates(body: CheckDuplicatesRequest, x_user_id: str = Header(...)):
    """
    Check a lead/contact for duplicates before it is saved.

    Expected payload:
    {
        "name": "John Smith",
        "email": "john@example.com",
        "phone": "+1 555 010 0199",
        "company": "Test Corp",
        "action": "LEAD_CREATE"
    }
    """
    start_time = time.time()
    logger.info(f"Duplicate check requested by {x_user_id}: {body.email or body.name or 'unknown'}")

    candidate = CandidateInput(**body.model_dump(exclude={"action"}))
    result = service.check_duplicates(candidate, x_user_id, body.action)

    logger.info(
        f"Duplicate check completed in {time.time() - start_time:.2f}s: "
        f"warning={result.has_warning} matches={len(result.matches)}"
    )
    return result.model_dump(mode="json")


@app.post("/duplicates/decision")
def record_decision(body: RecordDecisionRequest, x_user_id: str = Header(...)):
    """Record whether the user proceeded, cancelled or merged after a warning."""
    service.record_decision(body.warning_id, body.decision, x_user_id, body.reason)
    return {"success": True, "message": "Decision recorded successfully"}


@app.get("/duplicates/warnings/{warning_id}")
def get_warning(warning_id: str):
    """Warning details with its decision audit trail."""
    warning = service.get_warning(warning_id)
    return {
        "warning": warning.model_dump(mode="json"),
        "audit": [entry.model_dump(mode="json") for entry in service.get_audit_trail(warning_id)],
    }


@app.get("/duplicates/company-conflicts")
def company_conflicts(company: List[str] = Query(default=[]), days: int = 14):
    """Flag companies that showed up in duplicate warnings recently."""
    return {"conflicts": service.find_company_conflicts(company, days)}


@app.get("/duplicates/search")
def search(query: str, limit: int = 20):
    """Free-text search across leads and pipeline items."""
    results = service.search_records(query, limit)
    return {
        "results": [
            {"relevance": item["relevance"], **item["record"].model_dump(mode="json")}
            for item in results
        ],
        "total_found": len(results),
        "query": query,
    }


@app.get("/admin/duplicates/statistics")
def statistics(date_from: Optional[datetime] = None, date_to: Optional[datetime] = None):
    """Warning volume, decisions and severity mix for a date range."""
    return service.get_duplicate_statistics(date_from, date_to).model_dump(mode="json")


@app.get("/admin/duplicates/recent")
def recent_warnings(limit: int = 50, include_resolved: bool = False):
    """Most recent warnings, unresolved only unless asked otherwise."""
    warnings = service.get_recent_warnings(limit, include_resolved)
    return [warning.model_dump(mode="json") for warning in warnings]


@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": "1.0.0",
        "services": service.health()
    }


# Error handlers
@app.exception_handler(DuplicateValidationError)
async def validation_exception_handler(request: Request, exc: DuplicateValidationError):
    logger.warning(f"Rejected request to {request.url.path}: {exc}")
    return JSONResponse(
        status_code=400,
        content={"status": "error", "message": str(exc)}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Rejected request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"status": "error", "message": "Invalid request", "details": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(WarningNotFoundError)
async def not_found_exception_handler(request: Request, exc: WarningNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"status": "error", "message": str(exc)}
    )


@app.exception_handler(InfrastructureError)
async def infrastructure_exception_handler(request: Request, exc: InfrastructureError):
    logger.error(f"Storage failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"status": "error", "message": "Storage unavailable, please retry"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    # Create logs directory if it doesn't exist
    os.makedirs("logs", exist_ok=True)

    logger.info("Starting CRM Duplicate Detection")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
