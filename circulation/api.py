"""HTTP API for the circulation desk.

Every route forwards to one :class:`circulation.library.Library` operation and
renders its outcome. Failed outcomes become ``{"detail": ..., "code": ...}``
JSON bodies with a status code derived from the error kind. Mutating routes
require the ``X-API-Key`` header.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from circulation.config import settings
from circulation.database import read_only
from circulation.errors import (
    INTERNAL_ERRORS,
    CirculationError,
    InvalidArgument,
    NotFound,
)
from circulation.library import Library
from circulation.models import DamageLevel, RecordStatus, RecordType
from circulation.outcome import Outcome

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)

_library: Optional[Library] = None


def get_library() -> Library:
    """Process-wide Library, created on first use."""
    global _library
    if _library is None:
        _library = Library()
    return _library


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")

def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error mapping ---
def status_for(error: CirculationError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, InvalidArgument):
        return 422
    if isinstance(error, INTERNAL_ERRORS):
        return 500
    return 409


@app.exception_handler(CirculationError)
async def circulation_error_handler(request: Request, exc: CirculationError):
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.message, "code": exc.code})


def _render(outcome: Outcome):
    """Unwrap an outcome into a JSON-ready value; failures raise into the handler above."""
    value = outcome.unwrap()
    if isinstance(value, list):
        return [v.to_dict() for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _money_dict(summary: dict) -> dict:
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in summary.items()}


# --- Request models ---
class ItemCreateModel(BaseModel):
    title: str
    total_copies: int = Field(default=1, ge=0)
    visible: bool = True

class VisibilityModel(BaseModel):
    visible: bool

class PatronCreateModel(BaseModel):
    name: str
    email: str

class LoanRequestModel(BaseModel):
    patron_id: int
    item_id: int

class ReturnRequestModel(BaseModel):
    observed_at: Optional[datetime] = Field(default=None, description="Defaults to now")

class FineCollectModel(BaseModel):
    amount: Decimal

class ReservationRequestModel(BaseModel):
    patron_id: int
    item_id: int

class LostReportModel(BaseModel):
    item_id: int
    reported_by: str
    description: str = ""
    last_seen_location: Optional[str] = None
    estimated_value: Optional[Decimal] = None

class DamageReportModel(BaseModel):
    item_id: int
    reported_by: str
    damage_level: DamageLevel
    repairable: bool = True
    description: str = ""
    repair_cost: Optional[Decimal] = None

class StatusUpdateModel(BaseModel):
    status: RecordStatus

class SettingsUpdateModel(BaseModel):
    loan_period_days: Optional[int] = None
    fine_per_day: Optional[Decimal] = None
    borrowing_limit: Optional[int] = None


# --- Health ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health endpoint with a quick database round trip."""
    db_ok = True
    try:
        with read_only(library.db_file) as conn:
            conn.execute("SELECT 1")
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


# --- Settings ---
@app.get("/settings")
def read_settings(library: Library = Depends(get_library)):
    return _render(library.get_settings())

@app.put("/settings", dependencies=[Depends(get_api_key)])
def write_settings(payload: SettingsUpdateModel, library: Library = Depends(get_library)):
    return _render(library.update_settings(**payload.model_dump()))


# --- Items and patrons ---
@app.post("/items", status_code=201, dependencies=[Depends(get_api_key)])
def create_item(payload: ItemCreateModel, library: Library = Depends(get_library)):
    return _render(library.add_item(payload.title, payload.total_copies, visible=payload.visible))

@app.get("/items/{item_id}")
def read_item(item_id: int, library: Library = Depends(get_library)):
    return _render(library.get_item(item_id))

@app.patch("/items/{item_id}/visibility", dependencies=[Depends(get_api_key)])
def update_visibility(item_id: int, payload: VisibilityModel, library: Library = Depends(get_library)):
    return _render(library.set_item_visibility(item_id, payload.visible))

@app.get("/items/{item_id}/reservations")
def item_reservations(item_id: int, library: Library = Depends(get_library)):
    return _render(library.reservations_for_item(item_id))

@app.get("/items/{item_id}/audit")
def item_audit(item_id: int, library: Library = Depends(get_library)):
    return _render(library.audit_item(item_id))

@app.post("/patrons", status_code=201, dependencies=[Depends(get_api_key)])
def create_patron(payload: PatronCreateModel, library: Library = Depends(get_library)):
    return _render(library.add_patron(payload.name, payload.email))

@app.get("/patrons/{patron_id}/loans")
def patron_loans(
    patron_id: int,
    history: bool = Query(False, description="Include returned loans"),
    library: Library = Depends(get_library),
):
    if history:
        return _render(library.loan_history_for_patron(patron_id))
    return _render(library.active_loans_for_patron(patron_id))

@app.get("/patrons/{patron_id}/fines")
def patron_fines(patron_id: int, library: Library = Depends(get_library)):
    return _money_dict(library.patron_fines(patron_id).unwrap())

@app.get("/patrons/{patron_id}/reservations")
def patron_reservations(patron_id: int, library: Library = Depends(get_library)):
    return _render(library.reservations_for_patron(patron_id))


# --- Loans ---
@app.post("/loans", status_code=201, dependencies=[Depends(get_api_key)])
def issue_loan(payload: LoanRequestModel, library: Library = Depends(get_library)):
    return _render(library.issue(payload.patron_id, payload.item_id))

@app.get("/loans")
def active_loans(
    as_of: Optional[datetime] = Query(None, description="Defaults to now"),
    library: Library = Depends(get_library),
):
    return _render(library.active_loans(as_of))

@app.get("/loans/overdue")
def overdue_loans(
    as_of: Optional[datetime] = Query(None, description="Defaults to now"),
    library: Library = Depends(get_library),
):
    return _render(library.overdue_loans(as_of))

@app.get("/loans/{loan_id}")
def read_loan(loan_id: int, library: Library = Depends(get_library)):
    return _render(library.get_loan(loan_id))

@app.get("/loans/{loan_id}/fine")
def loan_fine(
    loan_id: int,
    as_of: Optional[datetime] = Query(None, description="Defaults to now"),
    library: Library = Depends(get_library),
):
    return _render(library.current_fine_projection(loan_id, as_of))

@app.post("/loans/{loan_id}/return", dependencies=[Depends(get_api_key)])
def return_loan(
    loan_id: int,
    payload: Optional[ReturnRequestModel] = None,
    library: Library = Depends(get_library),
):
    observed_at = payload.observed_at if payload else None
    return _render(library.return_loan(loan_id, observed_at))

@app.post("/loans/{loan_id}/renew", dependencies=[Depends(get_api_key)])
def renew_loan(loan_id: int, library: Library = Depends(get_library)):
    return _render(library.renew(loan_id))

@app.post("/loans/{loan_id}/fine", dependencies=[Depends(get_api_key)])
def collect_fine(loan_id: int, payload: FineCollectModel, library: Library = Depends(get_library)):
    return _render(library.collect_fine(loan_id, payload.amount))


# --- Reservations ---
@app.post("/reservations", status_code=201, dependencies=[Depends(get_api_key)])
def create_reservation(payload: ReservationRequestModel, library: Library = Depends(get_library)):
    return _render(library.reserve(payload.patron_id, payload.item_id))

@app.delete("/reservations", dependencies=[Depends(get_api_key)])
def cancel_reservation(
    patron_id: int = Query(...),
    item_id: int = Query(...),
    library: Library = Depends(get_library),
):
    return {"removed": library.cancel_reservation(patron_id, item_id).unwrap()}


# --- Lost / damaged ---
@app.post("/lost-damaged/lost", status_code=201, dependencies=[Depends(get_api_key)])
def report_lost(payload: LostReportModel, library: Library = Depends(get_library)):
    return _render(library.report_lost(
        payload.item_id,
        payload.reported_by,
        payload.description,
        last_seen_location=payload.last_seen_location,
        estimated_value=payload.estimated_value,
    ))

@app.post("/lost-damaged/damaged", status_code=201, dependencies=[Depends(get_api_key)])
def report_damaged(payload: DamageReportModel, library: Library = Depends(get_library)):
    return _render(library.report_damaged(
        payload.item_id,
        payload.reported_by,
        payload.damage_level,
        repairable=payload.repairable,
        description=payload.description,
        repair_cost=payload.repair_cost,
    ))

@app.patch("/lost-damaged/{record_id}", dependencies=[Depends(get_api_key)])
def update_lost_damaged(record_id: int, payload: StatusUpdateModel, library: Library = Depends(get_library)):
    return _render(library.update_lost_damaged_status(record_id, payload.status))

@app.get("/lost-damaged")
def list_lost_damaged(
    type: Optional[RecordType] = Query(None, description="LOST or DAMAGED"),
    library: Library = Depends(get_library),
) -> List[dict]:
    return _render(library.lost_damaged_records(type))

@app.get("/inventory/stats")
def inventory_stats(library: Library = Depends(get_library)):
    return _render(library.inventory_stats())
