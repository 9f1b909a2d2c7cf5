import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import SessionLocal
from errors import ServiceError, ValidationFailed
from models import GoalStatus, TransactionType
from periods import Clock, SystemClock
from reports import ReportService, get_layout
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    BudgetOut,
    GoalIn,
    GoalOut,
    GoalUpdate,
    RequestLogOut,
    TransactionIn,
    TransactionOut,
    UserIn,
    UserOut,
    UserTotals,
)
from services import (
    AnalyticsService,
    BudgetService,
    GoalService,
    RequestLogService,
    TransactionService,
    UserService,
)
from tokens import issue_token, user_id_from_header

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cost Manager")
app.state.session_factory = SessionLocal
app.state.clock = SystemClock(settings.timezone)
app.state.report_layout = get_layout(settings.report_layout)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def current_user_id(request: Request) -> Optional[int]:
    return user_id_from_header(request.headers.get("authorization"))


def _resolve_userid(request: Request, userid: Optional[int]) -> int:
    if userid is None:
        userid = current_user_id(request)
    if userid is None:
        raise ValidationFailed("userid query parameter is required")
    return userid


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"id": code, "message": message})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error(400, "VALIDATION_ERROR", "; ".join(problems) or "Invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        code = "NOT_FOUND"
    elif exc.status_code < 500:
        code = "VALIDATION_ERROR"
    else:
        code = "SERVER_ERROR"
    return _error(exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"unhandled_error: path={request.url.path}", exc_info=exc)
    return _error(500, "SERVER_ERROR", "Internal server error")


def _request_userid(request: Request) -> Optional[int]:
    raw = request.query_params.get("id") or request.query_params.get("userid")
    if raw:
        try:
            return int(raw)
        except ValueError:
            return None
    return current_user_id(request)


def _persist_request_log(
    request: Request, status_code: int, duration_ms: float
) -> None:
    session = request.app.state.session_factory()
    try:
        RequestLogService(session).record(
            request.method,
            request.url.path,
            status_code,
            userid=_request_userid(request),
            duration_ms=duration_ms,
        )
    except SQLAlchemyError:
        session.rollback()
        logger.warning(
            f"request_log_failed: method={request.method} path={request.url.path}",
            exc_info=True,
        )
    finally:
        session.close()


@app.middleware("http")
async def persist_request_log(request: Request, call_next):
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        await run_in_threadpool(_persist_request_log, request, status_code, duration_ms)


@app.get("/api/report")
@app.get("/api/reports")
def api_report(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    params = request.query_params
    raw_userid: Optional[object] = params.get("id") or params.get("userid")
    if not raw_userid:
        raw_userid = current_user_id(request)
    service = ReportService(db, clock=clock, layout=request.app.state.report_layout)
    return service.get_report(raw_userid, params.get("year"), params.get("month"))


@app.post("/api/add", status_code=201)
@app.post("/api/transactions", status_code=201)
def api_add_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    txn = TransactionService(db, clock=clock).create(payload)
    return TransactionOut.model_validate(txn)


@app.post("/api/users", status_code=201)
def api_create_user(payload: UserIn, db: Session = Depends(get_db)):
    user = UserService(db).create(payload)
    return {"user": UserOut.model_validate(user), "token": issue_token(user.id)}


@app.get("/api/users")
def api_list_users(db: Session = Depends(get_db)):
    return [UserOut.model_validate(user) for user in UserService(db).list_all()]


@app.get("/api/users/{user_id}", response_model=UserTotals)
def api_user_details(user_id: int, db: Session = Depends(get_db)):
    return UserService(db).totals(user_id)


@app.get("/api/transactions", response_model=list[TransactionOut])
def api_list_transactions(
    request: Request,
    userid: Optional[int] = None,
    txn_type: Optional[TransactionType] = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
):
    user_id = _resolve_userid(request, userid)
    return TransactionService(db).list_for_user(user_id, txn_type)


@app.get("/api/analytics/summary")
def api_analytics_summary(
    request: Request,
    userid: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return AnalyticsService(db).summary(_resolve_userid(request, userid))


@app.get("/api/analytics/trends")
def api_analytics_trends(
    request: Request,
    userid: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    user_id = _resolve_userid(request, userid)
    return AnalyticsService(db, clock=clock).trends(user_id, year)


@app.get("/api/analytics/categories")
def api_analytics_categories(
    request: Request,
    userid: Optional[int] = None,
    txn_type: Optional[TransactionType] = Query(default=None, alias="type"),
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
):
    user_id = _resolve_userid(request, userid)
    return AnalyticsService(db).categories(user_id, txn_type, year, month)


@app.get("/api/analytics/comparison")
def api_analytics_comparison(
    request: Request,
    year: int,
    month: int,
    userid: Optional[int] = None,
    db: Session = Depends(get_db),
):
    user_id = _resolve_userid(request, userid)
    return AnalyticsService(db).comparison(user_id, year, month)


@app.get("/api/analytics/yearly")
def api_analytics_yearly(
    request: Request,
    year: int,
    userid: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return AnalyticsService(db).yearly(_resolve_userid(request, userid), year)


@app.post("/api/budgets", status_code=201, response_model=BudgetOut)
def api_save_budget(payload: BudgetIn, db: Session = Depends(get_db)):
    return BudgetService(db).upsert(payload)


@app.get("/api/budgets", response_model=list[BudgetOut])
def api_list_budgets(
    request: Request,
    userid: Optional[int] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
):
    user_id = _resolve_userid(request, userid)
    return BudgetService(db).list_for_user(user_id, year, month)


@app.get("/api/budgets/status")
def api_budget_status(
    request: Request,
    year: int,
    month: int,
    userid: Optional[int] = None,
    db: Session = Depends(get_db),
):
    user_id = _resolve_userid(request, userid)
    return BudgetService(db).status(user_id, year, month)


@app.delete("/api/budgets/{budget_id}", response_model=BudgetOut)
def api_delete_budget(budget_id: int, db: Session = Depends(get_db)):
    return BudgetService(db).delete(budget_id)


@app.post("/api/goals", status_code=201, response_model=GoalOut)
def api_create_goal(payload: GoalIn, db: Session = Depends(get_db)):
    return GoalService(db).create(payload)


@app.get("/api/goals", response_model=list[GoalOut])
def api_list_goals(
    request: Request,
    userid: Optional[int] = None,
    status: Optional[GoalStatus] = None,
    db: Session = Depends(get_db),
):
    user_id = _resolve_userid(request, userid)
    return GoalService(db).list_for_user(user_id, status)


@app.put("/api/goals/{goal_id}", response_model=GoalOut)
def api_update_goal(goal_id: int, payload: GoalUpdate, db: Session = Depends(get_db)):
    return GoalService(db).update(goal_id, payload)


@app.delete("/api/goals/{goal_id}", response_model=GoalOut)
def api_delete_goal(goal_id: int, db: Session = Depends(get_db)):
    return GoalService(db).delete(goal_id)


@app.get("/api/goals/{goal_id}/progress")
def api_goal_progress(goal_id: int, db: Session = Depends(get_db)):
    return GoalService(db).progress(goal_id)


@app.get("/api/logs")
def api_logs(db: Session = Depends(get_db)):
    return [RequestLogOut.model_validate(entry) for entry in RequestLogService(db).recent()]


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
