import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import CSVImportError, template_csv
from database import Base, engine, get_db
from models import Role, User
from scheduler import SchedulerManager
from schemas import (
    AdminStatsOut,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    CountOut,
    ImportResultOut,
    LoginIn,
    PushSubscriptionIn,
    RegisterIn,
    TokenOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    UserOut,
)
from security import TokenError, decode_access_token
from services import (
    AdminService,
    AuthenticationError,
    BudgetService,
    CSVImportService,
    ConflictError,
    NotFoundError,
    NotificationService,
    TransactionService,
    UserService,
)

logger = logging.getLogger(__name__)

CSV_CONTENT_TYPES = {"text/csv", "application/vnd.ms-excel"}

settings = get_settings()
app = FastAPI(title="Finance Tracker API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")
scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=engine)
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_scheduler() -> SchedulerManager:
    return scheduler_manager


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (AuthenticationError, TokenError)):
        return HTTPException(
            status_code=401,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return HTTPException(status_code=400, detail=str(exc))


def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> User:
    try:
        payload = decode_access_token(token)
        return UserService(db).get(payload["user_id"])
    except TokenError as exc:
        raise http_error(exc) from exc
    except NotFoundError as exc:
        raise http_error(AuthenticationError("Could not validate credentials")) from exc


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


@app.get("/health")
def health():
    return {"status": "ok"}


# --- auth ---


@app.post("/auth/register", response_model=UserOut, status_code=201)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    try:
        return UserService(db).register(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/auth/login", response_model=TokenOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    service = UserService(db)
    try:
        user = service.authenticate(data.email, data.password)
    except ValueError as exc:
        raise http_error(exc) from exc
    return TokenOut(
        access_token=service.issue_token(user), user=UserOut.model_validate(user)
    )


@app.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


# --- budgets ---


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return BudgetService(db, user.id).list_all()


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    data: BudgetIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/budgets/{budget_id}", response_model=BudgetOut)
def get_budget(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user.id).get(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/budgets/{budget_id}", response_model=BudgetOut)
@app.patch("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user.id).update(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/budgets/{budget_id}", response_model=BudgetOut)
def delete_budget(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user.id).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# --- transactions ---


@app.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return TransactionService(db, user.id).list_all()


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: SchedulerManager = Depends(get_scheduler),
):
    service = TransactionService(
        db, user.id, on_created=scheduler.enqueue_budget_check
    )
    try:
        return service.create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/transactions/all", response_model=CountOut)
def delete_all_transactions(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return CountOut(count=TransactionService(db, user.id).delete_all())


@app.post("/transactions/upload", response_model=ImportResultOut)
async def upload_transactions(
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    filename = (file.filename or "").lower()
    if file.content_type not in CSV_CONTENT_TYPES and not filename.endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are allowed")

    content = await file.read()
    try:
        return CSVImportService(db, user.id).import_csv(content)
    except CSVImportError as exc:
        raise http_error(exc) from exc


@app.get("/transactions/export.csv")
def export_transactions_endpoint(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    csv_text = TransactionService(db, user.id).export_csv()
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@app.get("/transactions/template.csv")
def transactions_template(user: User = Depends(get_current_user)):
    return StreamingResponse(
        iter([template_csv()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="transactions_template.csv"'
        },
    )


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user.id).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user.id).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/transactions/{transaction_id}", response_model=TransactionOut)
def delete_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user.id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# --- notifications ---


@app.post("/notifications/subscribe")
def subscribe(
    data: PushSubscriptionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    NotificationService(db).save_subscription(user.id, data)
    return {"message": "Subscription saved successfully."}


@app.get("/notifications/vapid-public-key")
def vapid_public_key(user: User = Depends(get_current_user)):
    return {"publicKey": get_settings().vapid_public_key}


# --- admin ---


@app.get("/admin/stats", response_model=AdminStatsOut)
def admin_stats(
    admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    stats = AdminService(db).stats()
    logger.info(f"admin_stats: user_id={admin.id}")
    return AdminStatsOut(**stats)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
