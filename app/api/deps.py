from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.security import decode_token
from app.models.user import User
from app.services.approval_workflow import ApprovalWorkflow
from app.services.booking_lifecycle import BookingLifecycle
from app.services.booking_store import SqlBookingStore
from app.services.container import Services
from app.services.payment_intents import PaymentIntentOrchestrator

bearer = HTTPBearer(auto_error=False)

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard

def get_services(request: Request) -> Services:
    return request.app.state.services

def get_booking_store(db: Session = Depends(get_db)) -> SqlBookingStore:
    return SqlBookingStore(db)

def get_lifecycle(db: Session = Depends(get_db), services: Services = Depends(get_services)) -> BookingLifecycle:
    return services.lifecycle(db)

def get_orchestrator(db: Session = Depends(get_db),
                     services: Services = Depends(get_services)) -> PaymentIntentOrchestrator:
    return services.orchestrator(db)

def get_workflow(db: Session = Depends(get_db), services: Services = Depends(get_services)) -> ApprovalWorkflow:
    return services.workflow(db)
