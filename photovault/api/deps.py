"""
FastAPI dependencies: request-scoped services built from the app's ServiceContainer.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from photovault.core.container import ServiceContainer
from photovault.db.session import get_db
from photovault.services.accounts.service import AccountService
from photovault.services.credits.service import CreditService
from photovault.services.generation.orchestrator import GenerationOrchestrator
from photovault.services.payments.service import PaymentService
from photovault.services.photos.service import PhotoService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_account_service(db: Session = Depends(get_db)) -> AccountService:
    return AccountService(db)


def get_credit_service(db: Session = Depends(get_db)) -> CreditService:
    return CreditService(db)


def get_photo_service(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> PhotoService:
    return PhotoService(db, container.storage)


def get_orchestrator(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(db, container.storage, container.provider, container.breaker)


def get_payment_service(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> PaymentService:
    return PaymentService(db, container.gateway, container.redis)
