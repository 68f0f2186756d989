"""Shared route dependencies"""
from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from vending.core.exceptions import (
    AlertNotFoundError, MachineNotFoundError, ProductNotFoundError, StockNotFoundError
)
from vending.db.session import UnitOfWork, get_db

NOT_FOUND_ERRORS = (AlertNotFoundError, MachineNotFoundError, ProductNotFoundError, StockNotFoundError)


def get_uow(db: Session = Depends(get_db)) -> UnitOfWork:
    """Dependency: unit of work over the request session"""
    return UnitOfWork(db)


def to_http_error(error: ValueError) -> HTTPException:
    """Map a domain error to 404 (unknown entity) or 400"""
    if isinstance(error, NOT_FOUND_ERRORS):
        return HTTPException(404, str(error))
    return HTTPException(400, str(error))
