from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from stockledger.db.session import SessionLocal
from stockledger.services.item_service import ItemService
from stockledger.services.ledger_service import LedgerService


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_ledger_service(session_factory: sessionmaker = Depends(get_session_factory)) -> LedgerService:
    return LedgerService(session_factory)


def get_item_service(session_factory: sessionmaker = Depends(get_session_factory)) -> ItemService:
    return ItemService(session_factory)
