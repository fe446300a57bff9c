from fastapi import Depends
from sqlalchemy.orm import Session

from tinylink import database
from tinylink.store import LinkStore, SQLLinkStore


def get_store(db: Session = Depends(database.get_db)) -> LinkStore:
    return SQLLinkStore(db)
