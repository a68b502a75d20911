from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import settings

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Database Models
class SiteOption(Base):
    __tablename__ = "site_options"
    __table_args__ = (UniqueConstraint("site_id", "option_name", name="uq_site_option"),)

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(String(100), nullable=False, index=True)
    option_name = Column(String(191), nullable=False, index=True)
    option_value = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class OptionStore(ABC):
    """Site-scoped key-value storage used by the license client."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class InMemoryOptionStore(OptionStore):
    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self._options: Dict[str, Dict[str, Any]] = dict(initial or {})

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._options.get(key)
        return dict(value) if value is not None else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._options[key] = dict(value)

    def delete(self, key: str) -> None:
        self._options.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._options


class SqlOptionStore(OptionStore):
    def __init__(self, db: Session, site_id: str = "default"):
        self.db = db
        self.site_id = site_id

    def _row(self, key: str) -> Optional[SiteOption]:
        return self.db.query(SiteOption).filter(
            SiteOption.site_id == self.site_id,
            SiteOption.option_name == key
        ).first()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._row(key)
        if not row:
            return None
        return dict(row.option_value)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        row = self._row(key)
        if row:
            row.option_value = dict(value)
            row.updated_at = datetime.utcnow()
        else:
            self.db.add(SiteOption(site_id=self.site_id, option_name=key, option_value=dict(value)))

        self.db.commit()

    def delete(self, key: str) -> None:
        self.db.query(SiteOption).filter(
            SiteOption.site_id == self.site_id,
            SiteOption.option_name == key
        ).delete()
        self.db.commit()


def delete_option_everywhere(db: Session, key: str) -> int:
    """Remove an option for every site. Returns the number of rows deleted."""
    deleted = db.query(SiteOption).filter(SiteOption.option_name == key).delete()
    db.commit()
    return deleted


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
