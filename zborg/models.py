from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupHistory(Base):
    """Per-filesystem backup execution history and logs"""
    __tablename__ = 'backup_history'

    id = Column(Integer, primary_key=True)
    filesystem = Column(String(255), nullable=False, index=True)
    tier = Column(String(10))  # month, week, day
    label = Column(String(32))
    status = Column(String(20), nullable=False)  # running, success, failed
    started_at = Column(DateTime, default=_utcnow, nullable=False)
    completed_at = Column(DateTime)
    remote = Column(Boolean, default=False, nullable=False)  # archived to the remote target too
    snapshots_pruned = Column(Integer, default=0, nullable=False)
    error_message = Column(Text)
    logs = Column(Text)  # Detailed execution logs

    def __repr__(self):
        return f'<BackupHistory {self.filesystem} label={self.label} status={self.status}>'


def init_database(database_url: str):
    """
    Create tables if needed and return a session factory.

    Args:
        database_url: SQLAlchemy URL, e.g. sqlite:////backup/zborg.db

    Returns:
        sessionmaker bound to the database
    """
    engine = create_engine(database_url)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
