# -*- coding: utf-8 -*-
"""
Key/value stores backing the conversation log
"""
from abc import ABC, abstractmethod
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict

from loguru import logger
from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from errors import PersistenceError

Base = declarative_base()


class KeyValueRecord(Base):
    __tablename__ = "kv_records"

    key = Column(String(255), primary_key=True, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    def __repr__(self):
        return f"<KeyValueRecord(key={self.key}, size={len(self.value or '')})>"


class KeyValueStore(ABC):
    """
    Minimal storage contract: string keys to string values.

    Implementations raise ``PersistenceError`` on any read/write failure.
    """

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...


class MemoryStore(KeyValueStore):
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class DatabaseStore(KeyValueStore):
    def __init__(self, database_url: str):
        if database_url.startswith("sqlite:///"):
            Path(database_url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, pool_pre_ping=True)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_database(self):
        """初始化数据库表"""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.success("会话日志数据库表初始化成功")
        except Exception as e:
            logger.error(f"会话日志数据库表初始化失败: {e}")
            raise PersistenceError(f"Failed to initialize log store: {e}") from e

    def get_db_session(self) -> Session:
        return self._session_factory()

    def get(self, key: str) -> str | None:
        session = self.get_db_session()
        try:
            record = session.query(KeyValueRecord).filter(KeyValueRecord.key == key).first()
            return record.value if record else None
        except Exception as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e
        finally:
            session.close()

    def set(self, key: str, value: str) -> None:
        session = self.get_db_session()
        try:
            record = session.query(KeyValueRecord).filter(KeyValueRecord.key == key).first()
            if record:
                record.value = value
                record.updated_at = datetime.now(UTC)
            else:
                session.add(KeyValueRecord(key=key, value=value))
            session.commit()
        except Exception as e:
            session.rollback()
            raise PersistenceError(f"Failed to write {key}: {e}") from e
        finally:
            session.close()
