from __future__ import annotations
from typing import Any, Optional
from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, JSON
from sqlalchemy.sql import func

from careloop.db import Base

# 스냅샷 키: 사용자 목록 / 환자 기록 목록 / 설정
SNAPSHOT_USERS = "users"
SNAPSHOT_PATIENTS = "patients"
SNAPSHOT_CONFIG = "config"


class Snapshot(Base):
    """
    스토어 하나를 통째로 저장하는 행.
    부분 갱신은 하지 않고, 변경될 때마다 data 전체를 덮어쓴다.
    """
    __tablename__ = "snapshots"

    key: Mapped[str] = mapped_column(String(32), primary_key=True)
    data: Mapped[Any] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
