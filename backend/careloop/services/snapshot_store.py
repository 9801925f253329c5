from __future__ import annotations
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from careloop.db import make_engine, make_session_maker, init_db
from careloop.models import Snapshot, SNAPSHOT_USERS, SNAPSHOT_PATIENTS, SNAPSHOT_CONFIG
from careloop.schemas import CareLoopState, User, PatientRecord, AppConfig

logger = logging.getLogger(__name__)


class SnapshotStore:
    """세 개의 스토어(users / patients / config)를 각각 완전한 스냅샷으로 저장/로드"""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_maker = make_session_maker(engine)

    @classmethod
    def from_url(cls, url: str | None = None) -> "SnapshotStore":
        return cls(make_engine(url))

    async def init(self) -> None:
        await init_db(self._engine)

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def save(self, key: str, data: Any) -> None:
        async with self._session_maker() as db:
            row = await db.get(Snapshot, key)
            if row is None:
                db.add(Snapshot(key=key, data=data))
            else:
                row.data = data
            await db.commit()

    async def save_users(self, state: CareLoopState) -> None:
        await self.save(SNAPSHOT_USERS, [u.model_dump(mode="json") for u in state.users])

    async def save_patients(self, state: CareLoopState) -> None:
        await self.save(SNAPSHOT_PATIENTS, [p.model_dump(mode="json") for p in state.patients])

    async def save_config(self, state: CareLoopState) -> None:
        await self.save(SNAPSHOT_CONFIG, state.config.model_dump(mode="json"))

    async def load(self) -> CareLoopState:
        async with self._session_maker() as db:
            rows = (await db.execute(select(Snapshot))).scalars().all()
        snapshots = {row.key: row.data for row in rows}

        state = CareLoopState(
            users=[User.model_validate(u) for u in snapshots.get(SNAPSHOT_USERS) or []],
            patients=[PatientRecord.model_validate(p) for p in snapshots.get(SNAPSHOT_PATIENTS) or []],
        )
        # 설정 스냅샷이 없으면 기본 system instruction 사용
        if snapshots.get(SNAPSHOT_CONFIG):
            state.config = AppConfig.model_validate(snapshots[SNAPSHOT_CONFIG])

        logger.info(
            "[snapshot_store] loaded %d users, %d patient records",
            len(state.users), len(state.patients),
        )
        return state
