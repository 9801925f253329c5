# /backend/careloop/main.py

from __future__ import annotations
import os
import logging
from dotenv import load_dotenv
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from careloop.api.routers import auth, view, patient, chat, caseload, admin
from careloop.kafka import start_kafka, stop_kafka
from careloop.services import ai_responder
from careloop.services.care_loop import CareLoopController
from careloop.services.snapshot_store import SnapshotStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 앱 시작 시: 스냅샷 로드 -> 컨트롤러 생성
    store = SnapshotStore.from_url()
    await store.init()
    app.state.controller = await CareLoopController.load(
        store, responder=ai_responder.get_ai_response
    )
    await start_kafka()
    try:
        yield
    finally:
        # 앱 종료 시: 진행 중인 AI 답변까지 반영하고 정리
        await app.state.controller.drain()
        await stop_kafka()
        await store.dispose()


app = FastAPI(
    title="CareLoop API",
    lifespan=lifespan,
)

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(view.router)
app.include_router(patient.router)
app.include_router(chat.router)
app.include_router(caseload.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    return {"ok": True}
