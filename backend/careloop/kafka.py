# careloop/kafka.py
import json, os, logging
from typing import Any
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

logger = logging.getLogger(__name__)

TOPIC_ESCALATIONS = os.getenv("KAFKA_TOPIC_ESCALATIONS", "careloop.escalations")

producer: AIOKafkaProducer | None = None


async def start_kafka():
    global producer
    bootstrap = os.getenv("KAFKA_BOOTSTRAP")
    if not bootstrap:
        logger.info("[kafka] KAFKA_BOOTSTRAP not set, escalation events disabled")
        return
    producer = AIOKafkaProducer(
        bootstrap_servers=bootstrap,
        value_serializer=lambda v: json.dumps(v).encode(),
        key_serializer=lambda v: str(v).encode(),
        linger_ms=5,
        acks="all",
        enable_idempotence=True,
    )
    await producer.start()


async def stop_kafka():
    global producer
    if producer:
        await producer.stop()
        producer = None


async def publish_event(event_type: str, key: str, payload: dict[str, Any]) -> None:
    """
    의료진 호출용 이벤트 발행. 브로커가 없거나 실패해도
    호출한 쪽(SOS 처리 등)은 계속 진행되어야 하므로 예외를 올리지 않는다.
    """
    if producer is None:
        logger.debug("[kafka] producer not running, dropped %s for %s", event_type, key)
        return
    try:
        await producer.send_and_wait(TOPIC_ESCALATIONS, {"type": event_type, **payload}, key=key)
    except KafkaError as e:
        logger.error("[kafka] failed to publish %s for %s: %s", event_type, key, e)
