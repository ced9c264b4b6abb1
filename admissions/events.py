import json
import logging
import threading
import time

import pika
from pydantic import ValidationError
from sqlalchemy.orm import Session

from admissions import config, database, schemas
from admissions.errors import AdmissionError, DuplicateReference
from admissions.payments import PaymentIntake, Publisher

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
REJECTED = "rejected"


def publish_event(rabbitmq_url: str, routing_key: str, event: dict, exchange: str = config.EVENTS_EXCHANGE):
    params = pika.URLParameters(rabbitmq_url)
    connection = pika.BlockingConnection(params)
    try:
        channel = connection.channel()
        channel.exchange_declare(exchange=exchange, exchange_type="topic", durable=True)
        channel.basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=json.dumps(event),
            properties=pika.BasicProperties(content_type="application/json", delivery_mode=2),
        )
    finally:
        connection.close()


class RabbitPublisher:
    """Publish-only sink over a topic exchange, one connection per message."""

    def __init__(self, rabbitmq_url: str = config.RABBITMQ_URL, exchange: str = config.EVENTS_EXCHANGE):
        self.rabbitmq_url = rabbitmq_url
        self.exchange = exchange

    def publish(self, routing_key: str, payload: dict) -> None:
        publish_event(self.rabbitmq_url, routing_key, payload, exchange=self.exchange)


def handle_payment_message(body: bytes, db: Session, publisher: Publisher) -> str:
    """Process one payment notification message and return its outcome.

    A duplicate reference is a successful no-op. Any other business rejection
    is reported downstream with a TuitionPaymentFailed event. Unexpected
    errors propagate to the caller.
    """
    try:
        notification = schemas.PaymentNotification.model_validate_json(body)
    except ValidationError as exc:
        logger.error("Malformed payment notification: %s", exc)
        raw = _loose_payload(body)
        _publish_failure(
            publisher,
            schemas.TuitionPaymentFailedEvent(
                matricule=_text(raw.get("matricule")),
                enrollment_id=_text(raw.get("enrollmentId")),
                reference=_text(raw.get("reference")),
                error_code="INVALID_PAYMENT_DATA",
                reason=f"Malformed payment notification: {exc.error_count()} validation error(s)",
            ),
        )
        return REJECTED

    try:
        event = PaymentIntake(db, publisher).receive(notification)
    except DuplicateReference:
        logger.warning("Duplicate payment notification ignored: %s", notification.reference)
        return DUPLICATE
    except AdmissionError as exc:
        logger.error("Payment notification %s rejected: %s", notification.reference, exc.message)
        _publish_failure(
            publisher,
            schemas.TuitionPaymentFailedEvent(
                matricule=notification.matricule,
                enrollment_id=notification.enrollment_id,
                reference=notification.reference,
                error_code=exc.code,
                reason=exc.message,
            ),
        )
        return REJECTED

    logger.info("Notification processed: %s, new status %s", notification.reference, event.payment_status.value)
    return PROCESSED


def _loose_payload(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _text(value):
    return None if value is None else str(value)


def _publish_failure(publisher: Publisher, event: schemas.TuitionPaymentFailedEvent) -> None:
    try:
        publisher.publish(config.PAYMENT_FAILED_ROUTING_KEY, event.model_dump(mode="json", by_alias=True))
        logger.info("TuitionPaymentFailed published: %s (%s)", event.event_id, event.error_code)
    except Exception:
        logger.exception("Failed to publish TuitionPaymentFailed for reference %s", event.reference)


def _consumer_runloop(database_url: str, rabbitmq_url: str, queue_name: str):
    """
    Persistent consumer loop: connects, declares exchange & queue, binds and consumes.
    Reconnects on errors with backoff.
    """
    database.init_db(database_url)
    publisher = RabbitPublisher(rabbitmq_url)

    while True:
        conn = None
        try:
            params = pika.URLParameters(rabbitmq_url)
            conn = pika.BlockingConnection(params)
            ch = conn.channel()
            ch.exchange_declare(exchange=config.EVENTS_EXCHANGE, exchange_type="topic", durable=True)
            ch.queue_declare(queue=queue_name, durable=True)
            ch.queue_bind(exchange=config.EVENTS_EXCHANGE, queue=queue_name, routing_key=config.PAYMENT_BINDING_KEY)
            logger.info("Payment consumer bound queue=%s to %s with key=%s",
                        queue_name, config.EVENTS_EXCHANGE, config.PAYMENT_BINDING_KEY)

            def callback(ch, method, properties, body):
                db = database.SessionLocal()
                try:
                    outcome = handle_payment_message(body, db, publisher)
                    ch.basic_ack(delivery_tag=method.delivery_tag)
                    logger.debug("Message %s acked (%s)", method.delivery_tag, outcome)
                except Exception:
                    logger.exception("Error processing payment message %s", method.delivery_tag)
                    ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
                finally:
                    db.close()

            ch.basic_qos(prefetch_count=1)
            ch.basic_consume(queue=queue_name, on_message_callback=callback, auto_ack=False)
            logger.info("Payment consumer starting to consume on queue: %s", queue_name)
            ch.start_consuming()

        except pika.exceptions.AMQPConnectionError as e:
            logger.warning("AMQP connection error in consumer: %s", e)
        except Exception:
            logger.exception("Unexpected exception in consumer loop")
        finally:
            if conn is not None and conn.is_open:
                try:
                    conn.close()
                except pika.exceptions.AMQPError:
                    logger.debug("Connection already closing", exc_info=True)

        logger.info("Payment consumer will reconnect after backoff...")
        time.sleep(3)


_consumer = None


def start_consumer(database_url: str, rabbitmq_url: str, queue_name: str = config.PAYMENT_QUEUE):
    global _consumer
    if _consumer is None:
        _consumer = threading.Thread(
            target=_consumer_runloop, args=(database_url, rabbitmq_url, queue_name), daemon=True
        )
        _consumer.start()
