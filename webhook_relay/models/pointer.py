"""
Pointer Records

Object-created notifications that the payload store puts on the queue in
the indirect topology, shaped like S3 event notifications so a real bucket
can feed the same worker.
"""
import json
import datetime as dt
from typing import Union
from urllib.parse import quote_plus, unquote_plus

from loguru import logger
from pydantic import BaseModel, Field

TEST_EVENT = "s3:TestEvent"
OBJECT_CREATED = "ObjectCreated:Put"
EVENT_SOURCE = "webhook-relay:store"


class PointerRecordError(ValueError):
    """Queue message body is not a recognizable store notification."""
    pass


class PointerRecord(BaseModel):
    """Reference to a stored payload."""
    bucket: str
    key: str
    size: int = 0
    event_time: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))

    def to_notification(self) -> dict:
        """Render as an S3-style ObjectCreated notification document."""
        return {
            "Records": [
                {
                    "eventVersion": "2.1",
                    "eventSource": EVENT_SOURCE,
                    "eventTime": self.event_time.isoformat(),
                    "eventName": OBJECT_CREATED,
                    "s3": {
                        "bucket": {"name": self.bucket},
                        # Notification keys are URL-encoded, as S3 does
                        "object": {"key": quote_plus(self.key), "size": self.size},
                    },
                }
            ]
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_notification()).encode("utf-8")


class StoreTestEvent(BaseModel):
    """Synthetic event a store emits when notifications are first wired up."""
    bucket: str
    event_time: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))

    def to_bytes(self) -> bytes:
        return json.dumps({
            "Service": EVENT_SOURCE,
            "Event": TEST_EVENT,
            "Time": self.event_time.isoformat(),
            "Bucket": self.bucket,
        }).encode("utf-8")


def parse_notification(body: bytes) -> Union[PointerRecord, StoreTestEvent]:
    """
    Parse a queue message body into a pointer or a test notification.

    Only the first record is used; the store emits one record per object.

    Raises:
        PointerRecordError: If the body is not JSON or lacks bucket/key
    """
    try:
        document = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PointerRecordError(f"Notification is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise PointerRecordError("Notification must be a JSON object")

    if document.get("Event") == TEST_EVENT:
        return StoreTestEvent(bucket=str(document.get("Bucket", "")))

    try:
        record = document["Records"][0]
        s3 = record["s3"]
        pointer = PointerRecord(
            bucket=s3["bucket"]["name"],
            key=unquote_plus(s3["object"]["key"]),
            size=s3["object"].get("size", 0),
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise PointerRecordError(f"Notification is missing bucket or key: {e}") from e

    if "eventTime" in record:
        try:
            pointer.event_time = dt.datetime.fromisoformat(record["eventTime"].replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            logger.debug(f"Ignoring unparseable eventTime {record['eventTime']!r}")

    return pointer
