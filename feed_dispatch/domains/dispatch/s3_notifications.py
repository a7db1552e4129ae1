"""
Translation of S3 bucket notifications into arrival events.
"""

import logging
from datetime import datetime
from typing import Any, List, Mapping
from urllib.parse import unquote_plus

from feed_dispatch.models import ArrivalEvent, utcnow

OBJECT_CREATED_PREFIX = "ObjectCreated:"


def parse_s3_notification(payload: Mapping[str, Any]) -> List[ArrivalEvent]:
    """
    Convert an S3 event notification into arrival events.

    Only ``ObjectCreated:*`` records are kept; the S3 test event and other
    record types are skipped. Object keys arrive URL-encoded and are decoded
    here. Missing bucket names or keys are passed through as empty strings so
    the dispatcher rejects them with InvalidEventError instead of losing them.
    """
    records = payload.get("Records")
    if not records:
        if payload.get("Event") == "s3:TestEvent":
            logging.info("Ignoring S3 test event")
        else:
            logging.warning("S3 notification contained no records")
        return []

    events: List[ArrivalEvent] = []
    for record in records:
        event_name = record.get("eventName", "")
        if not event_name.startswith(OBJECT_CREATED_PREFIX):
            logging.info(f"Skipping S3 record of type '{event_name}'")
            continue

        s3 = record.get("s3") or {}
        bucket = (s3.get("bucket") or {}).get("name") or ""
        s3_object = s3.get("object") or {}
        key = unquote_plus(s3_object.get("key") or "")

        events.append(
            ArrivalEvent(
                source_location=bucket,
                object_key=key,
                arrival_timestamp=_parse_event_time(record.get("eventTime")),
                object_size=s3_object.get("size"),
                event_name=event_name,
            )
        )

    logging.debug(f"Parsed {len(events)} arrival event(s) from {len(records)} S3 record(s)")
    return events


def _parse_event_time(value: Any) -> datetime:
    if not value:
        return utcnow()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logging.warning(f"Unparseable S3 eventTime '{value}', using receive time")
        return utcnow()
