from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pymongo
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from src.api.db.stores import DeviceExistsError, StoreUnavailableError
from src.api.models import DailyMessageStats, Device, Message, Tag
from src.api.schemas.common import Severity, utc_now

logger = logging.getLogger(__name__)


_CRITICAL = Severity.critical.value

_DEVICE_FIELDS = {
    "name": "name",
    "device_type": "deviceType",
    "address": "address",
    "responsible": "responsible",
}

_TAG_FIELDS = {
    "device_id": "deviceId",
    "name": "name",
    "regexp": "regexp",
    "compare_type": "compareType",
    "value": "value",
    "array_index": "arrayIndex",
    "subject": "subject",
    "severity_level": "severityLevel",
}


@dataclass(frozen=True)
class MongoCollections:
    """Convenience wrapper for app collections."""

    devices: Collection
    tags: Collection
    messages: Collection

    # Integer id sequences for devices and tags.
    counters: Collection


class MongoManager:
    """
    MongoDB connection manager.

    Maintains one MongoClient for the app's own storage DB.
    """

    def __init__(self, app_mongo_uri: str, db_name: str):
        self._app_mongo_uri = app_mongo_uri
        self._db_name = db_name
        self._app_client: Optional[MongoClient] = None
        self._lock = RLock()

    def connect_app(self) -> None:
        """Initialize app Mongo client if needed."""
        with self._lock:
            if self._app_client is not None:
                return
            # MongoClient is thread-safe and manages internal pooling.
            self._app_client = MongoClient(self._app_mongo_uri, connect=True, tz_aware=True)

    # PUBLIC_INTERFACE
    def ping(self, timeout_ms: int = 1500) -> bool:
        """Ping the configured MongoDB to validate connectivity."""
        try:
            if self._app_client is None:
                self.connect_app()
            assert self._app_client is not None
            self._app_client.admin.command("ping", maxTimeMS=int(max(250, timeout_ms)))
            return True
        except PyMongoError:
            logger.exception("Mongo ping failed (PyMongoError)")
            return False
        except Exception:
            logger.exception("Mongo ping failed (unexpected)")
            return False

    def close(self) -> None:
        """Close the app Mongo client."""
        with self._lock:
            if self._app_client is not None:
                try:
                    self._app_client.close()
                except Exception:
                    logger.exception("Error closing app MongoClient")
                self._app_client = None

    def app_db(self) -> Database:
        if self._app_client is None:
            self.connect_app()
        assert self._app_client is not None
        return self._app_client[self._db_name]

    def collections(self) -> MongoCollections:
        db = self.app_db()
        return MongoCollections(
            devices=db["devices"],
            tags=db["tags"],
            messages=db["messages"],
            counters=db["counters"],
        )

    def init_indexes(self) -> None:
        """Create required indexes (idempotent)."""
        cols = self.collections()

        # ---- Devices ----
        cols.devices.create_index([("id", ASCENDING)], unique=True, name="idx_devices_id")
        # Inbound messages are attributed by address, so it must be unique.
        cols.devices.create_index([("address", ASCENDING)], unique=True, name="idx_devices_address")

        # ---- Tags ----
        cols.tags.create_index([("id", ASCENDING)], unique=True, name="idx_tags_id")
        cols.tags.create_index([("deviceId", ASCENDING)], name="idx_tags_deviceId")

        # ---- Messages ----
        cols.messages.create_index([("deviceId", ASCENDING), ("gotAt", DESCENDING)], name="idx_messages_device_gotAt")
        cols.messages.create_index([("gotAt", DESCENDING)], name="idx_messages_gotAt_desc")
        cols.messages.create_index([("messageType", ASCENDING), ("deviceId", ASCENDING)], name="idx_messages_type_device")

    def next_id(self, sequence: str) -> int:
        """Allocate the next integer id for a sequence (devices, tags)."""
        doc = self.collections().counters.find_one_and_update(
            {"_id": sequence},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])


@contextmanager
def _store_call(what: str, timeout: Optional[float]) -> Iterator[None]:
    """Bound a store call by ``timeout`` and translate driver errors."""
    try:
        with pymongo.timeout(timeout):
            yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        raise StoreUnavailableError(f"{what} failed: {exc}") from exc


def _doc_to_device(doc: dict) -> Device:
    return Device(
        id=int(doc["id"]),
        name=doc.get("name", ""),
        device_type=doc.get("deviceType", ""),
        address=doc.get("address", ""),
        responsible=tuple(int(r) for r in doc.get("responsible") or []),
        created_at=doc.get("createdAt"),
        updated_at=doc.get("updatedAt"),
    )


def _doc_to_tag(doc: dict) -> Tag:
    return Tag(
        id=int(doc["id"]),
        device_id=int(doc.get("deviceId", 0)),
        name=doc.get("name", ""),
        regexp=doc.get("regexp", ""),
        compare_type=doc.get("compareType", ""),
        value=str(doc.get("value", "")),
        array_index=int(doc.get("arrayIndex", 0)),
        subject=doc.get("subject", ""),
        severity_level=doc.get("severityLevel", ""),
        created_at=doc.get("createdAt"),
        updated_at=doc.get("updatedAt"),
    )


def _doc_to_message(doc: dict) -> Message:
    return Message(
        device_id=int(doc.get("deviceId", 0)),
        message=doc.get("message", ""),
        message_type=doc.get("messageType", ""),
        severity_level=doc.get("severityLevel", ""),
        component=doc.get("component", ""),
        got_at=doc["gotAt"],
    )


def _rename_changes(changes: Dict[str, Any], fields: Dict[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in changes.items():
        if key not in fields:
            raise ValueError(f"unknown field {key!r}")
        if key == "responsible":
            value = [int(r) for r in value]
        out[fields[key]] = value
    return out


class MongoDeviceStore:
    def __init__(self, manager: MongoManager):
        self._manager = manager

    def list_devices(self, *, timeout: Optional[float] = None) -> List[Device]:
        with _store_call("list_devices", timeout):
            docs = list(self._manager.collections().devices.find({}, projection={"_id": 0}).sort("id", ASCENDING))
        return [_doc_to_device(d) for d in docs]

    def get_device(self, device_id: int, *, timeout: Optional[float] = None) -> Optional[Device]:
        with _store_call("get_device", timeout):
            doc = self._manager.collections().devices.find_one({"id": int(device_id)}, projection={"_id": 0})
        return _doc_to_device(doc) if doc else None

    def create_device(self, device: Device, *, timeout: Optional[float] = None) -> Device:
        now = utc_now()
        try:
            with _store_call("create_device", timeout):
                doc = {
                    "id": self._manager.next_id("devices"),
                    "name": device.name,
                    "deviceType": device.device_type,
                    "address": device.address,
                    "responsible": [int(r) for r in device.responsible],
                    "createdAt": now,
                    "updatedAt": now,
                }
                self._manager.collections().devices.insert_one(doc)
        except DuplicateKeyError as exc:
            raise DeviceExistsError(f"device with address {device.address!r} already exists") from exc
        return _doc_to_device(doc)

    def update_device(
        self, device_id: int, changes: Dict[str, Any], *, timeout: Optional[float] = None
    ) -> Optional[Device]:
        update = _rename_changes(changes, _DEVICE_FIELDS)
        update["updatedAt"] = utc_now()
        try:
            with _store_call("update_device", timeout):
                doc = self._manager.collections().devices.find_one_and_update(
                    {"id": int(device_id)},
                    {"$set": update},
                    projection={"_id": 0},
                    return_document=ReturnDocument.AFTER,
                )
        except DuplicateKeyError as exc:
            raise DeviceExistsError(f"device with address {changes.get('address')!r} already exists") from exc
        return _doc_to_device(doc) if doc else None

    def delete_device(self, device_id: int, *, timeout: Optional[float] = None) -> bool:
        with _store_call("delete_device", timeout):
            res = self._manager.collections().devices.delete_one({"id": int(device_id)})
        return res.deleted_count > 0


class MongoTagStore:
    def __init__(self, manager: MongoManager):
        self._manager = manager

    def list_tags(self, *, timeout: Optional[float] = None) -> List[Tag]:
        with _store_call("list_tags", timeout):
            docs = list(self._manager.collections().tags.find({}, projection={"_id": 0}).sort("id", ASCENDING))
        return [_doc_to_tag(d) for d in docs]

    def get_tag(self, tag_id: int, *, timeout: Optional[float] = None) -> Optional[Tag]:
        with _store_call("get_tag", timeout):
            doc = self._manager.collections().tags.find_one({"id": int(tag_id)}, projection={"_id": 0})
        return _doc_to_tag(doc) if doc else None

    def create_tag(self, tag: Tag, *, timeout: Optional[float] = None) -> Tag:
        now = utc_now()
        with _store_call("create_tag", timeout):
            doc = {
                "id": self._manager.next_id("tags"),
                "deviceId": int(tag.device_id),
                "name": tag.name,
                "regexp": tag.regexp,
                "compareType": tag.compare_type,
                "value": tag.value,
                "arrayIndex": int(tag.array_index),
                "subject": tag.subject,
                "severityLevel": tag.severity_level,
                "createdAt": now,
                "updatedAt": now,
            }
            self._manager.collections().tags.insert_one(doc)
        return _doc_to_tag(doc)

    def update_tag(self, tag_id: int, changes: Dict[str, Any], *, timeout: Optional[float] = None) -> Optional[Tag]:
        update = _rename_changes(changes, _TAG_FIELDS)
        update["updatedAt"] = utc_now()
        with _store_call("update_tag", timeout):
            doc = self._manager.collections().tags.find_one_and_update(
                {"id": int(tag_id)},
                {"$set": update},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER,
            )
        return _doc_to_tag(doc) if doc else None

    def delete_tag(self, tag_id: int, *, timeout: Optional[float] = None) -> bool:
        with _store_call("delete_tag", timeout):
            res = self._manager.collections().tags.delete_one({"id": int(tag_id)})
        return res.deleted_count > 0


class MongoMessageStore:
    def __init__(self, manager: MongoManager):
        self._manager = manager

    def insert_message(self, message: Message, *, timeout: Optional[float] = None) -> None:
        doc = {
            "deviceId": int(message.device_id),
            "message": message.message,
            "messageType": message.message_type,
            "severityLevel": message.severity_level,
            "component": message.component,
            "gotAt": message.got_at,
        }
        with _store_call("insert_message", timeout):
            self._manager.collections().messages.insert_one(doc)

    def list_messages(
        self,
        *,
        device_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        timeout: Optional[float] = None,
    ) -> List[Message]:
        query: Dict[str, Any] = {}
        if device_id is not None:
            query["deviceId"] = int(device_id)
        if start or end:
            got_at: Dict[str, Any] = {}
            if start:
                got_at["$gte"] = start
            if end:
                got_at["$lte"] = end
            query["gotAt"] = got_at

        with _store_call("list_messages", timeout):
            docs = list(
                self._manager.collections()
                .messages.find(query, projection={"_id": 0})
                .sort("gotAt", DESCENDING)
                .limit(int(limit))
            )
        return [_doc_to_message(d) for d in docs]

    def count_by_message_type(
        self, message_type: str, *, timeout: Optional[float] = None
    ) -> List[Tuple[int, int]]:
        pipeline = [
            {"$match": {"messageType": message_type}},
            {"$group": {"_id": "$deviceId", "count": {"$sum": 1}}},
            {"$sort": {"_id": ASCENDING}},
        ]
        with _store_call("count_by_message_type", timeout):
            docs = list(self._manager.collections().messages.aggregate(pipeline))
        return [(int(d["_id"]), int(d["count"])) for d in docs]

    def daily_stats(self, *, since: datetime, timeout: Optional[float] = None) -> List[DailyMessageStats]:
        is_critical = {"$eq": ["$severityLevel", _CRITICAL]}
        # One row per (device, type, day, component); components are folded below.
        pipeline = [
            {"$match": {"gotAt": {"$gte": since}}},
            {
                "$group": {
                    "_id": {
                        "deviceId": "$deviceId",
                        "messageType": "$messageType",
                        "day": {"$dateToString": {"format": "%Y-%m-%d", "date": "$gotAt", "timezone": "UTC"}},
                        "component": "$component",
                    },
                    "total": {"$sum": 1},
                    "critical": {"$sum": {"$cond": [is_critical, 1, 0]}},
                    "firstCritical": {"$min": {"$cond": [is_critical, "$gotAt", None]}},
                    "lastCritical": {"$max": {"$cond": [is_critical, "$gotAt", None]}},
                }
            },
        ]
        with _store_call("daily_stats", timeout):
            docs = list(self._manager.collections().messages.aggregate(pipeline))

        folded: Dict[Tuple[int, str, str], Dict[str, Any]] = {}
        for d in docs:
            key = (int(d["_id"]["deviceId"]), d["_id"]["messageType"], d["_id"]["day"])
            acc = folded.setdefault(key, {"total": 0, "critical": 0, "components": {}, "first": None, "last": None})
            acc["total"] += int(d["total"])
            acc["critical"] += int(d["critical"])
            component = d["_id"].get("component")
            if component:
                acc["components"][component] = acc["components"].get(component, 0) + int(d["total"])
            if d.get("firstCritical") is not None:
                acc["first"] = min(filter(None, [acc["first"], d["firstCritical"]]))
            if d.get("lastCritical") is not None:
                acc["last"] = max(filter(None, [acc["last"], d["lastCritical"]]))

        return [
            DailyMessageStats(
                device_id=device_id,
                message_type=message_type,
                day=date.fromisoformat(day),
                total=acc["total"],
                critical=acc["critical"],
                components=acc["components"],
                first_critical_at=acc["first"],
                last_critical_at=acc["last"],
            )
            for (device_id, message_type, day), acc in sorted(folded.items())
        ]


class MongoStores:
    """Mongo-backed device, tag and message stores sharing one MongoManager."""

    def __init__(self, mongo_uri: str, db_name: str):
        self.manager = MongoManager(mongo_uri, db_name)
        self.devices = MongoDeviceStore(self.manager)
        self.tags = MongoTagStore(self.manager)
        self.messages = MongoMessageStore(self.manager)

    def connect(self) -> None:
        self.manager.connect_app()
        if not self.manager.ping():
            raise RuntimeError("Mongo connectivity check failed during startup. Verify BACKEND_MONGO_URI.")
        self.manager.init_indexes()

    def ping(self) -> bool:
        return self.manager.ping()

    def close(self) -> None:
        self.manager.close()
