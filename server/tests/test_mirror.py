from unittest.mock import MagicMock

from pymongo.errors import DuplicateKeyError, PyMongoError

from proofly.services.mirror import MirrorOutbox, RemoteMirror, insert_op, update_op


def _insert(key="r1"):
    return insert_op("remote_signing_requests", key, {"id": key, "status": "pending"})


def _update(key="r1", status="approved"):
    return update_op("remote_signing_requests", key, {"id": key}, {"status": status})


def test_push_applies_directly(outbox, mongo):
    assert outbox.push(_insert()) is True
    mongo["remote_signing_requests"].insert_one.assert_called_once_with(
        {"id": "r1", "status": "pending", "_id": "r1"}
    )
    assert outbox.pending() == []


def test_update_uses_set(outbox, mongo):
    outbox.push(_update())
    mongo["remote_signing_requests"].update_one.assert_called_once_with(
        {"id": "r1"}, {"$set": {"status": "approved"}}
    )


def test_duplicate_insert_counts_as_done(outbox, mongo):
    mongo["remote_signing_requests"].insert_one.side_effect = DuplicateKeyError("dup")
    assert outbox.push(_insert()) is True
    assert outbox.pending() == []


def test_enqueue_is_durable_before_any_delivery(outbox, mongo):
    outbox.enqueue(_insert())

    [entry] = outbox.pending()
    assert entry["attempts"] == 0
    assert entry["enqueuedAt"].startswith("2024-05-01T09:30:00")
    mongo["remote_signing_requests"].insert_one.assert_not_called()


def test_failed_op_stays_queued(outbox, mongo):
    mongo["remote_signing_requests"].insert_one.side_effect = PyMongoError("down")

    assert outbox.push(_insert()) is False

    [entry] = outbox.pending()
    assert entry["op"] == "insert"
    assert entry["attempts"] == 1
    assert "down" in entry["lastError"]


def test_later_op_drains_earlier_ones_for_same_record_in_order(outbox, mongo):
    coll = mongo["remote_signing_requests"]
    coll.insert_one.side_effect = PyMongoError("down")
    outbox.push(_insert("r1"))

    coll.insert_one.side_effect = None
    assert outbox.push(_update("r1")) is True

    assert [c[0] for c in coll.method_calls[-2:]] == ["insert_one", "update_one"]
    assert outbox.pending() == []


def test_failure_blocks_later_ops_for_the_record_only(outbox, mongo):
    coll = mongo["remote_signing_requests"]

    def insert_one(doc):
        if doc["_id"] == "r1":
            raise PyMongoError("down")

    coll.insert_one.side_effect = insert_one
    outbox.push(_insert("r1"))
    outbox.push(_update("r1"))
    assert outbox.push(_insert("r2")) is True

    result = outbox.flush()

    assert result == {"flushed": 0, "pending": 2}
    first, second = outbox.pending()
    assert first["attempts"] == 3
    # never tried while the insert ahead of it keeps failing
    assert second["attempts"] == 0
    coll.update_one.assert_not_called()


def test_flush_can_be_limited_to_keys(outbox, mongo):
    outbox.enqueue(_insert("r1"))
    outbox.enqueue(_insert("r2"))

    assert outbox.flush(keys=["r2"]) == {"flushed": 1, "pending": 1}
    assert [e["key"] for e in outbox.pending()] == ["r1"]


def test_unconfigured_mirror_queues_everything(store, clock):
    outbox = MirrorOutbox(store, RemoteMirror(None), clock=clock)
    assert outbox.push(_insert()) is False
    assert len(outbox.pending()) == 1

    outbox.mirror = RemoteMirror(MagicMock())
    assert outbox.flush() == {"flushed": 1, "pending": 0}
