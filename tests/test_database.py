"""MongoDB reads against a fake client."""
import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

import config
from database import MongoSourceError, fetch_documents, run_read_query
from models import MongoQuery
from prompts import UnsafeOperationError


def _seed(fake_mongo, docs, database="shop", collection="orders"):
    coll = fake_mongo[database][collection]
    coll.docs.extend(docs)
    return coll


def test_fetch_documents_applies_filter_and_limit(fake_mongo):
    coll = _seed(fake_mongo, [{"_id": ObjectId(), "status": s} for s in ("a", "b", "a", "a")])

    docs = fetch_documents("shop", "orders", filter={"status": "a"}, limit=2)

    assert [d["status"] for d in docs] == ["a", "a"]
    assert ("limit", 2) in coll.calls
    assert fake_mongo.closed == 1


def test_fetch_documents_caps_limit(fake_mongo):
    coll = _seed(fake_mongo, [])
    fetch_documents("shop", "orders", limit=config.MAX_RESULT_SIZE * 10)
    assert ("limit", config.MAX_RESULT_SIZE) in coll.calls


def test_connection_errors_map_to_503(fake_mongo):
    fake_mongo.error = ServerSelectionTimeoutError("no servers")
    with pytest.raises(MongoSourceError) as exc:
        fetch_documents("shop", "orders", uri="mongodb://user:secret@db:27017")
    assert exc.value.status_code == 503
    assert fake_mongo.closed == 1


def test_driver_errors_map_to_400(fake_mongo):
    fake_mongo.error = OperationFailure("bad query")
    with pytest.raises(MongoSourceError) as exc:
        fetch_documents("shop", "orders")
    assert exc.value.status_code == 400


def test_find_query_with_sort_and_limit(fake_mongo):
    _seed(fake_mongo, [{"n": 1}, {"n": 3}, {"n": 2}])
    query = MongoQuery(
        operation="find", collection="orders",
        query={"filter": {}, "options": {"sort": {"n": -1}, "limit": 2}},
    )
    assert run_read_query(query, "shop") == [{"n": 3}, {"n": 2}]


def test_aggregate_gets_a_limit_stage(fake_mongo):
    coll = _seed(fake_mongo, [{"s": "x"}, {"s": "y"}])
    query = MongoQuery(operation="aggregate", collection="orders", query=[{"$match": {"s": "x"}}])

    assert run_read_query(query, "shop") == [{"s": "x"}]
    pipeline = coll.calls[-1][1]
    assert pipeline[-1] == {"$limit": config.MAX_RESULT_SIZE}


def test_count_documents(fake_mongo):
    _seed(fake_mongo, [{"s": "x"}, {"s": "y"}, {"s": "x"}])
    query = MongoQuery(operation="countDocuments", collection="orders", query={"filter": {"s": "x"}})
    assert run_read_query(query, "shop") == 2


def test_write_operations_are_refused(fake_mongo):
    query = MongoQuery(operation="deleteOne", collection="orders", query={"filter": {"a": 1}})
    with pytest.raises(UnsafeOperationError):
        run_read_query(query, "shop")
    assert fake_mongo.opened_with == []
