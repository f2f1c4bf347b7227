import json
import threading
from datetime import datetime

import pytest

from firetree import DecodeError, RemoteRejectedError


def test_set_then_get_round_trip(root, db):
    ref = root.child("users/ada")
    payload = {"name": "Ada", "born": 1815, "tags": ["math", "poetry"]}
    assert ref.set(payload) == payload
    assert ref.get() == payload
    assert db.tree == {"users": {"ada": payload}}
    assert db.requests[0]["method"] == "PUT"
    assert json.loads(db.requests[0]["body"]) == payload


def test_update_merges_and_keeps_siblings(root):
    ref = root.child("counters")
    ref.set({"a": 1, "b": 2})
    ref.update({"b": 3})
    assert ref.get() == {"a": 1, "b": 3}


def test_update_needs_a_mapping(root):
    with pytest.raises(ValueError):
        root.child("counters").update([1, 2])


def test_push_returns_generated_child(root, db):
    messages = root.child("messages")
    first = messages.push({"text": "hello"})
    second = messages.push({"text": "world"})

    assert first.url.startswith(messages.url + "/")
    assert first.url.endswith(first.key)
    assert first.key in db.tree["messages"]
    assert first.get() == {"text": "hello"}
    assert sorted(messages.get()) == [first.key, second.key]
    assert db.requests[0]["method"] == "POST"


def test_push_keeps_params(root):
    root.auth("secret")
    pushed = root.child("messages").push("hi")
    assert pushed.params == {"auth": "secret"}


def test_push_from_filtered_query_drops_filters(root, db):
    root.auth("secret")
    query = root.child("messages").order_by_key().start_at("a").limit_to_first(1)
    pushed = query.push("hi")
    assert pushed.params == {"auth": "secret"}
    assert pushed.get() == "hi"
    assert db.requests[-1]["query"] == {"auth": "secret"}


def test_push_without_name_is_decode_error(root, db):
    db.raw_body = b'{"unexpected": true}'
    with pytest.raises(DecodeError):
        root.child("messages").push("hi")


def test_delete(root, db):
    root.child("users").set({"ada": 1, "grace": 2})
    root.child("users/ada").delete()
    assert root.child("users").get() == {"grace": 2}
    assert db.requests[-2]["method"] == "DELETE"


def test_get_missing_is_none(root):
    assert root.child("nothing/here").get() is None


def test_get_shallow(root, db):
    root.child("users").set({"ada": {"born": 1815}, "count": 2})
    users = root.child("users")
    assert users.get_shallow() == {"ada": True, "count": 2}
    assert db.requests[-1]["query"] == {"shallow": "true"}
    assert users.params == {}


def test_get_export_sends_format_flag(root, db):
    root.child("users").get_export()
    assert db.requests[-1]["query"] == {"format": "export"}
    assert root.params == {}


def test_requests_carry_auth(root, db):
    root.auth("secret")
    root.child("users").get()
    assert db.requests[-1]["query"] == {"auth": "secret"}


def test_query_params_sent(root, db):
    root.child("users").order_by_key().limit_to_first(3).get()
    assert db.requests[-1]["query"] == {"orderBy": '"$key"', "limitToFirst": "3"}


def test_get_with_target(root):
    class Person:
        def __init__(self, data):
            self.name = data["name"]

    root.child("ada").set({"name": "Ada"})
    assert root.child("ada").get(Person).name == "Ada"


def test_get_with_bad_target_is_decode_error(root):
    root.child("ada").set({"born": 1815})
    with pytest.raises(DecodeError):
        root.child("ada").get(lambda data: data["name"])


def test_non_json_response_is_decode_error(root, db):
    db.raw_body = b"<html>not json</html>"
    with pytest.raises(DecodeError):
        root.get()


def test_unserializable_value_is_decode_error(root, db):
    with pytest.raises(DecodeError):
        root.child("when").set({"at": datetime(2020, 1, 1)})
    assert db.requests == []


def test_custom_encoder(transport, db):
    from firetree import Reference

    class DateEncoder(json.JSONEncoder):
        def default(self, o):
            if isinstance(o, datetime):
                return o.isoformat()
            return super().default(o)

    ref = Reference("test-db.example.com/when", transport=transport, encoder=DateEncoder)
    ref.set({"at": datetime(2020, 1, 1)})
    assert db.tree == {"when": {"at": "2020-01-01T00:00:00"}}
    assert ref.child("at").get() == "2020-01-01T00:00:00"


def test_rejected_carries_exact_body(root, db):
    db.reject_with = (401, '{\n  "error" : "Permission denied"\n}\n')
    with pytest.raises(RemoteRejectedError) as info:
        root.child("secret").get()
    assert info.value.status_code == 401
    assert info.value.body == '{\n  "error" : "Permission denied"\n}\n'
    assert info.value.kind == "rejected"


@pytest.mark.parametrize("status", [301, 400, 404, 500])
def test_any_non_2xx_is_rejected(root, db, status):
    db.reject_with = (status, "nope")
    with pytest.raises(RemoteRejectedError):
        root.child("a").set(1)


def test_async_variants(root):
    done = threading.Event()
    results = []

    def callback(future):
        results.append(future.result())
        done.set()

    root.child("a").set_async({"x": 1}).result(timeout=5)
    root.child("a").update_async({"y": 2}).result(timeout=5)
    pushed = root.child("list").push_async("item").result(timeout=5)
    root.child("a").get_async(callback=callback)
    assert done.wait(5)
    assert results == [{"x": 1, "y": 2}]
    assert pushed.get() == "item"
    root.child("a").delete_async().result(timeout=5)
    assert root.child("a").get() is None


def test_async_errors_surface_on_future(root, db):
    db.reject_with = (500, "boom")
    future = root.get_async()
    with pytest.raises(RemoteRejectedError):
        future.result(timeout=5)
