import asyncio
import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from storage import DebouncedWriter, LocalFileStore, MemoryStore, S3Store, SqlSettingsStore, StorageError, get_store


def test_local_store_round_trip(tmp_path):
    store = LocalFileStore(tmp_path / "model_store")
    assert store.get("vocab") is None

    store.set("vocab", '{"terms": ["cà", "phê"]}')
    assert store.get("vocab") == '{"terms": ["cà", "phê"]}'
    assert (tmp_path / "model_store" / "vocab.json").exists()
    # no temp files left behind
    assert [p.name for p in (tmp_path / "model_store").iterdir()] == ["vocab.json"]

    store.delete("vocab")
    assert store.get("vocab") is None
    store.delete("vocab")


def test_local_store_overwrite_keeps_one_generation(tmp_path):
    store = LocalFileStore(tmp_path)
    store.set("weights", "old")
    store.set("weights", "new")
    assert store.get("weights") == "new"


def test_sql_settings_store(session_factory):
    store = SqlSettingsStore(session_factory)
    assert store.get("budget") is None
    store.set("budget", "[1, 2]")
    store.set("budget", "[3]")
    assert store.get("budget") == "[3]"
    store.delete("budget")
    assert store.get("budget") is None


def _s3_store():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    return S3Store("finance-models", client=client), Stubber(client)


def test_s3_store_get_and_set():
    store, stubber = _s3_store()
    body = b'{"ok": true}'
    stubber.add_response(
        "put_object",
        {},
        {
            "Bucket": "finance-models",
            "Key": "model_store/vocab.json",
            "Body": body,
            "ContentType": "application/json",
        },
    )
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(body), len(body))},
        {"Bucket": "finance-models", "Key": "model_store/vocab.json"},
    )
    with stubber:
        store.set("vocab", '{"ok": true}')
        assert store.get("vocab") == '{"ok": true}'
    stubber.assert_no_pending_responses()


def test_s3_store_missing_key_returns_none():
    store, stubber = _s3_store()
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    with stubber:
        assert store.get("missing") is None


def test_s3_store_wraps_errors():
    store, stubber = _s3_store()
    stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
    with stubber, pytest.raises(StorageError):
        store.set("vocab", "{}")


def test_get_store_backends(monkeypatch, tmp_path):
    import config

    monkeypatch.setattr(config, "S3_BUCKET", None)
    monkeypatch.setattr(config, "MODEL_STORE_DIR", str(tmp_path))
    assert isinstance(get_store("auto"), LocalFileStore)
    assert isinstance(get_store("memory"), MemoryStore)
    with pytest.raises(ValueError):
        get_store("s3")
    with pytest.raises(ValueError):
        get_store("redis")


async def test_debounced_writer_batches_until_quiet():
    store = MemoryStore()
    writer = DebouncedWriter(store, delay=0.05)
    writer.schedule({"a": "1"})
    writer.schedule({"a": "2", "b": "x"})
    assert store.data == {}
    assert writer.has_pending

    await asyncio.sleep(0.15)
    assert store.data == {"a": "2", "b": "x"}
    assert not writer.has_pending


async def test_debounced_writer_flush_and_delete():
    store = MemoryStore({"old": "value"})
    writer = DebouncedWriter(store, delay=60)
    writer.schedule({"new": "value", "old": None})
    await writer.flush()
    assert store.data == {"new": "value"}


async def test_debounced_writer_discard():
    store = MemoryStore()
    writer = DebouncedWriter(store, delay=60)
    writer.schedule({"a": "1", "b": "2"})
    writer.discard(["a"])
    await writer.flush()
    assert store.data == {"b": "2"}


def test_debounced_writer_writes_immediately_without_loop():
    store = MemoryStore()
    DebouncedWriter(store).schedule({"a": "1"})
    assert store.data == {"a": "1"}


async def test_debounced_writer_logs_failures(caplog):
    class FailingStore(MemoryStore):
        def set(self, key, value):
            raise StorageError("disk full")

    writer = DebouncedWriter(FailingStore(), delay=60)
    writer.schedule({"a": "1"})
    await writer.flush()
    assert "disk full" in caplog.text
