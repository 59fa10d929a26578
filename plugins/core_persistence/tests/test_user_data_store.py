# plugins/core_persistence/tests/test_user_data_store.py
import json
import pytest

from plugins.core_persistence.codec import (
    decode_body_payload,
    decode_file_payload,
    encode_dataset,
    xor_decode,
    xor_encode,
    xor_hex_encode,
)
from plugins.core_persistence.contracts import DataFormatError
from plugins.core_persistence.stores import UserDataStore

SAMPLE = {"modules": [{"id": "m1", "title": "角色", "content": "你是专家", "type": "role"}],
          "templates": [], "logs": [], "apiKey": "k-123"}


@pytest.mark.asyncio
async def test_load_unknown_user_returns_none(database):
    store = UserDataStore(database)
    assert await store.load("nobody") is None


@pytest.mark.asyncio
async def test_save_then_load_overwrites_whole_record(database):
    store = UserDataStore(database)

    first_ts = await store.save("u1", SAMPLE)
    second_ts = await store.save("u1", {"modules": [], "templates": [], "logs": [], "apiKey": "new"})

    assert second_ts >= first_ts
    loaded = await store.load("u1")
    # 整体覆盖，不做合并
    assert loaded == {"modules": [], "templates": [], "logs": [], "apiKey": "new"}


@pytest.mark.asyncio
async def test_records_are_scoped_by_user(database):
    store = UserDataStore(database)
    await store.save("u1", SAMPLE)
    assert await store.load("u2") is None


@pytest.mark.asyncio
async def test_database_ping(database):
    assert await database.ping() is True


def test_xor_is_symmetric_and_not_plaintext():
    raw = xor_encode('{"apiKey":"secret"}')
    assert b"secret" not in raw
    assert xor_decode(raw) == '{"apiKey":"secret"}'


def test_file_payload_decodes_client_upload():
    assert decode_file_payload(encode_dataset(SAMPLE)) == SAMPLE


def test_body_payload_accepts_hex_wrapped_and_plain_json():
    text = json.dumps(SAMPLE, ensure_ascii=False)

    assert decode_body_payload(xor_hex_encode(text).encode()) == SAMPLE
    assert decode_body_payload(json.dumps({"data": SAMPLE}).encode()) == SAMPLE
    assert decode_body_payload(text.encode("utf-8")) == SAMPLE


@pytest.mark.parametrize("body", [b"", b"   ", b"not json at all", b"abc", b"[1, 2, 3]"])
def test_body_payload_rejects_unrecognized(body):
    with pytest.raises(DataFormatError):
        decode_body_payload(body)
