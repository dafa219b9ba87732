"""Behaviour every StorageAdapter must share (memory and Redis)."""

from datetime import timedelta

import pytest

from authsession.session import ErrorKind, SessionRecord, StorageAdapter
from authsession.session.models import from_timestamp


def test_adapters_satisfy_protocol(backend):
    assert isinstance(backend, StorageAdapter)


@pytest.mark.asyncio
async def test_set_and_get(backend):
    written = await backend.set("s1", {"id": "u1", "name": "Ann"})
    assert written.ok
    assert written.value == SessionRecord(user={"id": "u1", "name": "Ann"})

    loaded = await backend.get("s1")
    assert loaded.ok
    assert loaded.value.user == {"id": "u1", "name": "Ann"}
    assert loaded.value.expires_at is None


@pytest.mark.asyncio
async def test_get_missing_is_empty_success(backend):
    result = await backend.get("nope")
    assert result.ok
    assert result.value is None


@pytest.mark.asyncio
async def test_has(backend):
    await backend.set("s1", {"id": "u1"})
    assert (await backend.has("s1")).value is True
    assert (await backend.has("s2")).value is False


@pytest.mark.asyncio
async def test_set_overwrites(backend):
    await backend.set("s1", {"id": "u1", "v": 1})
    await backend.set("s1", {"id": "u1", "v": 2})
    assert (await backend.get("s1")).value.user["v"] == 2


@pytest.mark.asyncio
async def test_default_ttl_expires_record(backend, clock):
    await backend.set("s1", {"id": "u1"})
    clock.advance(599)
    assert (await backend.get("s1")).value is not None
    clock.advance(2)
    assert (await backend.get("s1")).value is None


@pytest.mark.asyncio
async def test_explicit_expiry_is_absolute(backend, clock):
    expires = from_timestamp(clock() + 30)
    await backend.set("s1", {"id": "u1"}, expires)
    loaded = (await backend.get("s1")).value
    assert loaded.expires_at == expires

    clock.advance(31)
    assert (await backend.get("s1")).value is None


@pytest.mark.asyncio
async def test_record_born_expired_is_not_stored(backend, clock):
    written = await backend.set("s1", {"id": "u1"}, from_timestamp(clock() - 1))
    assert written.kind is ErrorKind.NOT_FOUND
    assert (await backend.get("s1")).value is None
    assert (await backend.has("s1")).value is False


@pytest.mark.asyncio
async def test_born_expired_write_replaces_nothing_stale(backend, clock):
    await backend.set("s1", {"id": "u1"})
    written = await backend.set("s1", {"id": "u1"}, from_timestamp(clock()))
    assert written.kind is ErrorKind.NOT_FOUND
    assert (await backend.get("s1")).value is None


@pytest.mark.asyncio
async def test_update_to_past_deadline_is_not_found(backend, clock):
    await backend.set("s1", {"id": "u1"})
    result = await backend.update("s1", {"x": 1}, from_timestamp(clock() - 1))
    assert result.kind is ErrorKind.NOT_FOUND
    assert (await backend.get("s1")).value is None


@pytest.mark.asyncio
async def test_single_session_flag_is_persisted(backend):
    written = await backend.set("s1", {"id": "u1"}, single_session=True)
    assert written.value.single_session is True
    assert (await backend.get("s1")).value.single_session is True

    updated = await backend.update("s1", {"role": "admin"})
    assert updated.value.single_session is True
    assert (await backend.get("s1")).value.single_session is True

    await backend.set("s2", {"id": "u2"})
    assert (await backend.get("s2")).value.single_session is False


@pytest.mark.asyncio
async def test_update_merges_partial(backend):
    await backend.set("s1", {"id": "u1", "name": "Ann", "role": "user"})
    updated = await backend.update("s1", {"role": "admin"})
    assert updated.ok
    assert updated.value.user == {"id": "u1", "name": "Ann", "role": "admin"}
    assert (await backend.get("s1")).value.user["role"] == "admin"


@pytest.mark.asyncio
async def test_update_missing_is_not_found(backend):
    result = await backend.update("missing-id", {"role": "admin"})
    assert not result.ok
    assert result.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_update_keeps_remaining_ttl(backend, clock):
    await backend.set("s1", {"id": "u1"})
    clock.advance(500)
    await backend.update("s1", {"x": 1})
    clock.advance(101)
    assert (await backend.get("s1")).value is None


@pytest.mark.asyncio
async def test_update_with_new_expiry(backend, clock):
    await backend.set("s1", {"id": "u1"})
    new_expiry = from_timestamp(clock() + 5000)
    updated = await backend.update("s1", {}, new_expiry)
    assert updated.value.expires_at == new_expiry
    clock.advance(4000)
    assert (await backend.get("s1")).value is not None


@pytest.mark.asyncio
async def test_remove(backend):
    await backend.set("s1", {"id": "u1"})
    assert (await backend.remove("s1")).value is True
    assert (await backend.remove("s1")).value is False
    assert (await backend.get("s1")).value is None


@pytest.mark.asyncio
async def test_reset_expiration_slides_deadline(backend, clock):
    await backend.set("s1", {"id": "u1"})
    clock.advance(500)
    assert (await backend.reset_expiration("s1")).value is True
    clock.advance(500)
    assert (await backend.get("s1")).value is not None


@pytest.mark.asyncio
async def test_reset_expiration_missing(backend):
    result = await backend.reset_expiration("nope")
    assert result.ok
    assert result.value is False


@pytest.mark.asyncio
async def test_reset_expiration_never_passes_explicit_deadline(backend, clock):
    await backend.set("s1", {"id": "u1"}, from_timestamp(clock() + 100))
    clock.advance(90)
    await backend.reset_expiration("s1")
    clock.advance(11)
    assert (await backend.get("s1")).value is None


# ── user → session index ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_user_session_index(backend):
    assert (await backend.get_user_active_session("u1")).value is None
    await backend.set_user_session("u1", "s1")
    assert (await backend.get_user_active_session("u1")).value == "s1"
    assert (await backend.remove_user_session("u1")).value is True
    assert (await backend.get_user_active_session("u1")).value is None
    assert (await backend.remove_user_session("u1")).value is False


@pytest.mark.asyncio
async def test_remove_user_session_with_expected(backend):
    await backend.set_user_session("u1", "s2")

    stale = await backend.remove_user_session("u1", expected="s1")
    assert stale.kind is ErrorKind.CONFLICT
    assert (await backend.get_user_active_session("u1")).value == "s2"

    assert (await backend.remove_user_session("u1", expected="s2")).value is True
    assert (await backend.remove_user_session("u1", expected="s2")).value is False


@pytest.mark.asyncio
async def test_swap_user_session_returns_displaced(backend):
    assert (await backend.swap_user_session("u1", "s1")).value is None
    assert (await backend.swap_user_session("u1", "s2")).value == "s1"
    assert (await backend.get_user_active_session("u1")).value == "s2"


@pytest.mark.asyncio
async def test_swap_user_session_compare_and_set(backend):
    await backend.set_user_session("u1", "s1")

    moved = await backend.swap_user_session("u1", "s3", expected="s0")
    assert moved.kind is ErrorKind.CONFLICT
    assert (await backend.get_user_active_session("u1")).value == "s1"

    swapped = await backend.swap_user_session("u1", "s3", expected="s1")
    assert swapped.value == "s1"
    assert (await backend.get_user_active_session("u1")).value == "s3"


@pytest.mark.asyncio
async def test_user_index_does_not_expire_with_session(backend, clock):
    await backend.set("s1", {"id": "u1"})
    await backend.set_user_session("u1", "s1")
    clock.advance(10_000)
    assert (await backend.get("s1")).value is None
    assert (await backend.get_user_active_session("u1")).value == "s1"


@pytest.mark.asyncio
async def test_numeric_user_ids(backend):
    await backend.set_user_session(42, "s1")
    assert (await backend.get_user_active_session(42)).value == "s1"
    assert (await backend.get_user_active_session("42")).value == "s1"


# ── bulk ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_all_sessions_skips_expired(backend, clock):
    await backend.set("s1", {"id": "u1"})
    await backend.set("s2", {"id": "u2"}, from_timestamp(clock() + 10))
    clock.advance(11)
    await backend.set("s3", {"id": "u3"})

    sessions = (await backend.all_sessions()).value
    assert set(sessions) == {"s1", "s3"}
    assert sessions["s3"].user == {"id": "u3"}


@pytest.mark.asyncio
async def test_clear_removes_records_and_their_index(backend):
    await backend.set("s1", {"id": "u1"})
    await backend.set("s2", {"id": "u2"})
    await backend.set_user_session("u1", "s1")

    cleared = await backend.clear()
    assert cleared.value == 2
    assert (await backend.all_sessions()).value == {}
    assert (await backend.get_user_active_session("u1")).value is None


@pytest.mark.asyncio
async def test_expiry_with_timedelta_helpers(backend, clock):
    expires = clock.datetime() + timedelta(minutes=1)
    await backend.set("s1", {"id": "u1"}, expires)
    clock.advance(59)
    assert (await backend.has("s1")).value is True
    clock.advance(2)
    assert (await backend.has("s1")).value is False
