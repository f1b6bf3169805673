import asyncio

import pytest
from asgiref.sync import sync_to_async

from care.models import User
from care.realtime.presence import PresenceRegistry
from care.services import presence as presence_service


def test_first_join_brings_user_online():
    reg = PresenceRegistry()
    assert reg.is_online(7) is False
    assert reg.join(7, 'c1') is True
    assert reg.is_online(7) is True
    assert reg.connection_for(7) == 'c1'


def test_second_connection_keeps_user_online_and_wins_latest():
    reg = PresenceRegistry()
    reg.join(7, 'c1')
    assert reg.join(7, 'c2') is False
    assert reg.is_online(7) is True
    assert reg.connection_for(7) == 'c2'
    assert reg.connection_count(7) == 2


def test_offline_only_after_last_connection_leaves():
    reg = PresenceRegistry()
    reg.join(7, 'c1')
    reg.join(7, 'c2')
    assert reg.leave(7, 'c2') is False
    assert reg.is_online(7) is True
    assert reg.connection_for(7) == 'c1'
    assert reg.leave(7, 'c1') is True
    assert reg.is_online(7) is False
    assert reg.connection_for(7) is None


def test_leave_is_idempotent():
    reg = PresenceRegistry()
    reg.join(7, 'c1')
    assert reg.leave(7, 'c1') is True
    # the second call is a no-op: no error, no second transition
    assert reg.leave(7, 'c1') is False
    assert reg.leave(7) is False
    assert reg.leave(12345, 'never-joined') is False


def test_leave_without_channel_drops_every_connection():
    reg = PresenceRegistry()
    reg.join(7, 'c1')
    reg.join(7, 'c2')
    assert reg.leave(7) is True
    assert reg.connection_count(7) == 0


def test_rejoin_same_channel_is_not_a_new_transition():
    reg = PresenceRegistry()
    assert reg.join(7, 'c1') is True
    assert reg.join(7, 'c1') is False
    assert reg.connection_count(7) == 1


def test_online_and_offline_announcements_alternate():
    reg = PresenceRegistry()
    assert reg.announce_online(7) is False
    reg.join(7, 'c1')
    assert reg.announce_online(7) is True
    assert reg.announce_online(7) is False

    # back on a new connection before the offline was announced
    reg.leave(7, 'c1')
    reg.join(7, 'c2')
    assert reg.announce_offline(7) is False
    assert reg.announce_online(7) is False

    reg.leave(7, 'c2')
    assert reg.announce_offline(7) is True
    assert reg.announce_offline(7) is False


def test_dropped_before_announcing_stays_silent():
    reg = PresenceRegistry()
    reg.join(7, 'c1')
    reg.leave(7, 'c1')
    assert reg.announce_online(7) is False
    assert reg.announce_offline(7) is False


def test_online_user_ids_and_clear():
    reg = PresenceRegistry()
    reg.join(9, 'a')
    reg.join(3, 'b')
    assert reg.online_user_ids() == [3, 9]
    reg.clear()
    assert reg.online_user_ids() == []
    assert reg.is_online(9) is False


# ---------------------------------------------------------------------
# Durable presence fields
# ---------------------------------------------------------------------
@pytest.mark.django_db(transaction=True)
@pytest.mark.asyncio
async def test_persist_presence_writes_online_and_last_seen(operator):
    assert await presence_service.persist_presence(operator.id, True) is True
    row = await sync_to_async(User.objects.get)(id=operator.id)
    assert row.is_online is True
    assert row.last_seen_at is not None


@pytest.mark.django_db(transaction=True)
@pytest.mark.asyncio
async def test_persist_presence_timeout_is_logged_not_raised(operator, monkeypatch, caplog):
    def slow(user_id, online):
        import time
        time.sleep(0.3)
        return 1

    monkeypatch.setattr(presence_service, 'set_presence', slow)
    with caplog.at_level('WARNING', logger='care.services.presence'):
        ok = await presence_service.persist_presence(operator.id, True, timeout=0.05)
    assert ok is False
    assert 'timed out' in caplog.text
    # let the abandoned worker finish before the database is torn down
    await asyncio.sleep(0.3)


@pytest.mark.django_db(transaction=True)
@pytest.mark.asyncio
async def test_persist_presence_failure_is_swallowed(operator, monkeypatch):
    def broken(user_id, online):
        raise RuntimeError('db down')

    monkeypatch.setattr(presence_service, 'set_presence', broken)
    assert await presence_service.persist_presence(operator.id, False) is False


@pytest.mark.django_db
def test_reset_all_marks_everyone_offline(operator, patient):
    from care.realtime.presence import registry
    User.objects.filter(id__in=[operator.id, patient.id]).update(is_online=True)
    registry.join(operator.id, 'c1')
    assert presence_service.reset_all() == 2
    assert not User.objects.filter(is_online=True).exists()
    assert registry.online_user_ids() == []
