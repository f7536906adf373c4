"""End-to-end tests for FleetSyncClient over a fake transport."""

import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import wait_for
from fleetsync import FleetSyncClient
from fleetsync.events import Signal
from fleetsync.types import ConnectionState, PresenceStatus


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def foreground():
    return Signal("foreground")


@pytest.fixture
def client(config, auth, factory, clock, alerts, invalidated, foreground):
    return FleetSyncClient(
        config,
        auth,
        transport_factory=factory,
        clock=clock,
        alert_sink=alerts.append,
        on_session_invalidated=invalidated.append,
        foreground=foreground,
    )


class TestLiveView:
    @pytest.mark.asyncio
    async def test_heartbeat_reaches_store(self, client, factory):
        assert await client.connect() is True
        factory.last.feed(
            {
                "type": "heartbeat",
                "data": {"device_info": {"imei": "8600", "device_name": "Gateway"}, "battery_level": 42},
            }
        )
        await wait_for(lambda: "8600" in client.store)
        device = client.store.get("8600")
        assert device.battery_level == 42
        assert device.status == PresenceStatus.ONLINE
        await client.close()

    @pytest.mark.asyncio
    async def test_alarm_notifies_and_alerts(self, client, factory, alerts):
        await client.connect()
        factory.last.feed(
            {
                "type": "alarm",
                "data": {"id": "1", "device_id": "8600", "alarm_type": "offline", "severity": "critical"},
            }
        )
        await wait_for(lambda: len(client.notifications) == 1)
        assert alerts[0].duration is None
        assert len(client.store.alarm_logs()) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_subscriber_sees_frames(self, client, factory):
        seen = []
        client.subscribe("sms_message", lambda frame: seen.append(frame.data["message"]))
        await client.connect()
        factory.last.feed({"type": "sms_message", "data": {"message": "hi", "sender": "+1"}})
        await wait_for(lambda: seen == ["hi"])
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_frame_does_not_stop_stream(self, client, factory):
        await client.connect()
        factory.last.feed("garbage")
        factory.last.feed({"type": "device_online", "data": {"device_id": "A1"}})
        await wait_for(lambda: "A1" in client.store)
        assert client.get_stats()["frames_dropped"] == 1
        await client.close()


class TestCommands:
    @pytest.mark.asyncio
    async def test_send_sms(self, client, factory):
        await client.connect()
        ok = await client.send_sms("8600", phone_number="+15550100", message="hello", sim_slot=1)
        assert ok is True
        assert factory.last.sent_frames() == [
            {
                "type": "send_sms",
                "data": {
                    "device_id": "8600",
                    "phone_number": "+15550100",
                    "message": "hello",
                    "sim_slot": 1,
                },
            }
        ]
        await client.close()

    @pytest.mark.asyncio
    async def test_other_commands(self, client, factory):
        await client.connect()
        await client.send_ussd("8600", ussd_code="*123#")
        await client.find_device("8600")
        await client.start_alarm("8600")
        await client.stop_alarm("8600")
        types = [f["type"] for f in factory.last.sent_frames()]
        assert types == ["send_ussd", "find_device", "alarm_start", "alarm_stop"]
        await client.close()

    @pytest.mark.asyncio
    async def test_send_while_disconnected(self, client):
        assert await client.find_device("8600") is False


class TestSession:
    @pytest.mark.asyncio
    async def test_auth_error_frame_logs_out(self, client, factory, auth, invalidated):
        await client.connect()
        factory.last.feed({"type": "auth_error", "data": {"message": "Token expired"}})
        await wait_for(lambda: invalidated == ["Token expired"])
        auth.logout.assert_called_once_with()
        assert client.state == ConnectionState.DISCONNECTED
        assert client.status.retry_pending is False
        assert len(factory.calls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_repeated_auth_error_logs_out_once(self, client, factory, auth, invalidated):
        await client.connect()
        factory.last.feed({"type": "auth_error", "data": {"message": "Token expired"}})
        factory.last.feed({"type": "auth_error", "data": {"message": "Token expired"}})
        await wait_for(lambda: invalidated)
        await asyncio.sleep(0.05)
        auth.logout.assert_called_once_with()
        assert invalidated == ["Token expired"]
        await client.close()

    @pytest.mark.asyncio
    async def test_auth_error_then_auth_close_logs_out_once(
        self, client, factory, auth, invalidated
    ):
        await client.connect()
        factory.last.feed({"type": "auth_error", "data": {"message": "Token expired"}})
        factory.last.drop(4401, "unauthorized")
        await wait_for(lambda: invalidated)
        await asyncio.sleep(0.05)
        auth.logout.assert_called_once_with()
        assert len(invalidated) == 1
        assert len(factory.calls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_connect_after_invalidation_can_log_out_again(
        self, client, factory, auth, invalidated
    ):
        await client.connect()
        factory.last.feed({"type": "unauthorized", "data": {}})
        await wait_for(lambda: len(invalidated) == 1)
        assert await client.connect() is True
        factory.last.feed({"type": "unauthorized", "data": {}})
        await wait_for(lambda: len(invalidated) == 2)
        assert auth.logout.call_count == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_foreground_resumes_lost_connection(self, client, factory, foreground, config):
        await client.connect()
        factory.errors.extend([OSError("down")] * config.max_reconnect_attempts)
        factory.last.drop(1006)
        await wait_for(lambda: len(factory.calls) == 1 + config.max_reconnect_attempts)
        await wait_for(lambda: not client.status.retry_pending)
        assert not client.is_connected

        foreground.emit(True)
        await wait_for(lambda: client.is_connected)
        await client.close()

    @pytest.mark.asyncio
    async def test_foreground_after_manual_disconnect_stays_closed(self, client, factory, foreground):
        await client.connect()
        await client.disconnect()
        foreground.emit(True)
        foreground.emit(False)
        assert await client.handle_foreground() is False
        await client.close()
        assert len(factory.calls) == 1

    @pytest.mark.asyncio
    async def test_close_detaches_foreground(self, client, foreground):
        await client.close()
        assert len(foreground) == 0


class TestIsolation:
    @pytest.mark.asyncio
    async def test_independent_instances(self, config, factory, clock):
        auth_a, auth_b = MagicMock(), MagicMock()
        for a in (auth_a, auth_b):
            a.current_credential.return_value = "jwt"
            a.is_expired.return_value = False
        a = FleetSyncClient(config, auth_a, transport_factory=factory, clock=clock)
        b = FleetSyncClient(config, auth_b, transport_factory=factory, clock=clock)
        await a.connect()
        await b.connect()
        factory.transports[0].feed({"type": "device_online", "data": {"device_id": "A1"}})
        await wait_for(lambda: "A1" in a.store)
        assert "A1" not in b.store
        assert a.notifications is not b.notifications
        await a.close()
        await b.close()

    @pytest.mark.asyncio
    async def test_context_manager(self, client):
        async with client:
            assert client.is_connected
        assert client.state == ConnectionState.DISCONNECTED

    def test_stats_shape(self, client):
        stats = client.get_stats()
        assert stats["state"] == "disconnected"
        assert stats["devices"] == 0
        assert stats["last_pong"] is None
