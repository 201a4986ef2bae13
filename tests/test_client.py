import asyncio
import sqlite3

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from zway_pump.api import PumpOutletAPI
from zway_pump.client import CommandAction, SessionState, ZWayClient
from zway_pump.config import PumpOutletConfig
from zway_pump.engine import PumpOutletEngine
from zway_pump.errors import AuthError, TransportError
from zway_pump.state import AccessoryStateManager

from conftest import make_device, make_payload

FRESH_TOKEN = "fresh0123456789"


def make_app(password="secret", extend_status=200, accepted=None, status_accepted=None):
    """Minimal Z-Way stand-in.

    ``accepted`` is the set of tokens Data/Run accept, ``status_accepted`` the
    set the status call accepts (defaults to the same set).
    """
    app = web.Application()
    app['accepted'] = set(accepted or ())
    app['status_accepted'] = status_accepted
    app['logins'] = 0
    app['extended'] = []
    app['commands'] = []
    app['payload'] = make_payload({7: make_device()})

    def authorized(request, tokens):
        return request.headers.get('ZWAYSession') in tokens and \
            request.cookies.get('ZWAYSession') in tokens

    async def status(request):
        tokens = app['status_accepted'] if app['status_accepted'] is not None else app['accepted']
        if authorized(request, tokens):
            return web.json_response({'data': 'OK'})
        return web.json_response({'error': 'Not logged in'}, status=401)

    async def login(request):
        app['logins'] += 1
        body = await request.json()
        if body.get('password') != password:
            return web.json_response({'error': 'Wrong login'}, status=401)
        app['accepted'].add(FRESH_TOKEN)
        resp = web.json_response({'data': {'id': 1, 'sid': FRESH_TOKEN}})
        resp.set_cookie('ZWAYSession', FRESH_TOKEN)
        return resp

    async def extend(request):
        app['extended'].append(request.match_info['tail'])
        return web.json_response({}, status=extend_status)

    async def data(request):
        if not authorized(request, app['accepted']):
            return web.json_response({'error': 'Not logged in'}, status=401)
        return web.json_response(app['payload'])

    async def run(request):
        if not authorized(request, app['accepted']):
            return web.json_response({'error': 'Not logged in'}, status=401)
        if 'commandClasses[99]' in request.path:
            return web.Response(status=500, text='Unknown command class')
        app['commands'].append(request.path)
        return web.Response(text='null')

    app.router.add_get('/ZAutomation/api/v1/status', status)
    app.router.add_post('/ZAutomation/api/v1/login', login)
    app.router.add_put('/ZAutomation/api/v1/profiles/{uid}/token/{tail}', extend)
    app.router.add_get('/ZWaveAPI/Data/0', data)
    app.router.add_post('/ZWave.zway/{tail:.*}', run)
    return app


def persist_token(db_path, token):
    ZWayClient('http://unused/', 'admin', 'secret', db_path)  # creates the schema
    conn = sqlite3.connect(db_path)
    conn.execute("INSERT OR REPLACE INTO zway_session (id, session) VALUES (1, ?)", (token,))
    conn.commit()
    conn.close()


def stored_token(db_path):
    conn = sqlite3.connect(db_path)
    row = conn.execute("SELECT session FROM zway_session WHERE id = 1").fetchone()
    conn.close()
    return row[0] if row else None


def run(coro):
    return asyncio.run(coro)


def test_missing_session_logs_in_and_persists(db_path):
    async def scenario():
        app = make_app()
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                snapshot = await client.fetch_snapshot()
            finally:
                await client.close()
            return app, client, snapshot

    app, client, snapshot = run(scenario())

    assert 7 in snapshot.devices
    assert app['logins'] == 1
    assert client.state == SessionState.VALID
    assert stored_token(db_path) == FRESH_TOKEN
    assert app['extended'] == [FRESH_TOKEN[:6] + '...']


def test_valid_persisted_session_is_reused(db_path):
    persist_token(db_path, 'persisted999')

    async def scenario():
        app = make_app(accepted={'persisted999'})
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                await client.fetch_snapshot()
            finally:
                await client.close()
            return app, client

    app, client = run(scenario())
    assert app['logins'] == 0
    assert client.session_token == 'persisted999'


def test_corrupted_persisted_session_triggers_login(db_path):
    persist_token(db_path, '   ')

    async def scenario():
        app = make_app()
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                await client.fetch_snapshot()
            finally:
                await client.close()
            return app

    assert run(scenario())['logins'] == 1


def test_rejected_persisted_session_triggers_login(db_path):
    persist_token(db_path, 'expired000')

    async def scenario():
        app = make_app()
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                await client.fetch_snapshot()
            finally:
                await client.close()
            return app, client

    app, client = run(scenario())
    assert app['logins'] == 1
    assert client.session_token == FRESH_TOKEN


def test_failed_login_raises_auth_error_without_session(db_path):
    async def scenario():
        app = make_app(password='other')
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                with pytest.raises(AuthError) as excinfo:
                    await client.fetch_snapshot()
            finally:
                await client.close()
            return client, excinfo.value

    client, error = run(scenario())
    assert error.status == 401
    assert client.state == SessionState.NO_SESSION
    assert client.session_token is None
    assert stored_token(db_path) is None


def test_rejected_login_is_not_retried_until_reset(db_path):
    async def scenario():
        app = make_app(password='other')
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                for _ in range(5):
                    with pytest.raises(AuthError):
                        await client.fetch_snapshot()
                assert await client.run_command(7, 0, 37, CommandAction.set(0)) is False
                attempts_before_reset = app['logins']

                client.reset_auth()
                with pytest.raises(AuthError):
                    await client.fetch_snapshot()
            finally:
                await client.close()
            return app, client, attempts_before_reset

    app, client, attempts_before_reset = run(scenario())
    assert attempts_before_reset == 1
    assert app['logins'] == 2
    assert client.state == SessionState.NO_SESSION


def test_poll_loop_does_not_hammer_login_with_bad_credentials(db_path):
    async def scenario():
        app = make_app(password='other')
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            config = PumpOutletConfig(host=str(server.make_url('/')), threshold_wattage=5)
            engine = PumpOutletEngine(config, client, AccessoryStateManager(db_path), PumpOutletAPI(),
                                      poll_delay=0.01)
            await engine.start()
            await asyncio.sleep(0.3)
            await engine.stop()
            return app, engine

    app, engine = run(scenario())
    assert engine.num_polls > 5
    assert app['logins'] == 1
    assert engine.discovered is False
    assert "Not logging in again" in engine.last_error


def test_extend_failure_is_not_fatal(db_path):
    async def scenario():
        app = make_app(extend_status=500)
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                await client.fetch_snapshot()
            finally:
                await client.close()
            return client

    assert run(scenario()).state == SessionState.VALID


def test_session_rejected_mid_flight_relogs_once(db_path):
    persist_token(db_path, 'stale11111')

    async def scenario():
        # status still accepts the stale token, the data API no longer does
        app = make_app(accepted=set(), status_accepted={'stale11111'})
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                snapshot = await client.fetch_snapshot()
            finally:
                await client.close()
            return app, client, snapshot

    app, client, snapshot = run(scenario())
    assert app['logins'] == 1
    assert client.session_token == FRESH_TOKEN
    assert 7 in snapshot.devices


def test_run_command_addresses_command_class(db_path):
    async def scenario():
        app = make_app()
        async with TestServer(app) as server:
            client = ZWayClient(str(server.make_url('/')), 'admin', 'secret', db_path)
            try:
                ok = await client.run_command(7, 0, 37, CommandAction.set(0))
                failed = await client.run_command(7, 0, 99, CommandAction.get(2))
            finally:
                await client.close()
            return app, ok, failed

    app, ok, failed = run(scenario())
    assert ok is True
    assert failed is False
    assert app['commands'] == ['/ZWave.zway/Run/devices[7].instances[0].commandClasses[37].Set(0)']


def test_unreachable_controller_raises_transport_error(db_path):
    async def scenario():
        client = ZWayClient(f"http://127.0.0.1:{unused_port()}/", 'admin', 'secret', db_path, timeout=5)
        try:
            with pytest.raises(TransportError):
                await client.fetch_snapshot()
            assert await client.run_command(7, 0, 37, CommandAction.set(255)) is False
        finally:
            await client.close()

    run(scenario())


def test_command_action_format():
    assert CommandAction.set(255) == "Set(255)"
    assert CommandAction.set(True) == "Set(1)"
    assert CommandAction.get("2") == "Get(2)"
