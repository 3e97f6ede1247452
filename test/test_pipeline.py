import asyncio
import os
import socket

import aiohttp
import pytest
from aiohttp import web

from chatfilter.filter import sources as filter_sources
from chatfilter.filter.patterns import Origin
from chatfilter.filter.pipeline import RefreshResult
from chatfilter.filter.sources import DEFAULT_HEADERS, FETCH_ERRORS, FilterFiles, fetch_remote, \
    split_lines


def sources(engine, origin):
    return [p.source for p in engine.store.get(origin)]


class TestFilterFiles:
    def test_ensure_defaults(self, tmp_path):
        files = FilterFiles(str(tmp_path / 'filters'))
        files.ensure_defaults()
        for origin in Origin:
            assert files.read_lines(origin) == DEFAULT_HEADERS[origin]

    def test_ensure_defaults_keeps_existing(self, tmp_path):
        files = FilterFiles(str(tmp_path))
        files.write_lines(Origin.CUSTOM, ['spam'])
        files.ensure_defaults()
        assert files.read_lines(Origin.CUSTOM) == ['spam']
        assert files.read_lines(Origin.REMOTE) == DEFAULT_HEADERS[Origin.REMOTE]

    def test_write_lines(self, tmp_path):
        files = FilterFiles(str(tmp_path))
        files.write_lines(Origin.REMOTE, ['a', 'b'])
        with open(files.path(Origin.REMOTE), 'rb') as f:
            assert f.read() == b'a\nb\n'

    def test_read_lines_only_splits_on_newlines(self, tmp_path):
        files = FilterFiles(str(tmp_path))
        with open(files.path(Origin.CUSTOM), 'w', encoding='utf-8', newline='') as f:
            f.write('buy\u2028items\r\nspam\x0ceggs\rham\n')
        assert files.read_lines(Origin.CUSTOM) == ['buy\u2028items', 'spam\x0ceggs', 'ham']


@pytest.mark.parametrize('text, expect', (
    ('', []),
    ('a', ['a']),
    ('a\n', ['a']),
    ('a\n\n', ['a', '']),
    ('a\r\nb\rc\nd', ['a', 'b', 'c', 'd']),
    ('a\x85b\u2029c\x1ed\x0be', ['a\x85b\u2029c\x1ed\x0be']),
))
def test_split_lines(text, expect):
    assert split_lines(text) == expect


class TestLoadCustom:
    def test_load(self, engine, write_filter):
        write_filter(engine, Origin.CUSTOM, '# my filters', '', 'buy.*items', 'spam')
        assert engine.pipeline.load_custom() == 2
        assert sources(engine, Origin.CUSTOM) == ['buy.*items', 'spam']

    def test_missing_file_installs_empty(self, engine, write_filter):
        write_filter(engine, Origin.CUSTOM, 'spam')
        engine.pipeline.load_custom()
        os.remove(engine.files.path(Origin.CUSTOM))
        assert engine.pipeline.load_custom() == 0
        assert sources(engine, Origin.CUSTOM) == []

    def test_unreadable_keeps_previous(self, engine, write_filter):
        write_filter(engine, Origin.CUSTOM, 'spam')
        engine.pipeline.load_custom()
        with open(engine.files.path(Origin.CUSTOM), 'wb') as f:
            f.write(b'\xff\xfe\xfa broken')
        assert engine.pipeline.load_custom() is None
        assert sources(engine, Origin.CUSTOM) == ['spam']

    def test_strict_keeps_previous(self, engine, write_filter):
        write_filter(engine, Origin.CUSTOM, 'spam')
        engine.pipeline.load_custom()
        engine.settings.strict_patterns = True
        write_filter(engine, Origin.CUSTOM, 'eggs', '(unclosed')
        assert engine.pipeline.load_custom() is None
        assert sources(engine, Origin.CUSTOM) == ['spam']

    def test_lenient_skips_bad_line(self, engine, write_filter):
        write_filter(engine, Origin.CUSTOM, 'eggs', '(unclosed', 'ham')
        assert engine.pipeline.load_custom() == 2
        assert sources(engine, Origin.CUSTOM) == ['eggs', 'ham']


class TestLoadCachedRemote:
    def test_load(self, engine, write_filter):
        write_filter(engine, Origin.REMOTE, '# Remote Filters', 'discord\\.gg')
        assert engine.pipeline.load_cached_remote() == 1
        assert sources(engine, Origin.REMOTE) == ['discord\\.gg']

    def test_missing(self, engine):
        assert engine.pipeline.load_cached_remote() is None
        assert sources(engine, Origin.REMOTE) == []


class TestRefreshRemote:
    def test_success(self, engine, fetch, loop):
        engine.files.ensure_defaults()
        fetch.body = '# list\nspam\r\n\neggs\n'
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is True
        assert fetch.calls[0][0] == engine.settings.remote_url
        assert sources(engine, Origin.REMOTE) == ['spam', 'eggs']
        assert engine.files.read_lines(Origin.REMOTE) == ['# list', 'spam', '', 'eggs']

    def test_unicode_line_separators_stay_in_pattern(self, engine, fetch, loop):
        fetch.body = 'buy\u2028items\nspam\x85eggs\n'
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is True
        assert sources(engine, Origin.REMOTE) == ['buy\u2028items', 'spam\x85eggs']
        assert engine.files.read_lines(Origin.REMOTE) == ['buy\u2028items', 'spam\x85eggs']

    def test_uses_configured_url(self, engine, fetch, loop):
        engine.settings.remote_url = 'https://example.com/list.txt'
        loop.run_until_complete(engine.pipeline.refresh_remote())
        assert fetch.calls[-1][0] == 'https://example.com/list.txt'

    def test_http_error_keeps_previous(self, engine, fetch, loop, write_filter):
        write_filter(engine, Origin.REMOTE, 'spam')
        engine.pipeline.load_cached_remote()
        fetch.status = 500
        fetch.body = 'eggs'
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is False
        assert sources(engine, Origin.REMOTE) == ['spam']
        assert engine.files.read_lines(Origin.REMOTE) == ['spam']

    def test_non_200_success_status_rejected(self, engine, fetch, loop):
        fetch.status = 204
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is False
        assert sources(engine, Origin.REMOTE) == []

    @pytest.mark.parametrize('exc', (
        aiohttp.ClientConnectionError("refused"),
        asyncio.TimeoutError(),
        aiohttp.InvalidURL("not a url"),
    ))
    def test_fetch_error_keeps_previous(self, engine, fetch, loop, write_filter, exc):
        write_filter(engine, Origin.REMOTE, 'spam')
        engine.pipeline.load_cached_remote()
        fetch.exc = exc
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is False
        assert sources(engine, Origin.REMOTE) == ['spam']

    def test_strict_invalid_keeps_previous(self, engine, fetch, loop, write_filter):
        write_filter(engine, Origin.REMOTE, 'spam')
        engine.pipeline.load_cached_remote()
        engine.settings.strict_patterns = True
        fetch.body = 'eggs\n(unclosed\n'
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is False
        assert sources(engine, Origin.REMOTE) == ['spam']

    def test_disabled_during_fetch_discards(self, engine, fetch, loop):
        fetch.body = 'spam'
        fetch.delay = 0.1

        async def run():
            refresh = loop.create_task(engine.pipeline.refresh_remote())
            await asyncio.sleep(0.05)
            engine.settings.use_remote_filters = False
            return await refresh

        assert loop.run_until_complete(run()) is False
        assert sources(engine, Origin.REMOTE) == []

    def test_concurrent_refreshes_serialised(self, engine, fetch, loop):
        fetch.body = 'spam'
        fetch.delay = 0.05

        async def run():
            return await asyncio.gather(*(engine.pipeline.refresh_remote() for _ in range(3)))

        assert loop.run_until_complete(run()) == [True, True, True]
        assert len(fetch.calls) == 3
        assert fetch.max_active == 1

    def test_save_failure_still_installs(self, engine, fetch, loop, mocker):
        fetch.body = 'spam'
        mocker.patch.object(engine.files, 'write_lines', side_effect=OSError("disk full"))
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is True
        assert sources(engine, Origin.REMOTE) == ['spam']


class TestRefresh:
    def test_both_legs(self, engine, fetch, loop, write_filter):
        write_filter(engine, Origin.CUSTOM, 'buy.*items')
        fetch.body = 'spam'
        result = loop.run_until_complete(engine.pipeline.refresh())
        assert isinstance(result, RefreshResult)
        assert result.custom == 1
        assert result.remote is True
        assert result.ok
        assert engine.store.counts() == {Origin.CUSTOM: 1, Origin.REMOTE: 1}

    def test_remote_failure_does_not_block_custom(self, engine, fetch, loop, write_filter):
        write_filter(engine, Origin.CUSTOM, 'buy.*items')
        fetch.status = 500
        result = loop.run_until_complete(engine.pipeline.refresh())
        assert result.custom == 1
        assert result.remote is False
        assert not result.ok
        assert sources(engine, Origin.CUSTOM) == ['buy.*items']

    def test_disabled_legs_skipped(self, engine, fetch, loop, write_filter):
        write_filter(engine, Origin.CUSTOM, 'buy.*items')
        engine.settings.use_custom_filters = False
        engine.settings.use_remote_filters = False
        result = loop.run_until_complete(engine.pipeline.refresh())
        assert result.custom is None
        assert result.remote is None
        assert result.ok
        assert fetch.calls == []
        assert engine.store.counts() == {Origin.CUSTOM: 0, Origin.REMOTE: 0}

    def test_starts_auto_refresh(self, engine, loop):
        assert not engine.auto_refresh.is_running
        loop.run_until_complete(engine.pipeline.refresh())
        assert engine.auto_refresh.is_running
        assert engine.auto_refresh.interval == 5

    def test_engine_start(self, engine, fetch, loop, write_filter):
        write_filter(engine, Origin.CUSTOM, 'buy.*items')
        fetch.body = 'spam'
        result = loop.run_until_complete(engine.start())
        assert engine.initialized
        assert result.custom == 1 and result.remote is True


@pytest.fixture
def http_server(loop):
    """ Serves one handler at ``/filter.txt`` on 127.0.0.1; returns the URL. """
    runners = []

    def serve(handler) -> str:
        async def start():
            app = web.Application()
            app.router.add_get('/filter.txt', handler)
            runner = web.AppRunner(app)
            await runner.setup()
            runners.append(runner)
            await web.TCPSite(runner, '127.0.0.1', 0).start()
            host, port = runner.addresses[0][:2]
            return 'http://{}:{:d}/filter.txt'.format(host, port)
        return loop.run_until_complete(start())

    yield serve

    for runner in runners:
        loop.run_until_complete(runner.cleanup())


class TestFetchRemote:
    def test_ok(self, http_server, loop):
        async def handler(request):
            return web.Response(text='# list\nspam\n')
        url = http_server(handler)
        assert loop.run_until_complete(fetch_remote(url)) == (200, '# list\nspam\n')

    @pytest.mark.parametrize('status', (204, 404, 500))
    def test_other_status_has_no_body(self, http_server, loop, status):
        async def handler(request):
            if status == 204:
                return web.Response(status=status)
            return web.Response(status=status, text='spam')
        url = http_server(handler)
        assert loop.run_until_complete(fetch_remote(url)) == (status, None)

    def test_read_timeout(self, http_server, loop, mocker):
        async def handler(request):
            await asyncio.sleep(0.5)
            return web.Response(text='spam')
        mocker.patch.object(filter_sources, 'REMOTE_READ_TIMEOUT', 0.1)
        url = http_server(handler)
        with pytest.raises(asyncio.TimeoutError) as exc_info:
            loop.run_until_complete(fetch_remote(url))
        assert isinstance(exc_info.value, FETCH_ERRORS)

    def test_connection_refused(self, loop):
        with socket.socket() as sock:
            sock.bind(('127.0.0.1', 0))
            port = sock.getsockname()[1]
        url = 'http://127.0.0.1:{:d}/filter.txt'.format(port)
        with pytest.raises(FETCH_ERRORS):
            loop.run_until_complete(fetch_remote(url))

    def test_timeouts(self, mocker, loop):
        session = mocker.patch.object(filter_sources.aiohttp, 'ClientSession')
        session.side_effect = RuntimeError("stop")
        with pytest.raises(RuntimeError):
            loop.run_until_complete(fetch_remote('http://127.0.0.1/filter.txt'))
        timeout = session.call_args.kwargs['timeout']
        assert (timeout.sock_connect, timeout.sock_read) == (5, 5)
        assert timeout.total is None

    def test_refresh_with_http_fetch(self, make_engine, http_server, loop):
        async def handler(request):
            return web.Response(text='# list\nbuy.*items\n')
        engine = make_engine(fetch=fetch_remote)
        engine.files.ensure_defaults()
        engine.settings.remote_url = http_server(handler)
        assert loop.run_until_complete(engine.pipeline.refresh_remote()) is True
        assert sources(engine, Origin.REMOTE) == ['buy.*items']
        assert engine.files.read_lines(Origin.REMOTE) == ['# list', 'buy.*items']
