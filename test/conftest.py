import asyncio

import pytest

from chatfilter import cfg_defaults
from chatfilter.config import ChatFilterConfig
from chatfilter.engine import FilterEngine
from chatfilter.filter.patterns import Origin


class FakeFetch:
    """
    Stand-in for the HTTP fetcher. Answers every request with ``status`` and ``body``, or raises
    ``exc`` if set, after ``delay`` seconds.
    """
    def __init__(self, loop, status=200, body=''):
        self.loop = loop
        self.status = status
        self.body = body
        self.exc = None
        self.delay = 0
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, url):
        self.calls.append((url, self.loop.time()))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.exc is not None:
                raise self.exc
            return self.status, (self.body if self.status == 200 else None)
        finally:
            self.active -= 1


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def config(tmp_path) -> ChatFilterConfig:
    return ChatFilterConfig(str(tmp_path / 'config.json'), defaults=cfg_defaults)


@pytest.fixture
def fetch(loop) -> FakeFetch:
    return FakeFetch(loop)


@pytest.fixture
def make_engine(config, loop, fetch):
    engines = []

    def factory(**kwargs) -> FilterEngine:
        kwargs.setdefault('fetch', fetch)
        engine = FilterEngine(config, loop, **kwargs)
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        engine.shutdown()
    loop.run_until_complete(asyncio.sleep(0.01))


@pytest.fixture
def engine(make_engine) -> FilterEngine:
    return make_engine()


def write_filter_file(engine: FilterEngine, origin: Origin, *lines: str):
    engine.files.ensure_defaults()
    engine.files.write_lines(origin, list(lines))


@pytest.fixture
def write_filter():
    return write_filter_file
