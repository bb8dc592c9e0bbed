"""Tests del cliente: obtención, frescura, caché, lock, splay y reinicio diferido."""

import os
import time
from unittest.mock import MagicMock
from urllib.parse import quote, unquote

import pytest
import yaml

from lsxagent import __version__
from lsxagent.core.client.driver import HTTPCompilerDriver, LocalCompilerDriver
from lsxagent.core.client.facts import StaticFactSource, collect_facts
from lsxagent.core.client.master import CatalogClient
from lsxagent.core.errors import ConfigError, FetchTimeoutError, ProtocolError
from lsxagent.core.transaction.report import ResourceStatus


FACTS = {"hostname": "web01", "operatingsystem": "debian", "memoryfree": "512 MB"}


class FakeDriver:
    """Compilador remoto simulado."""

    def __init__(self, document, compiled_at=None):
        self.document = document
        self.compiled_at = compiled_at
        self.calls = 0
        self.delay = 0
        self.error = None
        self.facts = []
        self.active = 0
        self.max_active = 0

    def getconfig(self, facts, format="yaml"):
        self.calls += 1
        self.facts.append(facts)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return quote(self.document)
        finally:
            self.active -= 1

    def freshness(self):
        return self.compiled_at if self.compiled_at is not None else time.time() + 1000


def _document(*resources, classes=("base",)):
    return yaml.safe_dump({"name": "web01", "version": "1", "classes": list(classes), "resources": list(resources)})


def _sample(title, **parameters):
    parameters.setdefault("value", "1")
    return {"type": "sample", "title": title, "parameters": parameters}


def _client(settings, registry, document, facts=None, **kwargs):
    driver = FakeDriver(document)
    sleeps = []
    client = CatalogClient(
        settings,
        driver=driver,
        registry=registry,
        fact_source=StaticFactSource(FACTS if facts is None else facts),
        sleep=sleeps.append,
        **kwargs,
    )
    client.sleeps = sleeps
    return client, driver


def test_run_applies_and_caches(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a"), _sample("b", require="Sample[a]")))
    report = client.run()

    assert sample.applied == ["a", "b"]
    assert report.resources["Sample[b]"].status == ResourceStatus.CHANGED
    assert driver.calls == 1
    assert client.cachefile == settings.localconfig.with_name("localconfig.yaml")
    assert yaml.safe_load(client.cachefile.read_text())["resources"][0]["title"] == "a"
    assert list(client.cachefile.parent.glob("*.tmp")) == []
    assert settings.classfile.read_text() == "base\n"
    assert client.catalog is None
    assert not client.lockfile.locked()
    assert client.compile_time is not None

    state = yaml.safe_load(settings.statefile.read_text())
    assert state["configuration"]["facts"]["hostname"] == "web01"
    assert state["configuration"]["compile_time"] == client.compile_time


def test_facts_sent_percent_encoded(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    (sent,) = driver.facts
    assert "%" in sent
    facts = yaml.safe_load(unquote(sent))
    assert facts["clientversion"] == __version__
    assert facts["environment"] == "production"


def test_lock_held_means_nothing_applied(settings, registry, sample):
    settings.lockfile.parent.mkdir(parents=True)
    settings.lockfile.write_text(str(os.getppid()))
    client, driver = _client(settings, registry, _document(_sample("a")))

    assert client.run() is None
    assert sample.applied == []
    assert driver.calls == 0
    assert settings.lockfile.read_text() == str(os.getppid())


def test_disable_and_enable(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    assert client.disable()
    assert client.running()
    assert client.run() is None
    assert sample.applied == []

    assert client.enable()
    assert client.run() is not None
    assert sample.applied == ["a"]


def test_fresh(settings, registry):
    client, driver = _client(settings, registry, _document())
    assert not client.fresh(collect_facts(client.fact_source, "production"))

    client.run()
    facts = client.facts()
    driver.compiled_at = client.compile_time
    assert client.fresh(facts)

    # los facts dinámicos no invalidan la caché
    assert client.fresh({**facts, "memoryfree": "100 MB", "swapfree": "0"})
    assert not client.fresh({**facts, "hostname": "web02"})

    driver.compiled_at = client.compile_time + 5
    assert not client.fresh(facts)

    driver.compiled_at = client.compile_time
    client.settings.ignorecache = True
    assert not client.fresh(facts)


def test_fresh_catalog_comes_from_cache(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    driver.compiled_at = client.compile_time
    sample.state.clear()

    client.run()
    assert driver.calls == 1
    assert sample.applied == ["a", "a"]


def test_fetch_failure_uses_cache(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    sample.state.clear()

    driver.error = ProtocolError("compilador caído")
    report = client.run()
    assert driver.calls == 2
    assert report is not None
    assert sample.applied == ["a", "a"]


def test_fetch_timeout_uses_cache(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    sample.state.clear()

    settings.configtimeout = 1
    driver.delay = 1.5
    report = client.run()
    assert report is not None
    assert sample.applied == ["a", "a"]


def test_fetch_timeout_without_cache_on_failure(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    sample.state.clear()

    settings.usecacheonfailure = False
    settings.configtimeout = "1"
    driver.delay = 1.5
    assert client.run() is None
    assert sample.applied == ["a"]
    assert client.catalog is None


def test_invalid_catalog_is_not_cached(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a", require="Sample[missing]")))
    assert client.run() is None
    assert not client.cachefile.exists()
    assert sample.applied == []
    assert client.compile_time is None


def test_malformed_response_falls_back_to_cache(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    sample.state.clear()

    driver.document = "- no\n- es\n- un catálogo\n"
    assert client.run() is not None
    assert sample.applied == ["a", "a"]


def test_empty_facts(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")), facts={})
    with pytest.raises(ProtocolError):
        client.getconfig()
    assert client.run() is None
    assert driver.calls == 0
    assert not client.lockfile.locked()


def test_local_mode_writes_no_classfile(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")), local=True)
    client.run()
    assert sample.applied == ["a"]
    assert not settings.classfile.exists()


def test_splay_time_is_persisted(settings, registry):
    settings.splay = True
    settings.splaylimit = 10
    client, driver = _client(settings, registry, _document())
    client.run()
    (first,) = client.sleeps
    assert 0 <= first < 10

    other, _ = _client(settings, registry, _document())
    other.run()
    assert other.sleeps == [first]


def test_corrupt_state_is_recovered(settings, registry, sample):
    settings.statefile.parent.mkdir(parents=True)
    settings.statefile.write_text("{{{ roto")
    client, driver = _client(settings, registry, _document(_sample("a")))
    assert client.run() is not None
    assert "configuration" in yaml.safe_load(settings.statefile.read_text())


def test_restart_is_deferred_until_run_ends(settings, registry):
    restarts = []

    class RestartingFacts(StaticFactSource):
        def collect(self):
            client.restart()
            assert restarts == []
            return dict(FACTS)

    client = CatalogClient(
        settings, driver=FakeDriver(_document()), registry=registry,
        fact_source=RestartingFacts(), restart_hook=lambda: restarts.append(client.lockfile.locked()),
    )
    client.run()
    assert restarts == [False]
    assert not client.restart_requested


def test_restart_outside_a_run_is_immediate(settings, registry):
    restarts = []
    client, _ = _client(settings, registry, _document(), restart_hook=lambda: restarts.append(True))
    client.restart()
    assert restarts == [True]


def test_timeout_parsing(settings, registry):
    client, _ = _client(settings, registry, _document())
    assert client.timeout() == 120
    settings.configtimeout = "30"
    assert client.timeout() == 30
    settings.configtimeout = "treinta"
    with pytest.raises(ConfigError):
        client.timeout()


def test_dynamic_facts(settings, registry):
    client, _ = _client(settings, registry, _document())
    assert client.dynamic_facts() == ["memorysize", "memoryfree", "swapsize", "swapfree"]
    settings.dynamicfacts = "Uptime, load"
    assert client.dynamic_facts() == ["uptime", "load"]


def test_collect_facts():
    facts = collect_facts(StaticFactSource({"OS": "Debian", "environment": "staging"}), "production", downcase=True)
    assert facts == {"OS": "debian", "environment": "staging", "clientversion": __version__}
    assert collect_facts(StaticFactSource({}), "production") == {}


def test_client_without_server_needs_a_driver(tmp_path):
    from lsxagent.core.settings import AgentSettings

    with pytest.raises(ConfigError):
        CatalogClient(AgentSettings(statedir=tmp_path))


def test_downloaded_catalog_is_not_from_cache(settings, registry):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.getconfig()
    assert driver.calls == 1
    assert not client.catalog.from_cache
    client.clear()


def test_cache_round_trip(settings, registry):
    client, driver = _client(settings, registry, _document(_sample("a"), _sample("b", require="Sample[a]")))
    client.run()
    assert client.catalog is None

    assert client.use_cached_config()
    assert client.catalog.from_cache
    assert [str(r.ref) for r in client.catalog.topsort()] == ["Sample[a]", "Sample[b]"]
    client.clear()


def test_fresh_catalog_is_marked_from_cache(settings, registry):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    driver.compiled_at = client.compile_time

    client.getconfig()
    assert driver.calls == 1
    assert client.catalog.from_cache
    client.clear()


def test_fetch_timeout_marks_catalog_from_cache(settings, registry):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()

    settings.configtimeout = 1
    driver.delay = 1.5
    client.getconfig()
    assert client.catalog is not None
    assert client.catalog.from_cache
    client.clear()


def test_unexpected_compiler_error_uses_cache(settings, registry, sample):
    client, driver = _client(settings, registry, _document(_sample("a")))
    client.run()
    sample.state.clear()

    driver.error = RuntimeError("compilador roto")
    report = client.run()
    assert report is not None
    assert sample.applied == ["a", "a"]


def test_local_compile_error_uses_cache(settings, registry, sample):
    compiled = []

    def compile(node, facts):
        compiled.append(node)
        if len(compiled) > 1:
            raise ValueError("plantilla rota")
        return _document(_sample("a"))

    client = CatalogClient(
        settings, driver=LocalCompilerDriver("web01", compile), registry=registry,
        fact_source=StaticFactSource(FACTS), local=True,
    )
    client.run()
    sample.state.clear()

    assert client.run() is not None
    assert compiled == ["web01", "web01"]
    assert sample.applied == ["a", "a"]


def test_http_compiler_unexpected_error_uses_cache(settings, registry, sample):
    ok = MagicMock(status_code=200, text=quote(_document(_sample("a"))))
    session = MagicMock()
    session.get.side_effect = [ok, RuntimeError("socket roto"), RuntimeError("socket roto")]
    driver = HTTPCompilerDriver(settings.server, settings.node_name, timeout=5, session=session)
    client = CatalogClient(settings, driver=driver, registry=registry, fact_source=StaticFactSource(FACTS))

    client.run()
    sample.state.clear()
    report = client.run()

    assert report is not None
    assert sample.applied == ["a", "a"]
    # catálogo, freshness y catálogo otra vez
    assert session.get.call_count == 3


def test_one_fetch_in_flight_even_after_timeout(settings, registry):
    # una descarga lenta de otro test puede seguir en curso
    assert CatalogClient._fetch_lock.acquire(timeout=5)
    CatalogClient._fetch_lock.release()
    client, driver = _client(settings, registry, _document(_sample("a")))
    settings.configtimeout = 1
    driver.delay = 2.5
    facts = client.facts()

    with pytest.raises(FetchTimeoutError):
        client.get_remote_config(facts)
    # la primera descarga sigue en curso: la segunda no arranca
    with pytest.raises(FetchTimeoutError):
        client.get_remote_config(facts)
    assert driver.calls == 1
    assert driver.max_active == 1

    assert CatalogClient._fetch_lock.acquire(timeout=5)
    CatalogClient._fetch_lock.release()
    driver.delay = 0
    assert unquote(client.get_remote_config(facts)) == driver.document
    assert driver.max_active == 1
