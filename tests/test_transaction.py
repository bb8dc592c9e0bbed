"""Tests de la transacción: orden, fallos, refrescos, noop, tags y rollback."""

import pytest

from lsxagent.core.catalog.catalog import Catalog
from lsxagent.core.errors import CatalogError, DevError
from lsxagent.core.transaction.report import EventStatus, ResourceStatus
from lsxagent.core.transaction.transaction import Transaction, TransactionState


def _catalog(registry, *specs):
    catalog = Catalog("web01")
    for title, params in specs:
        catalog.add_resource(registry.type("sample").create(title, params))
    return catalog


def test_each_resource_visited_once_in_order(registry, sample):
    catalog = _catalog(
        registry,
        ("app", {"value": "1", "require": ["Sample[db]", "Sample[cache]"]}),
        ("db", {"value": "1"}),
        ("cache", {"value": "1", "require": "Sample[db]"}),
    )
    transaction = catalog.apply()
    assert sample.applied == ["db", "cache", "app"]
    assert transaction.state == TransactionState.COMPLETED
    assert [r.title for r in transaction.changed()] == ["db", "cache", "app"]


def test_in_sync_resources_are_untouched(registry, sample):
    sample.state["a"] = "1"
    transaction = _catalog(registry, ("a", {"value": "1"})).apply()
    assert sample.applied == []
    assert transaction.report.resources["Sample[a]"].status == ResourceStatus.UNCHANGED


def test_failure_skips_require_dependents(registry, sample):
    sample.failing.add("db")
    catalog = _catalog(
        registry,
        ("db", {"value": "1"}),
        ("app", {"value": "1", "require": "Sample[db]"}),
        ("web", {"value": "1", "require": "Sample[app]"}),
        ("other", {"value": "1"}),
    )
    transaction = catalog.apply()
    report = transaction.report

    assert sample.applied == ["other"]
    assert report.resources["Sample[db]"].status == ResourceStatus.FAILED
    assert report.resources["Sample[app]"].status == ResourceStatus.SKIPPED
    assert report.resources["Sample[app]"].skipped_because == "Sample[db]"
    assert report.resources["Sample[web]"].status == ResourceStatus.SKIPPED
    assert report.resources["Sample[other]"].status == ResourceStatus.CHANGED
    assert transaction.failed() == ["Sample[db]"]
    assert sorted(transaction.skipped()) == ["Sample[app]", "Sample[web]"]
    (failure,) = report.resources["Sample[db]"].failures
    assert "disco lleno" in failure.message


def test_notify_dependent_is_still_applied_after_failure(registry, sample):
    sample.failing.add("conf")
    catalog = _catalog(
        registry,
        ("conf", {"value": "1", "notify": "Sample[svc]"}),
        ("svc", {"value": "1"}),
    )
    report = catalog.apply().report
    assert report.resources["Sample[svc]"].status == ResourceStatus.CHANGED
    assert sample.refreshed == []


def test_refresh_runs_once_for_many_sources(registry, sample):
    catalog = _catalog(
        registry,
        ("conf1", {"value": "1", "notify": "Sample[svc]"}),
        ("conf2", {"value": "1", "notify": "Sample[svc]"}),
        ("svc", {"value": "1", "subscribe": "Sample[conf3]"}),
        ("conf3", {"value": "1"}),
    )
    report = catalog.apply().report
    assert sample.refreshed == ["svc"]
    assert report.resources["Sample[svc]"].refreshed
    refresh_events = [e for e in report.events if e.status == EventStatus.REFRESH]
    assert len(refresh_events) == 1
    assert refresh_events[0].name == "refreshed"


def test_no_refresh_without_changes(registry, sample):
    sample.state["conf"] = "1"
    _catalog(
        registry,
        ("conf", {"value": "1", "notify": "Sample[svc]"}),
        ("svc", {"value": "1"}),
    ).apply()
    assert sample.refreshed == []


def test_noop_reports_without_changing(registry, sample):
    catalog = _catalog(registry, ("a", {"value": "1", "notify": "Sample[b]"}), ("b", {}))
    report = catalog.apply(noop=True).report
    assert sample.applied == []
    assert sample.state == {}
    statuses = [e.status for e in report.events]
    assert statuses == [EventStatus.NOOP]
    assert sample.refreshed == []


def test_noop_metaparameter(registry, sample):
    catalog = _catalog(registry, ("a", {"value": "1", "noop": "true"}), ("b", {"value": "1"}))
    catalog.apply()
    assert sample.applied == ["b"]


def test_tags_filter_resources(registry, sample):
    catalog = _catalog(registry, ("a", {"value": "1", "tag": "web"}), ("b", {"value": "1"}))
    report = catalog.apply(tags=["web"]).report
    assert sample.applied == ["a"]
    assert report.resources["Sample[b]"].status == ResourceStatus.FILTERED


def test_structural_error_touches_nothing(registry, sample):
    catalog = _catalog(
        registry,
        ("a", {"value": "1"}),
        ("b", {"value": "1", "require": "Sample[c]"}),
        ("c", {"value": "1", "require": "Sample[b]"}),
    )
    transaction = Transaction(catalog)
    with pytest.raises(CatalogError):
        transaction.evaluate()
    assert transaction.state == TransactionState.FAILED
    assert "Ciclo" in transaction.report.error
    assert sample.applied == []


def test_transaction_runs_only_once(registry):
    transaction = Transaction(_catalog(registry, ("a", {})))
    transaction.evaluate()
    with pytest.raises(DevError):
        transaction.evaluate()


def test_rollback_restores_previous_values(registry, sample):
    sample.state["a"] = "old"
    catalog = _catalog(registry, ("a", {"value": "new"}), ("b", {"value": "new"}))
    transaction = catalog.apply()
    assert sample.state == {"a": "new", "b": "new"}

    events = transaction.rollback()
    assert sample.state["a"] == "old"
    # b no existía antes; un valor ausente no se restaura
    assert sample.state["b"] == "new"
    assert [e.resource for e in events] == ["Sample[a]"]
    assert events[0].status == EventStatus.ROLLBACK
    assert transaction.report.metrics()["events_rollback"] == 1


def test_metrics(registry, sample):
    sample.failing.add("b")
    report = _catalog(registry, ("a", {"value": "1"}), ("b", {"value": "1"}), ("c", {})).apply().report
    metrics = report.metrics()
    assert metrics["total"] == 3
    assert metrics["changed"] == 1
    assert metrics["failed"] == 1
    assert metrics["unchanged"] == 1
    assert metrics["events_success"] == 1
    assert metrics["events_failure"] == 1
    assert report.duration is not None


def test_notify_logs_every_run(registry, caplog):
    catalog = Catalog("web01")
    catalog.add_resource(registry.type("notify").create("hola mundo"))
    catalog.add_resource(registry.type("notify").create("otro", {"message": "adiós", "withpath": "true"}))
    with caplog.at_level("INFO"):
        report = catalog.apply().report
    assert [e.name for e in report.events] == ["triggered", "triggered"]
    assert "hola mundo" in caplog.text
    assert "Notify[otro]: adiós" in caplog.text
