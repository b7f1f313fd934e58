"""Tests for the control-thread dashboard, queue and console renderer."""

from __future__ import annotations

import io
import threading

from brewdash.dashboard import CatalogSnapshot, Dashboard
from brewdash.dispatch import ControlQueue
from brewdash.models import Package, PackageKind
from brewdash.query import FilterType
from brewdash.render import ConsoleRenderer, StatusLevel

from tests.conftest import RecordingRenderer

PACKAGES = (
    Package(name="bat", kind=PackageKind.FORMULA, installed=True, outdated=True, analytics_rank=4),
    Package(name="iterm2", kind=PackageKind.CASK),
    Package(name="wget", kind=PackageKind.FORMULA, installed=True),
)


def test_publish_reruns_query(dashboard: Dashboard, renderer: RecordingRenderer) -> None:
    dashboard.toggle_filter(FilterType.INSTALLED)
    dashboard.publish(CatalogSnapshot(PACKAGES))

    result = renderer.results[-1]
    assert [p.name for p in result.packages] == ["bat", "wget"]
    assert result.total == 3


def test_manifest_mode_shows_manifest_packages(control: ControlQueue) -> None:
    renderer = RecordingRenderer()
    dashboard = Dashboard(renderer, control, manifest_mode=True)

    dashboard.publish(CatalogSnapshot(PACKAGES))
    assert renderer.results[-1].total == 0

    dashboard.publish(CatalogSnapshot(PACKAGES, (PACKAGES[2],)))
    assert [p.name for p in renderer.results[-1].packages] == ["wget"]


def test_worker_updates_apply_in_order_on_control_thread(
    dashboard: Dashboard, renderer: RecordingRenderer, control: ControlQueue
) -> None:
    def worker() -> None:
        for i in range(5):
            dashboard.post_log(f"line {i}")
        dashboard.post_status(StatusLevel.SUCCESS, "done")

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()

    assert renderer.lines == []
    assert control.drain() == 6
    assert renderer.lines == [f"line {i}" for i in range(5)]
    assert renderer.statuses == [(StatusLevel.SUCCESS, "done")]


def test_detail_finds_package(dashboard: Dashboard, renderer: RecordingRenderer) -> None:
    dashboard.publish(CatalogSnapshot(PACKAGES))

    assert dashboard.detail("wget").name == "wget"
    assert dashboard.detail("missing") is None
    assert renderer.details[-1] is None


def test_console_renderer_counter() -> None:
    out = io.StringIO()
    renderer = ConsoleRenderer(out=out, err=io.StringIO(), live=False)
    dashboard = Dashboard(renderer, ControlQueue())

    dashboard.publish(CatalogSnapshot(PACKAGES))
    dashboard.toggle_filter(FilterType.OUTDATED)
    assert out.getvalue() == ""

    renderer.print_latest()
    text = out.getvalue()
    assert "bat" in text
    assert "wget" not in text
    assert "Outdated: 1/3 packages" in text
