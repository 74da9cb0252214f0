"""Shared fixtures for the FormPilot test suite.

@file conftest.py
@description Provides common fixtures and monkeypatch helpers for offline,
             deterministic testing. No live browser, network or API calls.
"""

from __future__ import annotations


import pytest

from formpilot.engine.types import LocatorDescriptor, Manual, ManualStep


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Ensure every test gets a clean environment.

    - Points FORMPILOT_DIR to a temp directory to avoid touching real data.
    - Creates the manuals directory a first run would find.
    """
    monkeypatch.setenv("FORMPILOT_DIR", str(tmp_path / "formpilot"))
    (tmp_path / "formpilot" / "manuals").mkdir(parents=True, exist_ok=True)


def make_manual(
    steps: list[ManualStep] | None = None,
    url_pattern: str = "*.myworkdayjobs.com/*/careers/job/*/apply",
    task_pattern: str = "apply",
    platform: str = "workday",
    health_score: float = 1.0,
    **kwargs,
) -> Manual:
    if steps is None:
        steps = [ManualStep(order=0, locator=LocatorDescriptor(css="#submit"), action="click")]
    return Manual(
        url_pattern=url_pattern,
        task_pattern=task_pattern,
        platform=platform,
        steps=steps,
        health_score=health_score,
        **kwargs,
    )


@pytest.fixture
def manual_factory():
    """Build valid manuals with overridable defaults."""
    return make_manual


@pytest.fixture
def first_name_manual():
    """fill #firstName with {{firstName}}, then click #submit."""
    return make_manual(
        steps=[
            ManualStep(order=0, locator=LocatorDescriptor(css="#firstName"), action="fill", value="{{firstName}}"),
            ManualStep(order=1, locator=LocatorDescriptor(css="#submit"), action="click"),
        ],
        url_pattern="example.com/apply",
        platform="other",
    )
