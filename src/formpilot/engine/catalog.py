"""Import manuals from a third-party action catalog.

When no local manual exists for a URL/task, the catalog may already know the
page: each entry lists elements with CSS/XPath selectors, the methods they
allow, and which elements must be handled first. An entry is converted into
an imported Manual (health 0.8) and saved locally, so later runs hit the
local store without querying the catalog again.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from formpilot.config import DEFAULTS
from formpilot.engine.errors import CatalogError
from formpilot.engine.manual_store import ManualStore
from formpilot.engine.types import ActionKind, LocatorDescriptor, Manual, ManualStep, new_manual
from formpilot.engine.url_patterns import GENERIC_PLATFORM, detect_platform, extract_domain, url_to_pattern

log = logging.getLogger(__name__)

SEARCH_PATH = "/api/actions/search"
ACTION_PATH = "/api/actions/{action_id}"
SEARCH_LIMIT = 5

METHOD_TO_ACTION: dict[str, ActionKind] = {
    "click": "click",
    "type": "fill",
    "fill": "fill",
    "select": "select",
    "check": "check",
    "uncheck": "uncheck",
    "hover": "hover",
    "scroll": "scroll",
    "navigate": "navigate",
    "press": "press",
    "wait": "wait",
}


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def map_methods(methods: list[str] | None) -> ActionKind:
    """Pick the step action for an element's allowed methods.

    Anything more specific than click wins, since most inputs also allow
    click.
    """
    if not methods:
        return "click"
    for m in methods:
        mapped = METHOD_TO_ACTION.get(m.strip().lower())
        if mapped and mapped != "click":
            return mapped
    return METHOD_TO_ACTION.get(methods[0].strip().lower(), "click")


def _dependencies(element: dict[str, Any]) -> list[str]:
    dep = element.get("depends_on")
    if not dep:
        return []
    if isinstance(dep, str):
        return [d.strip() for d in dep.split(",") if d.strip()]
    return [str(d).strip() for d in dep]


def topo_sort(elements: dict[str, dict[str, Any]]) -> list[str]:
    """Order element keys so each comes after everything it depends on.

    Unknown dependencies are ignored. Cycles are broken at the first
    revisit, keeping the rest of the order stable.
    """
    visited: set[str] = set()
    ordered: list[str] = []

    def visit(key: str) -> None:
        if key in visited:
            return
        visited.add(key)
        for dep in _dependencies(elements.get(key) or {}):
            if dep in elements:
                visit(dep)
        ordered.append(key)

    for key in elements:
        visit(key)
    return ordered


def catalog_steps(elements: dict[str, dict[str, Any]]) -> list[ManualStep]:
    """Convert catalog elements to ordered steps. Elements without selectors are skipped."""
    steps: list[ManualStep] = []
    for key in topo_sort(elements):
        el = elements.get(key)
        if not isinstance(el, dict):
            continue
        css = el.get("css_selector")
        xpath = el.get("xpath_selector")
        if not css and not xpath:
            log.debug("Catalog element %s has no selector; skipped", key)
            continue
        steps.append(
            ManualStep(
                order=len(steps),
                locator=LocatorDescriptor(css=css or None, xpath=xpath or None),
                action=map_methods(el.get("allow_methods")),
                description=el.get("description") or key,
            )
        )
    return steps


def convert_catalog_entry(
    elements: dict[str, dict[str, Any]],
    task_type: str,
    url_pattern: str,
    platform: str = GENERIC_PLATFORM,
) -> Manual | None:
    """Build an imported Manual from a catalog entry, or None if nothing is usable."""
    steps = catalog_steps(elements)
    if not steps:
        return None
    return new_manual(
        steps,
        url_pattern=url_pattern,
        task_pattern=task_type,
        platform=platform,
        source="imported",
    )


def parse_elements(raw: Any) -> dict[str, dict[str, Any]]:
    """Catalog entries carry their elements as a JSON string or an object.

    Raises:
        CatalogError: If the payload is not an object of elements.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise CatalogError(f"elements are not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise CatalogError("elements must be a JSON object keyed by element name")
    return raw


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class CatalogClient:
    """Minimal async client for the action catalog's JSON API."""

    def __init__(
        self,
        base_url: str = DEFAULTS["catalog_url"],
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        try:
            if self._client is not None:
                resp = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    resp = await client.get(url, params=params, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise CatalogError(f"catalog returned HTTP {e.response.status_code} for {path}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogError(f"catalog request failed for {path}: {e}") from e

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> list[dict[str, Any]]:
        data = await self._get(SEARCH_PATH, params={"query": query, "limit": limit})
        results = data.get("results") if isinstance(data, dict) else None
        return results if isinstance(results, list) else []

    async def get_action(self, action_id: str) -> dict[str, Any]:
        data = await self._get(ACTION_PATH.format(action_id=action_id))
        if not isinstance(data, dict):
            raise CatalogError(f"unexpected catalog payload for action {action_id}")
        return data


async def seed_from_catalog(
    url: str,
    task_type: str,
    client: CatalogClient,
    store: ManualStore,
    domain: str | None = None,
) -> Manual | None:
    """Query the catalog for *url*/*task_type* and save the top hit locally.

    Returns the saved manual, or None if nothing usable was found. Never
    raises: catalog outages must not fail the task.
    """
    domain = domain or extract_domain(url)
    try:
        results = await client.search(f"{task_type} {domain}")
        if not results:
            log.debug("Catalog has no entry for %s %s", task_type, domain)
            return None

        action_id = results[0].get("action_id")
        if not action_id:
            return None
        detail = await client.get_action(str(action_id))
        if not detail.get("elements"):
            return None

        steps = catalog_steps(parse_elements(detail["elements"]))
        if not steps:
            return None

        manual = store.save_from_catalog(
            steps,
            task_type,
            url_pattern=url_to_pattern(url),
            platform=detect_platform(url),
        )
        log.info("Seeded manual %s from catalog entry %s (%d steps)", manual.id, action_id, len(manual.steps))
        return manual
    except Exception as e:
        log.warning("Catalog seeding failed for %s: %s", url, e)
        return None
