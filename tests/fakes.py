"""In-memory stand-ins for a Playwright page and automation adapters.

@file fakes.py
@description Just enough of the async Playwright surface (locators, evaluate,
             goto) for the engine to run against. Elements are plain objects;
             selectors are matched by attribute, not parsed as CSS.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from formpilot.engine.adapters import ActResult, ObservedElement
from formpilot.engine.layers.dom_hand import SCAN_JS
from formpilot.engine.page_state import PAGE_SIGNALS_JS


@dataclass
class FakeElement:
    key: str = ""
    tag: str = "input"
    kind: str = "field"  # field | button | other
    input_type: str = "text"
    id: str = ""
    name: str = ""
    test_id: str = ""
    role: str = ""
    aria_label: str = ""
    label: str = ""
    placeholder: str = ""
    text: str = ""
    css: set[str] = field(default_factory=set)
    xpath: str = ""
    value: str = ""
    checked: bool = False
    visible: bool = True
    disabled: bool = False
    # Called with the page after a click; used to simulate navigation.
    on_click: Optional[Callable[["FakePage"], None]] = None
    # Applied to filled values; lets tests simulate inputs that reformat or reject.
    fill_transform: Optional[Callable[[str], str]] = None
    fill_error: Optional[str] = None
    clicks: int = 0

    def accessible_name(self) -> str:
        return self.aria_label or self.label or self.text


class FakeLocator:
    def __init__(self, page: "FakePage", predicate: Callable[[FakeElement], bool], desc: str) -> None:
        self.page = page
        self.predicate = predicate
        self.desc = desc

    def _matches(self) -> list[FakeElement]:
        return [el for el in self.page.elements if self.predicate(el)]

    def _one(self) -> FakeElement:
        found = self._matches()
        if len(found) != 1:
            raise RuntimeError(f"strict mode violation: {self.desc} resolved to {len(found)} elements")
        return found[0]

    async def count(self) -> int:
        return len(self._matches())

    async def is_visible(self) -> bool:
        found = self._matches()
        return bool(found) and found[0].visible

    async def click(self) -> None:
        el = self._one()
        el.clicks += 1
        self.page.actions.append(("click", el.key or el.id))
        if el.on_click is not None:
            el.on_click(self.page)

    async def fill(self, value: str) -> None:
        el = self._one()
        if el.fill_error:
            raise RuntimeError(el.fill_error)
        el.value = el.fill_transform(value) if el.fill_transform else value
        self.page.actions.append(("fill", el.key or el.id, value))

    async def input_value(self) -> str:
        return self._one().value

    async def select_option(self, value: Any = None, *, label: str | None = None) -> list[str]:
        el = self._one()
        el.value = label if label is not None else value
        return [el.value]

    async def check(self) -> None:
        self._one().checked = True

    async def uncheck(self) -> None:
        self._one().checked = False

    async def is_checked(self) -> bool:
        return self._one().checked

    async def hover(self) -> None:
        self._one()

    async def press(self, key: str) -> None:
        self.page.actions.append(("press", self._one().id, key))

    async def scroll_into_view_if_needed(self) -> None:
        self._one()


_ATTR_SELECTOR_RE = re.compile(r'^\[(?P<attr>[\w-]+)="(?P<value>[^"]*)"\]$')


class FakePage:
    def __init__(
        self,
        elements: list[FakeElement] | None = None,
        url: str = "https://example.com/apply",
        body_text: str = "",
        captcha: str | None = None,
    ) -> None:
        self.elements = list(elements or [])
        self.url = url
        self.body_text = body_text
        self.captcha = captcha
        self.closed = False
        self.actions: list[tuple] = []
        self.evaluate_handlers: dict[str, Callable[[Any], Any]] = {}
        self.visited: list[str] = []

    # -- Playwright surface -------------------------------------------------

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url: str) -> None:
        self.url = url
        self.visited.append(url)

    async def wait_for_load_state(self, state: str = "load", timeout: float | None = None) -> None:
        return None

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if self.closed:
            raise RuntimeError("Target page, context or browser has been closed")
        handler = self.evaluate_handlers.get(script)
        if handler is not None:
            return handler(arg)
        if script == SCAN_JS:
            return self.scan()
        if script == PAGE_SIGNALS_JS:
            return {"captcha": self.captcha, "text": self.body_text}
        return None

    def get_by_test_id(self, value: str) -> FakeLocator:
        return FakeLocator(self, lambda el: el.test_id == value, f"testId={value}")

    def get_by_role(self, role: str, name: str | None = None) -> FakeLocator:
        def pred(el: FakeElement) -> bool:
            if el.role != role:
                return False
            return name is None or el.accessible_name().lower() == name.lower()

        return FakeLocator(self, pred, f"role={role} name={name}")

    def get_by_label(self, value: str) -> FakeLocator:
        return FakeLocator(self, lambda el: value in (el.aria_label, el.label), f"label={value}")

    def get_by_text(self, value: str, exact: bool = False) -> FakeLocator:
        if exact:
            return FakeLocator(self, lambda el: el.text == value, f"text={value}")
        return FakeLocator(self, lambda el: value.lower() in (el.text or self.body_text).lower(), f"text~{value}")

    def locator(self, selector: str) -> FakeLocator:
        if selector.startswith("xpath="):
            xp = selector[len("xpath="):]
            return FakeLocator(self, lambda el: el.xpath == xp, selector)
        m = _ATTR_SELECTOR_RE.match(selector)
        if m:
            attr, value = m.group("attr"), m.group("value")
            getters = {
                "name": lambda el: el.name,
                "id": lambda el: el.id,
                "data-formpilot-id": lambda el: el.key,
                "data-testid": lambda el: el.test_id,
            }
            if attr in getters:
                get = getters[attr]
                return FakeLocator(self, lambda el: get(el) == value, selector)
        if re.match(r"^#[\w-]+$", selector):
            return FakeLocator(self, lambda el: el.id == selector[1:] or selector in el.css, selector)
        return FakeLocator(self, lambda el: selector in el.css, selector)

    # -- helpers ------------------------------------------------------------

    def scan(self) -> dict[str, Any]:
        fields, buttons = [], []
        for el in self.elements:
            if not el.visible:
                continue
            selector = f'[data-formpilot-id="{el.key}"]'
            if el.kind == "field":
                fields.append({
                    "selector": selector,
                    "type": el.input_type,
                    "name": el.name,
                    "id": el.id,
                    "automationId": "",
                    "label": el.label,
                    "ariaLabel": el.aria_label,
                    "placeholder": el.placeholder,
                    "value": ("on" if el.checked else "") if el.input_type in ("checkbox", "radio") else el.value,
                    "disabled": el.disabled,
                })
            elif el.kind == "button":
                buttons.append({
                    "selector": selector,
                    "id": el.id,
                    "automationId": "",
                    "text": el.text,
                    "disabled": el.disabled,
                })
        return {"url": self.url, "fields": fields, "buttons": buttons}

    def find(self, key: str) -> FakeElement:
        for el in self.elements:
            if el.key == key or el.id == key:
                return el
        raise KeyError(key)


def text_input(key: str, label: str = "", name: str = "", **kw: Any) -> FakeElement:
    return FakeElement(key=key, id=kw.pop("id", key), label=label, name=name or key, **kw)


def button(key: str, text: str, on_click: Callable[[FakePage], None] | None = None, **kw: Any) -> FakeElement:
    return FakeElement(
        key=key, tag="button", kind="button", input_type="submit", id=kw.pop("id", key),
        role="button", text=text, on_click=on_click, **kw,
    )


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class FakeAdapter:
    """Adapter whose act() results are scripted in advance."""

    def __init__(
        self,
        page: FakePage,
        results: list[ActResult] | None = None,
        observed: list[ObservedElement] | None = None,
        on_act: Callable[[FakePage], None] | None = None,
        act_delay_s: float = 0.0,
    ) -> None:
        self._page = page
        self.results = list(results or [])
        self.observed = list(observed or [])
        self.on_act = on_act
        self.act_delay_s = act_delay_s
        self.instructions: list[str] = []
        self.contexts: list[Any] = []
        self.observations: list[str] = []

    @property
    def page(self) -> FakePage:
        return self._page

    async def act(self, instruction: str, context: dict[str, Any] | None = None) -> ActResult:
        self.instructions.append(instruction)
        self.contexts.append(context)
        if self.act_delay_s:
            await asyncio.sleep(self.act_delay_s)
        result = self.results.pop(0) if self.results else ActResult(success=True, message="done")
        if result.success and self.on_act is not None:
            self.on_act(self._page)
        return result

    async def extract(self, instruction: str, schema: type) -> Any:
        return None

    async def observe(self, instruction: str) -> list[ObservedElement]:
        self.observations.append(instruction)
        return list(self.observed)

    async def navigate(self, url: str) -> None:
        await self._page.goto(url)


class RecordingAdapter(FakeAdapter):
    """FakeAdapter that also streams primitive actions to listeners."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.listeners: list[Any] = []

    def add_action_listener(self, listener: Any) -> None:
        self.listeners.append(listener)

    def remove_action_listener(self, listener: Any) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    async def emit(self, action: Any) -> None:
        for listener in list(self.listeners):
            await listener(action)


class FakeCostTracker:
    def __init__(self, remaining: float = 10.0) -> None:
        self.remaining = remaining
        self.modes: list[str] = []
        self.steps: list[str] = []
        self.actions = 0

    def record_action(self) -> None:
        self.actions += 1

    def record_mode_step(self, mode: str) -> None:
        self.steps.append(mode)

    def set_mode(self, mode: str) -> None:
        self.modes.append(mode)

    def get_remaining_budget(self) -> float:
        return self.remaining
