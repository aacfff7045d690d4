"""
Command Dispatcher - the verb surface of the web_enhanced adapter.

Every verb validates its args into a typed request, resolves the session
and page, runs the action under the retry policy and returns a dict that
always carries the session id.
"""

import base64
from typing import Any, Awaitable, Callable, Optional
import structlog

from core.errors import (
    AdapterError,
    CapabilityDisabledError,
    DependencyMissingError,
    InvalidArgumentsError,
    SessionCreateError,
    TabNotFoundError,
    TargetClosedError,
    ValidationError,
    WaitTimeoutError,
)
from browser.interaction import HumanInteraction
from browser.locators import parse_locator
from browser.pages import PageMultiplexer
from browser.recovery import RetryPolicy, classify_error, execute_with_retry
from browser.registry import SessionRegistry
from browser.timing import DelayProvider
from adapter.requests import (
    VerbRequest,
    CreateSessionRequest,
    OpenRequest,
    ClickRequest,
    FillRequest,
    ReadRequest,
    WaitRequest,
    ScreenshotRequest,
    OpenTabsRequest,
    SwitchTabRequest,
    CloseTabRequest,
    GetTabsRequest,
    CloseSessionRequest,
    EvaluateRequest,
    parse_request,
)

logger = structlog.get_logger()

NAMESPACE = "web_enhanced"

# Runs the caller's script body the way Function('...args', body) would
EVALUATE_WRAPPER = "([body, args]) => new Function('...args', body)(...args)"

ERROR_TYPES = (
    (WaitTimeoutError, "wait_timeout"),
    (TargetClosedError, "target_closed"),
    (TabNotFoundError, "not_found"),
    (SessionCreateError, "session_create"),
)

Handler = Callable[[Any], Awaitable[dict[str, Any]]]


def normalize_verb(verb: str) -> str:
    """Strip the adapter namespace: 'web_enhanced.click' and 'click' are the same verb."""
    prefix = f"{NAMESPACE}."
    return verb[len(prefix):] if verb.startswith(prefix) else verb


def to_adapter_error(error: Exception) -> AdapterError:
    """Wrap anything escaping a verb into the uniform adapter failure."""
    if isinstance(error, AdapterError):
        return error
    classified = classify_error(error)
    error_type = "error"
    for cls, name in ERROR_TYPES:
        if isinstance(classified, cls):
            error_type = name
            break
    return AdapterError(str(error), error_type=error_type)


class CommandDispatcher:
    """
    Verb handlers for the browser session engine.

    Args:
        registry: Session owner
        pages: Tab multiplexer over the registry
        interaction: Human-paced pointer and keyboard actions
        policy: Retry policy applied to every page action
        delays: Source of retry jitter and sleeps
        allow_evaluate: Enable the evaluate verb (runs caller script in the page)
        default_timeout_ms: Timeout for waits when the request gives none
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pages: PageMultiplexer,
        interaction: Optional[HumanInteraction] = None,
        policy: Optional[RetryPolicy] = None,
        delays: Optional[DelayProvider] = None,
        allow_evaluate: bool = False,
        default_timeout_ms: int = 30000,
    ):
        self.registry = registry
        self.pages = pages
        self.delays = delays or DelayProvider()
        self.interaction = interaction or HumanInteraction(self.delays)
        self.policy = policy or RetryPolicy()
        self.allow_evaluate = allow_evaluate
        self.default_timeout_ms = default_timeout_ms

    def get_handlers(self) -> dict[str, tuple[type[VerbRequest], Handler]]:
        """Verb name -> (request model, handler)."""
        return {
            "createSession": (CreateSessionRequest, self.create_session),
            "open": (OpenRequest, self.open),
            "click": (ClickRequest, self.click),
            "fill": (FillRequest, self.fill),
            "read": (ReadRequest, self.read),
            "wait": (WaitRequest, self.wait),
            "screenshot": (ScreenshotRequest, self.screenshot),
            "openTabs": (OpenTabsRequest, self.open_tabs),
            "switchTab": (SwitchTabRequest, self.switch_tab),
            "getTabs": (GetTabsRequest, self.get_tabs),
            "closeTab": (CloseTabRequest, self.close_tab),
            "closeSession": (CloseSessionRequest, self.close_session),
            "evaluate": (EvaluateRequest, self.evaluate),
        }

    async def dispatch(self, verb: Any, args: Any = None) -> dict[str, Any]:
        """
        Validate and execute one verb.

        Validation and dependency errors surface unchanged; everything
        else is reported as an AdapterError carrying the inner message.
        """
        if not isinstance(verb, str) or not verb:
            raise InvalidArgumentsError("Unknown verb", field="verb")

        name = normalize_verb(verb)
        entry = self.get_handlers().get(name)
        if entry is None:
            raise InvalidArgumentsError(f"Unknown verb: {verb}", field="verb")

        model, handler = entry
        request = parse_request(model, args)

        try:
            result = await handler(request)
        except (ValidationError, DependencyMissingError):
            raise
        except Exception as e:
            error = to_adapter_error(e)
            logger.warning(
                "verb_failed",
                verb=name,
                session_id=request.session_id,
                error_type=error.error_type,
                error=error.message,
            )
            raise error from e

        logger.info("verb_completed", verb=name, session_id=request.session_id)
        return result

    async def _retry(self, action: Callable[[], Awaitable[Any]], label: str) -> Any:
        return await execute_with_retry(action, policy=self.policy, delays=self.delays, label=label)

    async def _page(self, request: VerbRequest) -> Any:
        return await self.pages.get_or_create_page(
            request.session_id,
            request.url,
            timeout_ms=request.timeout,
            options=request.session_options(),
        )

    def _timeout(self, request: VerbRequest) -> int:
        return request.timeout or self.default_timeout_ms

    async def create_session(self, request: CreateSessionRequest) -> dict[str, Any]:
        existed = self.registry.get(request.session_id) is not None
        session = await self.registry.get_or_create(request.session_id, request.session_options())
        return {
            "sessionId": request.session_id,
            "created": not existed,
            "options": session.options.to_wire(),
        }

    async def open(self, request: OpenRequest) -> dict[str, Any]:
        async def action() -> dict[str, Any]:
            page = await self.pages.get_or_create_page(
                request.session_id,
                request.url,
                reuse_tab=request.reuse_tab,
                wait_until=request.wait_until,
                timeout_ms=request.timeout,
                options=request.session_options(),
            )
            return {"title": await page.title(), "url": page.url, "sessionId": request.session_id}

        return await self._retry(action, "open")

    async def click(self, request: ClickRequest) -> dict[str, Any]:
        spec = parse_locator(request.locator)
        timeout = self._timeout(request)

        async def action() -> dict[str, Any]:
            page = await self._page(request)
            locator = spec.resolve(page)

            if request.human_like:
                await self.interaction.click(page, locator, timeout)
            else:
                await self.interaction.wait_visible(locator, timeout)
                await locator.click(timeout=timeout)

            if request.wait_for_navigation:
                state = request.wait_for_navigation if isinstance(request.wait_for_navigation, str) else "load"
                await page.wait_for_load_state(state)

            return {"success": True, "sessionId": request.session_id}

        return await self._retry(action, "click")

    async def fill(self, request: FillRequest) -> dict[str, Any]:
        spec = parse_locator(request.locator)
        timeout = self._timeout(request)

        async def action() -> dict[str, Any]:
            page = await self._page(request)
            locator = spec.resolve(page)

            if request.human_like:
                await self.interaction.type_text(page, locator, request.text, clear=request.clear, timeout_ms=timeout)
            else:
                await self.interaction.wait_visible(locator, timeout)
                await locator.fill(request.text, timeout=timeout)

            if request.submit:
                await locator.press("Enter")

            return {"success": True, "sessionId": request.session_id}

        return await self._retry(action, "fill")

    async def read(self, request: ReadRequest) -> dict[str, Any]:
        spec = parse_locator(request.locator)
        timeout = self._timeout(request)
        mode = request.read_mode

        async def action() -> dict[str, Any]:
            page = await self._page(request)
            locator = spec.resolve(page)
            await locator.wait_for(state="attached", timeout=timeout)

            if mode == "text":
                value = (await locator.text_content()) or ""
            elif mode == "html":
                value = await locator.inner_html()
            elif mode == "value":
                value = await locator.input_value()
            else:
                value = await locator.get_attribute(request.attribute)

            return {"value": value, "sessionId": request.session_id}

        return await self._retry(action, "read")

    async def wait(self, request: WaitRequest) -> dict[str, Any]:
        spec = parse_locator(request.locator) if request.locator else None

        async def action() -> dict[str, Any]:
            page = await self._page(request)

            if spec:
                timeout = request.timeout or request.ms or self.default_timeout_ms
                await spec.resolve(page).wait_for(state=request.element_state, timeout=timeout)
            elif request.condition:
                await self.interaction.smart_wait(page, request.condition, self._timeout(request))
            elif request.state:
                await page.wait_for_load_state(request.state, timeout=self._timeout(request))
            else:
                await page.wait_for_timeout(request.ms or request.timeout)

            return {"success": True, "sessionId": request.session_id}

        return await self._retry(action, "wait")

    async def screenshot(self, request: ScreenshotRequest) -> dict[str, Any]:
        spec = parse_locator(request.selector) if request.selector else None
        timeout = self._timeout(request)

        async def action() -> dict[str, Any]:
            page = await self._page(request)

            if spec:
                locator = spec.resolve(page)
                await locator.wait_for(state="visible", timeout=timeout)
                image = await locator.screenshot(type="png")
            else:
                image = await page.screenshot(full_page=request.full_page, type="png", timeout=timeout)

            return {
                "screenshot": base64.b64encode(image).decode("ascii"),
                "sessionId": request.session_id,
                "fullPage": request.full_page,
            }

        return await self._retry(action, "screenshot")

    async def open_tabs(self, request: OpenTabsRequest) -> dict[str, Any]:
        options = request.session_options()
        await self.registry.get_or_create(request.session_id, options)

        tabs = []
        for position, url in enumerate(request.urls):
            # Retried per URL so a failure does not reopen earlier tabs
            async def action(url: str = url) -> Any:
                return await self.pages.get_or_create_page(
                    request.session_id,
                    url,
                    reuse_tab=False,
                    wait_until=request.wait_until,
                    timeout_ms=request.timeout,
                    options=options,
                )

            page = await self._retry(action, "openTabs")
            tab_index = self.pages.find_tab(request.session_id, page)
            tabs.append({
                "index": position,
                "tabIndex": tab_index,
                "url": page.url,
                "title": await page.title(),
            })

        if request.switch_to is not None:
            await self.pages.switch_tab(request.session_id, tabs[request.switch_to]["tabIndex"])

        return {"tabs": tabs, "sessionId": request.session_id, "activeTab": request.switch_to}

    async def switch_tab(self, request: SwitchTabRequest) -> dict[str, Any]:
        page = await self.pages.switch_tab(request.session_id, request.tab_index)
        return {
            "success": True,
            "tabIndex": request.tab_index,
            "sessionId": request.session_id,
            "url": page.url,
            "title": await page.title(),
        }

    async def get_tabs(self, request: GetTabsRequest) -> dict[str, Any]:
        return {"tabs": await self.pages.get_tab_info(request.session_id), "sessionId": request.session_id}

    async def close_tab(self, request: CloseTabRequest) -> dict[str, Any]:
        await self.pages.close_tab(request.session_id, request.tab_index)
        return {"closed": True, "tabIndex": request.tab_index, "sessionId": request.session_id}

    async def close_session(self, request: CloseSessionRequest) -> dict[str, Any]:
        existed = await self.registry.close(request.session_id)
        return {"sessionId": request.session_id, "closed": True, "existed": existed}

    async def evaluate(self, request: EvaluateRequest) -> dict[str, Any]:
        if not self.allow_evaluate:
            raise CapabilityDisabledError(
                "evaluate is disabled; enable allow_evaluate to run page scripts",
                capability="evaluate",
            )

        async def action() -> dict[str, Any]:
            page = await self._page(request)
            result = await page.evaluate(EVALUATE_WRAPPER, [request.script, request.args])
            return {"result": result, "sessionId": request.session_id}

        return await self._retry(action, "evaluate")
