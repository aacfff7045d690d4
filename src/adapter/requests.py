"""Typed request records for each verb, validated before any browser work."""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from core.errors import InvalidArgumentsError, MissingArgumentsError
from browser.registry import validate_session_id
from browser.session import SessionOptions

LocatorArg = Union[str, dict[str, Any]]

ELEMENT_STATES = ("attached", "detached", "visible", "hidden")
LOAD_STATES = ("load", "domcontentloaded", "networkidle")

READ_MODES = {
    "text": "text",
    "html": "html",
    "markup": "html",
    "value": "value",
    "form-value": "value",
    "attribute": "attribute",
}


class VerbRequest(BaseModel):
    """
    Fields shared by every verb.

    Unknown keys are kept; they double as inline session options
    (headless, viewport, userAgent, blockResources...) for first use.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    session_id: str = Field(default="default", alias="sessionId")
    url: Optional[str] = None
    timeout: Optional[int] = Field(default=None, ge=1)
    options: Optional[SessionOptions] = None

    def check(self) -> None:
        """Cross-field rules pydantic cannot express on single fields."""
        validate_session_id(self.session_id)
        self.session_options()

    def session_options(self) -> SessionOptions:
        if self.options is not None:
            return self.options
        try:
            return SessionOptions.model_validate(self.model_extra or {})
        except PydanticValidationError as e:
            raise InvalidArgumentsError(f"Invalid session options: {e}", field="options") from e

    @staticmethod
    def _require(**fields: Any) -> None:
        missing = [name for name, value in fields.items() if value in (None, "", {})]
        if missing:
            raise MissingArgumentsError(missing)


class CreateSessionRequest(VerbRequest):
    session_id: str = Field(alias="sessionId")


class OpenRequest(VerbRequest):
    url: str
    reuse_tab: bool = Field(default=True, alias="reuseTab")
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="load", alias="waitUntil"
    )

    def check(self) -> None:
        super().check()
        self._require(url=self.url)


class ClickRequest(VerbRequest):
    locator: LocatorArg
    human_like: bool = Field(default=True, alias="humanLike")
    wait_for_navigation: Union[bool, str] = Field(default=False, alias="waitForNavigation")

    def check(self) -> None:
        super().check()
        self._require(locator=self.locator)


class FillRequest(VerbRequest):
    locator: LocatorArg
    value: Any
    human_like: bool = Field(default=True, alias="humanLike")
    clear: bool = True
    submit: bool = False

    def check(self) -> None:
        super().check()
        self._require(locator=self.locator)

    @property
    def text(self) -> str:
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


class ReadRequest(VerbRequest):
    locator: LocatorArg
    mode: Literal["text", "html", "markup", "value", "form-value", "attribute"] = Field(
        default="text", alias="as"
    )
    attribute: Optional[str] = None

    def check(self) -> None:
        super().check()
        self._require(locator=self.locator)
        if self.read_mode == "attribute":
            self._require(attribute=self.attribute)

    @property
    def read_mode(self) -> str:
        return READ_MODES[self.mode]


class WaitRequest(VerbRequest):
    locator: Optional[LocatorArg] = None
    state: Optional[str] = None
    visible: bool = False
    hidden: bool = False
    ms: Optional[int] = Field(default=None, ge=0)
    condition: Optional[str] = None

    def check(self) -> None:
        super().check()
        if not any((self.locator, self.ms, self.timeout, self.state, self.condition)):
            raise InvalidArgumentsError("Provide locator, condition, state, or ms")
        if self.locator:
            if self.state and self.state not in ELEMENT_STATES:
                raise InvalidArgumentsError(f"Unknown element state: {self.state}", field="state")
        elif self.state and self.state not in LOAD_STATES:
            raise InvalidArgumentsError(f"Unknown load state: {self.state}", field="state")

    @property
    def element_state(self) -> str:
        if self.state:
            return self.state
        if self.visible:
            return "visible"
        if self.hidden:
            return "hidden"
        return "attached"


class ScreenshotRequest(VerbRequest):
    selector: Optional[LocatorArg] = None
    full_page: bool = Field(default=False, alias="fullPage")


class OpenTabsRequest(VerbRequest):
    urls: list[str]
    switch_to: Optional[int] = Field(default=None, alias="switchTo", ge=0)
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="load", alias="waitUntil"
    )

    def check(self) -> None:
        super().check()
        if self.switch_to is not None and self.switch_to >= len(self.urls):
            raise InvalidArgumentsError(
                f"switchTo {self.switch_to} is out of range for {len(self.urls)} urls",
                field="switchTo",
            )


class SwitchTabRequest(VerbRequest):
    tab_index: int = Field(alias="tabIndex", ge=0)


class CloseTabRequest(VerbRequest):
    tab_index: int = Field(alias="tabIndex", ge=0)


class GetTabsRequest(VerbRequest):
    pass


class CloseSessionRequest(VerbRequest):
    session_id: str = Field(alias="sessionId")


class EvaluateRequest(VerbRequest):
    script: str
    args: list[Any] = Field(default_factory=list)

    def check(self) -> None:
        super().check()
        self._require(script=self.script)


def parse_request(model: type[VerbRequest], args: Any) -> VerbRequest:
    """
    Validate raw args into a request record.

    Raises MissingArgumentsError naming every absent required field, or
    InvalidArgumentsError for the first malformed one.
    """
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise InvalidArgumentsError("args must be an object", field="args")

    try:
        request = model.model_validate(args)
    except PydanticValidationError as e:
        errors = e.errors()
        missing = [
            ".".join(str(part) for part in err["loc"])
            for err in errors
            if err["type"] == "missing"
        ]
        if missing:
            raise MissingArgumentsError(missing) from e
        first = errors[0]
        field = ".".join(str(part) for part in first["loc"])
        raise InvalidArgumentsError(f"Invalid value for {field}: {first['msg']}", field=field) from e

    request.check()
    return request
