"""
Engine commands.

Every operation of the engine is a frozen dataclass tagged with its
``CommandType``. ``CommandDispatcher`` maps each type to one handler and turns
engine errors into a failed ``CommandResult``; nothing raised by a handler
crosses ``dispatch``.

``command_from_message`` parses the ``{"action": ...}`` messages sent by
extension front ends into commands.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Optional, Union

from .audit_logger import AuditLogger
from .enums import CommandType, LogLevel
from .exceptions import CommandError, InvalidInputError, PageRiskError
from .models import DomSnapshot, FormInfo, InputInfo, LinkInfo, NetworkRequest, ScriptInfo


@dataclass(frozen=True)
class AnalyzePage:
    type: ClassVar[CommandType] = CommandType.ANALYZE_PAGE
    url: str
    title: str = ""
    body_text: str = ""
    dom: Optional[DomSnapshot] = None
    requests: tuple[NetworkRequest, ...] = ()


@dataclass(frozen=True)
class ScanHtml:
    """Score an HTML document; fetched from ``url`` when ``html`` is None."""

    type: ClassVar[CommandType] = CommandType.SCAN_HTML
    url: str
    html: Optional[str] = None


@dataclass(frozen=True)
class ReportThreat:
    type: ClassVar[CommandType] = CommandType.REPORT_THREAT
    url: str
    threat_type: str
    description: str = ""
    details: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ReportSensitiveData:
    type: ClassVar[CommandType] = CommandType.REPORT_SENSITIVE_DATA
    url: str
    data_type: str
    excerpt: str = ""


@dataclass(frozen=True)
class AnalyzeText:
    type: ClassVar[CommandType] = CommandType.ANALYZE_TEXT
    text: str
    url: str = ""


@dataclass(frozen=True)
class AddEvidence:
    type: ClassVar[CommandType] = CommandType.ADD_EVIDENCE
    url: str
    evidence_type: str = "manual"
    data: str = ""
    category: Optional[str] = None
    description: str = ""
    score: Optional[int] = None


@dataclass(frozen=True)
class GetEvidence:
    type: ClassVar[CommandType] = CommandType.GET_EVIDENCE


@dataclass(frozen=True)
class ExportEvidence:
    type: ClassVar[CommandType] = CommandType.EXPORT_EVIDENCE
    directory: Optional[str] = None


@dataclass(frozen=True)
class GetThreatHistory:
    type: ClassVar[CommandType] = CommandType.GET_THREAT_HISTORY


@dataclass(frozen=True)
class ClearThreatHistory:
    type: ClassVar[CommandType] = CommandType.CLEAR_THREAT_HISTORY


@dataclass(frozen=True)
class GetAnalysisHistory:
    type: ClassVar[CommandType] = CommandType.GET_ANALYSIS_HISTORY


@dataclass(frozen=True)
class GetThreatStatus:
    type: ClassVar[CommandType] = CommandType.GET_THREAT_STATUS
    url: str


@dataclass(frozen=True)
class UpdateSettings:
    type: ClassVar[CommandType] = CommandType.UPDATE_SETTINGS
    settings: dict = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class GetSettings:
    type: ClassVar[CommandType] = CommandType.GET_SETTINGS


@dataclass(frozen=True)
class EmergencyStop:
    type: ClassVar[CommandType] = CommandType.EMERGENCY_STOP


Command = Union[
    AnalyzePage, ScanHtml, ReportThreat, ReportSensitiveData, AnalyzeText,
    AddEvidence, GetEvidence, ExportEvidence, GetThreatHistory, ClearThreatHistory,
    GetAnalysisHistory, GetThreatStatus, UpdateSettings, GetSettings, EmergencyStop,
]

Handler = Callable[[Any], Awaitable[Any]]


@dataclass
class CommandResult:
    """Typed outcome of a dispatched command."""

    ok: bool
    command: Optional[CommandType] = None
    data: Any = None
    error: Optional[PageRiskError] = None

    def to_dict(self) -> dict:
        result = {"success": self.ok}
        if self.command is not None:
            result["action"] = self.command.value
        if self.ok:
            result["data"] = self.data
        else:
            result["error"] = self.error.to_dict() if self.error else None
        return result


class CommandDispatcher:
    """Lookup table from command type to handler."""

    COMPONENT = "CommandDispatcher"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._handlers: dict[CommandType, Handler] = {}
        self._logger = logger

    def register(self, command_type: CommandType, handler: Handler) -> None:
        self._handlers[command_type] = handler

    @property
    def registered(self) -> frozenset[CommandType]:
        return frozenset(self._handlers)

    async def dispatch(self, command: Any) -> CommandResult:
        command_type = getattr(command, "type", None)
        handler = self._handlers.get(command_type) if isinstance(command_type, CommandType) else None
        if handler is None:
            return CommandResult(
                ok=False,
                command=command_type if isinstance(command_type, CommandType) else None,
                error=CommandError(
                    code="unknown_command",
                    message=f"No handler for command {type(command).__name__}",
                    details={"command": type(command).__name__},
                ),
            )

        try:
            data = await handler(command)
        except PageRiskError as e:
            self._log_failure(command_type, e)
            return CommandResult(ok=False, command=command_type, error=e)
        except Exception as e:
            self._log_failure(command_type, e)
            return CommandResult(
                ok=False,
                command=command_type,
                error=CommandError(
                    code="handler_failed",
                    message=f"{type(e).__name__}: {e}",
                    details={"action": command_type.value},
                ),
            )
        return CommandResult(ok=True, command=command_type, data=data)

    async def dispatch_message(self, message: Any) -> CommandResult:
        try:
            command = command_from_message(message)
        except PageRiskError as e:
            self._log_failure(None, e)
            return CommandResult(ok=False, error=e)
        return await self.dispatch(command)

    def _log_failure(self, command_type: Optional[CommandType], error: Exception) -> None:
        if self._logger:
            self._logger.log(
                LogLevel.WARN,
                self.COMPONENT,
                "Command failed",
                {
                    "action": command_type.value if command_type else None,
                    "error_type": type(error).__name__,
                    "error_message": str(error),
                },
            )


def _require_str(message: dict, *keys: str) -> str:
    for key in keys:
        value = message.get(key)
        if isinstance(value, str) and value:
            return value
    raise InvalidInputError(
        code="missing_field",
        message=f"Missing required field '{keys[0]}'",
        details={"action": message.get("action"), "field": keys[0]},
    )


def _optional_str(message: dict, *keys: str, default: str = "") -> str:
    for key in keys:
        value = message.get(key)
        if isinstance(value, str):
            return value
    return default


def _payload(message: dict, key: str) -> dict:
    """Nested payload object (``data``/``evidence``) or the message itself."""
    nested = message.get(key)
    return nested if isinstance(nested, dict) else message


def _objects(value: Any) -> list[dict]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def dom_from_dict(data: Any) -> Optional[DomSnapshot]:
    """Parse a DOM snapshot message; unknown or malformed parts are ignored."""
    if not isinstance(data, dict):
        return None
    return DomSnapshot(
        forms=tuple(
            FormInfo(
                action=str(f.get("action") or ""),
                method=str(f.get("method") or "get"),
                has_password=bool(f.get("hasPassword", False)),
            )
            for f in _objects(data.get("forms"))
        ),
        inputs=tuple(
            InputInfo(
                type=str(i.get("type") or ""),
                name=str(i.get("name") or ""),
                placeholder=str(i.get("placeholder") or ""),
            )
            for i in _objects(data.get("inputs"))
        ),
        links=tuple(
            LinkInfo(href=str(link.get("href") or ""), text=str(link.get("text") or ""))
            for link in _objects(data.get("links"))
        ),
        scripts=tuple(
            ScriptInfo(src=str(s.get("src") or ""), inline=str(s.get("inline") or ""))
            for s in _objects(data.get("scripts"))
        ),
    )


def _parse_analyze_page(message: dict) -> AnalyzePage:
    requests = tuple(
        NetworkRequest(url=str(r.get("url")), method=str(r.get("method") or "GET"))
        for r in _objects(message.get("requests"))
        if r.get("url")
    )
    return AnalyzePage(
        url=_require_str(message, "url"),
        title=_optional_str(message, "title"),
        body_text=_optional_str(message, "bodyText", "content"),
        dom=dom_from_dict(message.get("dom")),
        requests=requests,
    )


def _parse_report_threat(message: dict) -> ReportThreat:
    data = _payload(message, "data")
    details = {
        str(k): str(v) for k, v in data.items()
        if k not in ("action", "type", "url", "description") and isinstance(v, (str, int, float, bool))
    }
    return ReportThreat(
        url=_require_str(data, "url"),
        threat_type=_require_str(data, "type"),
        description=_optional_str(data, "description"),
        details=tuple(sorted(details.items())),
    )


def _parse_sensitive_data(message: dict) -> ReportSensitiveData:
    data = _payload(message, "data")
    excerpt = data.get("data") if data is not message else data.get("excerpt")
    return ReportSensitiveData(
        url=_require_str(data, "url"),
        data_type=_require_str(data, "type", "dataType"),
        excerpt=excerpt if isinstance(excerpt, str) else "",
    )


def _parse_add_evidence(message: dict) -> AddEvidence:
    data = _payload(message, "evidence")
    score = data.get("score")
    evidence_data = data.get("data")
    return AddEvidence(
        url=_require_str(data, "url"),
        evidence_type=_optional_str(data, "type", default="manual") or "manual",
        data=evidence_data if isinstance(evidence_data, str) else "",
        category=data.get("category") if isinstance(data.get("category"), str) else None,
        description=_optional_str(data, "description"),
        score=score if isinstance(score, int) and not isinstance(score, bool) else None,
    )


def _parse_update_settings(message: dict) -> UpdateSettings:
    settings = message.get("settings")
    if not isinstance(settings, dict):
        raise InvalidInputError(
            code="missing_field",
            message="Missing required field 'settings'",
            details={"action": message.get("action"), "field": "settings"},
        )
    return UpdateSettings(settings=dict(settings))


_PARSERS: dict[CommandType, Callable[[dict], Any]] = {
    CommandType.ANALYZE_PAGE: _parse_analyze_page,
    CommandType.SCAN_HTML: lambda m: ScanHtml(
        url=_require_str(m, "url"), html=m.get("html") if isinstance(m.get("html"), str) else None
    ),
    CommandType.REPORT_THREAT: _parse_report_threat,
    CommandType.REPORT_SENSITIVE_DATA: _parse_sensitive_data,
    CommandType.ANALYZE_TEXT: lambda m: AnalyzeText(
        text=_require_str(m, "text"), url=_optional_str(m, "url")
    ),
    CommandType.ADD_EVIDENCE: _parse_add_evidence,
    CommandType.GET_EVIDENCE: lambda m: GetEvidence(),
    CommandType.EXPORT_EVIDENCE: lambda m: ExportEvidence(
        directory=m.get("directory") if isinstance(m.get("directory"), str) else None
    ),
    CommandType.GET_THREAT_HISTORY: lambda m: GetThreatHistory(),
    CommandType.CLEAR_THREAT_HISTORY: lambda m: ClearThreatHistory(),
    CommandType.GET_ANALYSIS_HISTORY: lambda m: GetAnalysisHistory(),
    CommandType.GET_THREAT_STATUS: lambda m: GetThreatStatus(url=_require_str(m, "url")),
    CommandType.UPDATE_SETTINGS: _parse_update_settings,
    CommandType.GET_SETTINGS: lambda m: GetSettings(),
    CommandType.EMERGENCY_STOP: lambda m: EmergencyStop(),
}


def command_from_message(message: Any) -> Command:
    """
    Parse an ``{"action": ...}`` message.

    Raises:
        CommandError: If the message has no known action
        InvalidInputError: If a required field is missing
    """
    if not isinstance(message, dict):
        raise CommandError(code="invalid_message", message="Message must be an object", details={})
    action = message.get("action")
    try:
        command_type = CommandType(action)
    except ValueError:
        raise CommandError(
            code="unknown_action",
            message=f"Unknown action: {action!r}",
            details={"action": action},
        )
    return _PARSERS[command_type](message)
