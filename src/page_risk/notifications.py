"""
Notification Router module for the page risk engine.

Provides notification channels (Telegram, Discord, Webhook) and a router that
decides whether a result is worth an alert and delivers it to every registered
channel with exponential-backoff retry.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .config import (
    DiscordConfig,
    NotificationConfig,
    Settings,
    TelegramConfig,
    WebhookConfig,
)
from .enums import LogLevel, Severity
from .exceptions import NotificationError
from .models import Finding, ScoreResult, isoformat_z, utc_now


# Threat report types that alert regardless of score
HIGH_PRIORITY_TYPES = frozenset({"insecure_form", "sensitive_request", "sensitive_data"})

_SEVERITY_ICONS = {
    Severity.LOW: "🟢",
    Severity.MEDIUM: "🟡",
    Severity.HIGH: "🟠",
    Severity.CRITICAL: "🔴",
}


@dataclass
class NotificationPayload:
    """What a channel renders into a message."""

    title: str
    message: str
    url: str = ""
    score: Optional[int] = None
    severity: Severity = Severity.HIGH
    findings: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: isoformat_z(utc_now()))

    @classmethod
    def from_score(cls, url: str, result: ScoreResult) -> "NotificationPayload":
        top = result.findings[0].severity if result.findings else Severity.HIGH
        return cls(
            title="High risk page detected",
            message=f"Risk score {result.score}/100 for {url}",
            url=url,
            score=result.score,
            severity=top,
            findings=[describe_finding(f) for f in result.findings],
        )

    @classmethod
    def from_threat(cls, url: str, threat_type: str, description: str) -> "NotificationPayload":
        return cls(
            title="Security threat detected",
            message=description or threat_type.replace("_", " "),
            url=url,
            severity=Severity.HIGH,
            findings=[threat_type],
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "message": self.message,
            "url": self.url,
            "score": self.score,
            "severity": self.severity.value,
            "findings": list(self.findings),
            "timestamp": self.timestamp,
        }


def describe_finding(finding: Finding) -> str:
    return f"[{finding.severity.value}] {finding.description} ({finding.matched_value})"


@dataclass
class NotificationResult:
    """Result of a notification delivery attempt."""

    channel: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


@runtime_checkable
class NotificationChannel(Protocol):
    """Interface of a notification channel."""

    async def send(self, payload: NotificationPayload) -> bool:
        """Deliver a payload; True on success."""
        ...

    def get_name(self) -> str:
        ...


async def _post(url: str, timeout: float, **kwargs) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.post(url, **kwargs)


class TelegramChannel:
    """Telegram Bot API channel."""

    def __init__(self, config: TelegramConfig, timeout: float = 30.0) -> None:
        if not config.bot_token or not config.chat_id:
            raise NotificationError(
                code="invalid_channel_config",
                message="Telegram channel requires bot_token and chat_id",
                details={"channel": "telegram"},
            )
        self._chat_id = config.chat_id
        self._base_url = f"https://api.telegram.org/bot{config.bot_token}"
        self._timeout = timeout

    async def send(self, payload: NotificationPayload) -> bool:
        response = await _post(
            f"{self._base_url}/sendMessage",
            self._timeout,
            json={"chat_id": self._chat_id, "text": self.format_message(payload), "parse_mode": "HTML"},
        )
        return response.status_code == 200

    def get_name(self) -> str:
        return "telegram"

    def format_message(self, payload: NotificationPayload) -> str:
        lines = [f"{_SEVERITY_ICONS[payload.severity]} <b>{payload.title}</b>", "", payload.message]
        if payload.url:
            lines.append(f"URL: <code>{payload.url}</code>")
        lines.extend(f"• {item}" for item in payload.findings[:10])
        lines.append(f"Time: {payload.timestamp}")
        return "\n".join(lines)


class DiscordChannel:
    """Discord webhook channel."""

    def __init__(self, config: DiscordConfig, timeout: float = 30.0) -> None:
        if not config.webhook_url:
            raise NotificationError(
                code="invalid_channel_config",
                message="Discord channel requires webhook_url",
                details={"channel": "discord"},
            )
        self._webhook_url = config.webhook_url
        self._timeout = timeout

    async def send(self, payload: NotificationPayload) -> bool:
        response = await _post(self._webhook_url, self._timeout, json={"embeds": [self.format_embed(payload)]})
        # Discord answers 204 No Content on success
        return response.status_code in (200, 204)

    def get_name(self) -> str:
        return "discord"

    def format_embed(self, payload: NotificationPayload) -> dict:
        fields = [{"name": "URL", "value": payload.url or "-", "inline": False}]
        if payload.score is not None:
            fields.append({"name": "Score", "value": str(payload.score), "inline": True})
        if payload.findings:
            fields.append({"name": "Findings", "value": "\n".join(payload.findings[:10]), "inline": False})
        critical = payload.severity in (Severity.HIGH, Severity.CRITICAL)
        return {
            "title": f"{_SEVERITY_ICONS[payload.severity]} {payload.title}",
            "description": payload.message,
            "color": 0xFF0000 if critical else 0xFFA500,
            "fields": fields,
            "timestamp": payload.timestamp,
        }


class WebhookChannel:
    """Generic JSON webhook channel."""

    def __init__(self, config: WebhookConfig, timeout: float = 30.0) -> None:
        if not config.url:
            raise NotificationError(
                code="invalid_channel_config",
                message="Webhook channel requires url",
                details={"channel": "webhook"},
            )
        self._url = config.url
        self._headers = dict(config.headers)
        self._timeout = timeout

    async def send(self, payload: NotificationPayload) -> bool:
        headers = {"Content-Type": "application/json", **self._headers}
        response = await _post(self._url, self._timeout, json=payload.to_dict(), headers=headers)
        return 200 <= response.status_code < 300

    def get_name(self) -> str:
        return "webhook"


class NotificationRouter:
    """
    Delivers payloads to registered channels.

    A channel that fails (returns False or raises an HTTP error) is retried
    up to ``max_retries`` times with delays ``base * 2**attempt`` capped at
    ``max_delay_seconds``. Exhausted retries are logged with every attempt.
    """

    COMPONENT = "NotificationRouter"

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        logger: Optional[AuditLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config or NotificationConfig()
        self._logger = logger
        self._sleep = sleep
        self._channels: list[NotificationChannel] = []

    @classmethod
    def from_config(cls, config: NotificationConfig, logger: Optional[AuditLogger] = None) -> "NotificationRouter":
        """Create a router with a channel for every configured section."""
        router = cls(config, logger)
        if config.telegram:
            router.register_channel(TelegramChannel(config.telegram, config.timeout_seconds))
        if config.discord:
            router.register_channel(DiscordChannel(config.discord, config.timeout_seconds))
        if config.webhook:
            router.register_channel(WebhookChannel(config.webhook, config.timeout_seconds))
        return router

    def register_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    def unregister_channel(self, channel_name: str) -> bool:
        for i, channel in enumerate(self._channels):
            if channel.get_name() == channel_name:
                self._channels.pop(i)
                return True
        return False

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    @staticmethod
    def should_notify_score(result: ScoreResult, settings: Settings) -> bool:
        return settings.notifications_enabled and result.notify_worthy

    @staticmethod
    def should_notify_threat(threat_type: str, settings: Settings) -> bool:
        return settings.notifications_enabled and threat_type in HIGH_PRIORITY_TYPES

    async def notify(self, payload: NotificationPayload) -> list[NotificationResult]:
        """Send to every channel; one failing channel does not stop the others."""
        return [await self._send_with_retry(channel, payload) for channel in self._channels]

    async def _send_with_retry(self, channel: NotificationChannel, payload: NotificationPayload) -> NotificationResult:
        name = channel.get_name()
        max_attempts = self._config.max_retries + 1
        failures = []
        last_error: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            try:
                if await channel.send(payload):
                    return NotificationResult(channel=name, success=True, attempts=attempt)
                last_error = "Channel returned failure"
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
            failures.append({"attempt": attempt, "error": last_error, "timestamp": isoformat_z(utc_now())})

            if attempt < max_attempts:
                await self._sleep(self.calculate_delay(attempt - 1))

        if self._logger:
            self._logger.log(
                LogLevel.ERROR,
                self.COMPONENT,
                f"All notification retries failed for channel '{name}'",
                {"channel": name, "url": payload.url, "total_attempts": len(failures), "attempts": failures},
            )
        return NotificationResult(channel=name, success=False, error=last_error, attempts=max_attempts)

    def calculate_delay(self, attempt: int) -> float:
        """Backoff delay for a 0-indexed attempt."""
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)
