"""Message routing: classify pipeline vs. agent profile.

Rules come from config.yaml under `routing.rules` and are evaluated in
order; the first rule whose conditions all match decides the route. A
message no rule matches goes to the classify pipeline.

Header patterns are user-supplied regexes matched against untrusted mail,
so they run through the `regex` library with a timeout to bound ReDoS.

Usage:
    from mailpipe.sync.router import MessageRouter

    router = MessageRouter(config.routing.rules)
    decision = router.route(MessageSummary.from_api(message))
    if decision.route == "agent":
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import regex

from mailpipe.core.logging import get_logger

if TYPE_CHECKING:
    from mailpipe.config_schema import RouteMatch, RoutingRule
    from mailpipe.provider.models import MessageSummary

logger = get_logger(__name__)

# Seconds per header pattern match
REGEX_TIMEOUT = 0.5


@dataclass(frozen=True, slots=True)
class RouteDecision:
    """Where a new inbox message goes.

    Attributes:
        route: 'pipeline' (classify job) or 'agent' (agent_process job)
        profile: Agent profile name for agent routes
        rule_name: Name of the matching rule, None for the default route
    """

    route: Literal["pipeline", "agent"] = "pipeline"
    profile: str | None = None
    rule_name: str | None = None


DEFAULT_ROUTE = RouteDecision()


class MessageRouter:
    def __init__(self, rules: list[RoutingRule] | None = None):
        self.rules = list(rules or [])

    @property
    def needs_message(self) -> bool:
        """False when no rule exists, so callers can skip fetching the message."""
        return bool(self.rules)

    def route(self, message: MessageSummary) -> RouteDecision:
        for rule in self.rules:
            if self._matches(rule.match, message):
                logger.debug(
                    "message_routed",
                    message_id=message.message_id,
                    rule=rule.name,
                    route=rule.route,
                )
                return RouteDecision(route=rule.route, profile=rule.profile, rule_name=rule.name)
        return DEFAULT_ROUTE

    def _matches(self, match: RouteMatch, message: MessageSummary) -> bool:
        conditions = match.model_dump(exclude_none=True)
        if not conditions:
            return False

        sender = message.sender_email.lower()

        for key, value in conditions.items():
            if key == "all":
                ok = value is True
            elif key == "sender_email":
                ok = sender == value.lower()
            elif key == "sender_domain":
                ok = bool(sender) and sender.rsplit("@", 1)[-1] == value.lower()
            elif key == "subject_contains":
                ok = value.lower() in message.subject.lower()
            elif key == "header_match":
                ok = all(
                    self._header_matches(_header(message, name), pattern)
                    for name, pattern in value.items()
                )
            elif key == "forwarded_from":
                ok = self._forwarded_from(message, value)
            else:
                ok = False

            if not ok:
                return False
        return True

    @staticmethod
    def _header_matches(header_value: str | None, pattern: str) -> bool:
        if not header_value:
            return False
        try:
            return (
                regex.search(pattern, header_value, regex.IGNORECASE, timeout=REGEX_TIMEOUT)
                is not None
            )
        except TimeoutError:
            logger.warning("route_pattern_timeout", pattern=pattern[:100])
            return False
        except regex.error as e:
            logger.warning("route_pattern_invalid", pattern=pattern[:100], error=str(e))
            return False

    @staticmethod
    def _forwarded_from(message: MessageSummary, expected: str) -> bool:
        return any(
            expected in (text or "")
            for text in (
                _header(message, "X-Forwarded-From"),
                _header(message, "Reply-To"),
                message.sender_email,
                message.body,
            )
        )


def _header(message: MessageSummary, name: str) -> str | None:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in message.headers.items():
        if key.lower() == wanted:
            return value
    return None
