"""Tests for message routing rules."""

import base64

import pytest

from mailpipe.config_schema import RouteMatch, RoutingRule
from mailpipe.provider.models import MessageSummary, extract_body, parse_sender
from mailpipe.sync.router import DEFAULT_ROUTE, MessageRouter


def _message(
    sender: str = "Carol <carol@example.com>",
    subject: str = "Hello",
    headers: dict[str, str] | None = None,
    body: str = "",
) -> MessageSummary:
    raw_headers = [{"name": "From", "value": sender}, {"name": "Subject", "value": subject}]
    raw_headers += [{"name": k, "value": v} for k, v in (headers or {}).items()]
    payload: dict = {"mimeType": "text/plain", "headers": raw_headers}
    if body:
        payload["body"] = {"data": base64.urlsafe_b64encode(body.encode()).decode().rstrip("=")}
    return MessageSummary.from_api({"id": "m1", "threadId": "t1", "payload": payload})


def _rule(name: str, route: str = "agent", profile: str | None = "p", **match) -> RoutingRule:
    return RoutingRule(name=name, match=RouteMatch(**match), route=route, profile=profile)


class TestMessageSummary:
    def test_parses_sender_subject_and_body(self) -> None:
        msg = _message(sender='"Carol D" <Carol@Example.com>', subject="Hi", body="line one")
        assert msg.sender_email == "carol@example.com"
        assert msg.subject == "Hi"
        assert msg.body == "line one"

    def test_parse_sender_handles_empty(self) -> None:
        assert parse_sender("") == ""

    def test_extract_body_prefers_plain_part(self) -> None:
        encoded = base64.urlsafe_b64encode(b"plain text").decode()
        payload = {
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/html", "body": {"data": "PGI-aGk8L2I-"}},
                {"mimeType": "text/plain", "body": {"data": encoded}},
            ],
        }
        assert extract_body(payload) == "plain text"


class TestMessageRouter:
    def test_no_rules_routes_to_pipeline(self) -> None:
        router = MessageRouter([])
        assert not router.needs_message
        assert router.route(_message()) == DEFAULT_ROUTE

    def test_first_matching_rule_wins(self) -> None:
        router = MessageRouter(
            [
                _rule("first", sender_domain="example.com", profile="one"),
                _rule("second", all=True, profile="two"),
            ]
        )

        decision = router.route(_message())

        assert decision.route == "agent"
        assert decision.profile == "one"
        assert decision.rule_name == "first"

    def test_all_conditions_must_match(self) -> None:
        router = MessageRouter(
            [_rule("both", sender_email="carol@example.com", subject_contains="invoice")]
        )

        assert router.route(_message(subject="Re: Invoice 42")).rule_name == "both"
        assert router.route(_message(subject="Lunch?")) == DEFAULT_ROUTE

    def test_pipeline_rule_short_circuits_later_agent_rules(self) -> None:
        router = MessageRouter(
            [
                _rule("keep", route="pipeline", profile=None, sender_domain="example.com"),
                _rule("agent", all=True),
            ]
        )

        decision = router.route(_message())

        assert decision.route == "pipeline"
        assert decision.rule_name == "keep"

    def test_empty_match_never_matches(self) -> None:
        router = MessageRouter([_rule("empty")])
        assert router.route(_message()) == DEFAULT_ROUTE

    @pytest.mark.parametrize(
        ("pattern", "expected"),
        [
            ("^bulk$", True),
            ("list", False),
            ("[unclosed", False),
        ],
    )
    def test_header_match(self, pattern: str, expected: bool) -> None:
        router = MessageRouter([_rule("hdr", header_match={"precedence": pattern})])
        decision = router.route(_message(headers={"Precedence": "BULK"}))
        assert (decision.rule_name == "hdr") is expected

    def test_header_match_missing_header(self) -> None:
        router = MessageRouter([_rule("hdr", header_match={"List-Id": ".*"})])
        assert router.route(_message()) == DEFAULT_ROUTE

    def test_forwarded_from_checks_headers_and_body(self) -> None:
        router = MessageRouter([_rule("fwd", forwarded_from="support@acme.com")])

        via_header = _message(headers={"X-Forwarded-From": "support@acme.com"})
        via_body = _message(body="---------- Forwarded message ---------\nFrom: support@acme.com")

        assert router.route(via_header).rule_name == "fwd"
        assert router.route(via_body).rule_name == "fwd"
        assert router.route(_message()) == DEFAULT_ROUTE
