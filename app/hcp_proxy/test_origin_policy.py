import pytest
from starlette.datastructures import MutableHeaders

from app.hcp_proxy.origin_policy import (
    ALLOWED_HEADERS,
    ALLOWED_METHODS,
    OriginDecision,
    apply_cors_headers,
    cors_headers,
    evaluate_origin,
    merge_vary,
)


class TestEvaluateOrigin:
    """Test the allow/deny decision and the echoed origin."""

    @pytest.mark.parametrize("allowed", [frozenset(), frozenset({"*"}), frozenset({"https://a.com", "*"})])
    @pytest.mark.parametrize("origin", ["https://scope.example", "https://b.com"])
    def test_allow_all_echoes_origin(self, allowed, origin):
        decision = evaluate_origin(origin, allowed)
        assert decision == OriginDecision(allow_origin=origin, proceed=True)

    @pytest.mark.parametrize("allowed", [frozenset(), frozenset({"*"})])
    def test_allow_all_without_origin_uses_wildcard(self, allowed):
        decision = evaluate_origin(None, allowed)
        assert decision == OriginDecision(allow_origin="*", proceed=True)

    def test_listed_origin_is_echoed(self):
        decision = evaluate_origin("https://a.com", frozenset({"https://a.com"}))
        assert decision == OriginDecision(allow_origin="https://a.com", proceed=True)

    def test_missing_origin_proceeds_without_echo(self):
        decision = evaluate_origin(None, frozenset({"https://a.com"}))
        assert decision == OriginDecision(allow_origin="", proceed=True)

    def test_unlisted_origin_is_rejected(self):
        decision = evaluate_origin("https://b.com", frozenset({"https://a.com"}))
        assert decision == OriginDecision(allow_origin="", proceed=False)

    def test_match_is_exact(self):
        decision = evaluate_origin("https://a.com/", frozenset({"https://a.com"}))
        assert not decision.proceed


class TestCorsHeaders:
    """Test the cross-origin response headers."""

    def test_headers_with_echoed_origin(self):
        headers = dict(cors_headers(OriginDecision("https://a.com", True)))

        assert headers["Access-Control-Allow-Origin"] == "https://a.com"
        assert headers["Vary"] == "Origin"
        assert headers["Access-Control-Allow-Methods"] == ALLOWED_METHODS
        assert headers["Access-Control-Max-Age"] == "86400"
        for name in ("Authorization", "Content-Type", "X-Hcp-Api-Key", "X-Hcp-Auth-Mode",
                     "X-Hcp-Api-Base", "X-Requested-With"):
            assert name in ALLOWED_HEADERS.split(",")

    def test_headers_without_origin(self):
        headers = dict(cors_headers(OriginDecision("", False)))

        assert "Access-Control-Allow-Origin" not in headers
        assert "Vary" not in headers
        assert headers["Access-Control-Allow-Headers"] == ALLOWED_HEADERS

    def test_apply_keeps_existing_values(self):
        headers = MutableHeaders()
        headers["access-control-max-age"] = "60"

        apply_cors_headers(headers, OriginDecision("https://a.com", True))

        assert headers["access-control-max-age"] == "60"
        assert headers["access-control-allow-origin"] == "https://a.com"

    def test_apply_appends_origin_to_existing_vary(self):
        headers = MutableHeaders()
        headers.append("vary", "Accept-Encoding")
        headers.append("vary", "Cookie")

        apply_cors_headers(headers, OriginDecision("https://a.com", True))

        assert headers.getlist("vary") == ["Accept-Encoding, Cookie, Origin"]

    def test_apply_leaves_vary_alone_without_echoed_origin(self):
        headers = MutableHeaders()
        headers["vary"] = "Accept-Encoding"

        apply_cors_headers(headers, OriginDecision("", True))

        assert headers.getlist("vary") == ["Accept-Encoding"]

    @pytest.mark.parametrize(
        "current,expected",
        [
            ("", "Origin"),
            ("Accept-Encoding", "Accept-Encoding, Origin"),
            ("accept-encoding, origin", "accept-encoding, origin"),
            ("*", "*"),
        ],
    )
    def test_merge_vary(self, current, expected):
        assert merge_vary(current, "Origin") == expected
