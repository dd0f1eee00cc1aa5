"""
Gateway and router tests.

Remote validators are exercised through httpx.MockTransport — nothing here
opens a socket.

Run: pytest tests/ -v
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from regulation_validator.classifier import classify_regulation
from regulation_validator.exceptions import ValidatorUnavailableError
from regulation_validator.gateway import (
    LOCAL_MAX_CERTAINTY,
    LocalBasicValidator,
    RemoteValidator,
    Validator,
    ValidatorCall,
    ValidatorRegistry,
    basic_validation,
)
from regulation_validator.models import (
    ErrorInfo,
    RegulationContent,
    RegulationSnapshot,
    ValidationOptions,
    ValidationResult,
)
from regulation_validator.router import RouteRequest, ValidationRouter

SNAPSHOT = RegulationSnapshot(
    id="R1",
    title="Student Records Retention",
    category="academic",
    jurisdiction="institutional",
    current_version="1.2.3",
)

REMOTE_OK = {
    "isValid": True,
    "certaintyLevel": 5,
    "validationLevel": 3,
    "validationTimestamp": "2024-05-01T12:00:00Z",
    "evidence": {"similarity": 0.99},
}


def _call(text: str = "Records shall be retained.") -> ValidatorCall:
    return ValidatorCall.build(SNAPSHOT, RegulationContent(text=text), ValidationOptions())


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _json_handler(body: Any, status: int = 200, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status, json=body)
    return handler


async def _route(router: ValidationRouter, text: str = "Some text.", level: int = 1) -> ValidationResult:
    classification = classify_regulation(SNAPSHOT, level)
    return await router.route(
        classification, SNAPSHOT, RegulationContent(text=text), level, ValidationOptions()
    )


class _ExplodingValidator(Validator):
    """Raises something other than ValidatorUnavailableError."""

    @property
    def name(self) -> str:
        return "exploding"

    async def validate(self, call: ValidatorCall) -> ValidationResult:
        if call.client_content.text == "boom":
            raise RuntimeError("validator bug")
        return basic_validation(call.client_content.text)


# ═══════════════════════════════════════════════════════════════════════
# LOCAL BASIC VALIDATOR
# ═══════════════════════════════════════════════════════════════════════


class TestBasicValidation:
    def test_non_empty_text_is_valid_with_capped_certainty(self):
        result = basic_validation("Records shall be retained for 7 years.")
        assert result.is_valid is True
        assert result.certainty_level == LOCAL_MAX_CERTAINTY == 2
        assert result.validation_level == 1

    def test_empty_text_is_invalid(self):
        result = basic_validation("")
        assert result.is_valid is False
        assert result.certainty_level == 1
        assert result.evidence["textExists"] is False
        assert result.evidence["metrics"] == {
            "contentLength": 0,
            "wordCount": 0,
            "hasPunctuation": False,
        }

    def test_metrics(self):
        metrics = basic_validation("Retain  records, always").evidence["metrics"]
        assert metrics == {"contentLength": 23, "wordCount": 3, "hasPunctuation": True}

    def test_local_validator_uses_client_text(self):
        result = asyncio.run(LocalBasicValidator().validate(_call("")))
        assert result.is_valid is False


# ═══════════════════════════════════════════════════════════════════════
# REMOTE VALIDATOR
# ═══════════════════════════════════════════════════════════════════════


class TestRemoteValidator:
    def test_sends_validate_payload(self):
        seen: list[dict] = []

        async def run():
            async with _client(_json_handler(REMOTE_OK, seen=seen)) as client:
                validator = RemoteValidator(3, "http://validators.test/l3", client=client)
                return await validator.validate(_call("Client text"))

        result = asyncio.run(run())
        assert result.certainty_level == 5
        assert result.evidence == {"similarity": 0.99}
        payload = seen[0]
        assert payload["action"] == "validate"
        assert payload["regulationId"] == "R1"
        assert payload["regulationTitle"] == "Student Records Retention"
        assert payload["regulationCategory"] == "academic"
        assert payload["regulationJurisdiction"] == "institutional"
        assert payload["authorityVersion"] == "1.2.3"
        assert payload["clientContent"]["text"] == "Client text"
        assert payload["options"]["requireCertainty"] == 1

    @pytest.mark.parametrize("body, status", [
        ({"error": "model overloaded"}, 200),
        ({"message": "boom"}, 500),
        ({"isValid": True}, 200),
        ({"isValid": True, "certaintyLevel": 9, "validationLevel": 1}, 200),
        ({"isValid": True, "certaintyLevel": 0, "validationLevel": 0}, 200),
        ({"isValid": True, "certaintyLevel": 3, "validationLevel": 0}, 200),
    ])
    def test_failures_raise_unavailable(self, body, status):
        async def run():
            async with _client(_json_handler(body, status)) as client:
                await RemoteValidator(2, "http://validators.test/l2", client=client).validate(_call())

        with pytest.raises(ValidatorUnavailableError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.code == "VALIDATOR_UNAVAILABLE"

    def test_transport_error_raises_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def run():
            async with _client(handler) as client:
                await RemoteValidator(1, "http://validators.test/l1", client=client).validate(_call())

        with pytest.raises(ValidatorUnavailableError):
            asyncio.run(run())

    def test_non_json_body_raises_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        async def run():
            async with _client(handler) as client:
                await RemoteValidator(1, "http://validators.test/l1", client=client).validate(_call())

        with pytest.raises(ValidatorUnavailableError):
            asyncio.run(run())

    def test_ping(self):
        seen: list[dict] = []

        async def run(body, status):
            async with _client(_json_handler(body, status, seen)) as client:
                return await RemoteValidator(1, "http://validators.test/l1", client=client).ping()

        assert asyncio.run(run({"status": "ok"}, 200)) is True
        assert seen[0] == {"action": "ping"}
        assert asyncio.run(run({"error": "down"}, 200)) is False
        assert asyncio.run(run({}, 503)) is False


# ═══════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════


class TestValidatorRegistry:
    def test_exact_level(self):
        l2 = LocalBasicValidator()
        registry = ValidatorRegistry({2: l2})
        assert registry.resolve(2) == (2, l2)

    def test_walks_down(self):
        l1 = LocalBasicValidator()
        registry = ValidatorRegistry({1: l1})
        assert registry.resolve(3) == (1, l1)

    def test_never_walks_up(self):
        registry = ValidatorRegistry({3: LocalBasicValidator()})
        assert registry.resolve(2) is None

    def test_empty(self):
        registry = ValidatorRegistry()
        assert registry.resolve(3) is None
        assert len(registry) == 0

    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError):
            ValidatorRegistry().register(4, LocalBasicValidator())

    def test_from_urls(self):
        registry = ValidatorRegistry.from_urls({1: "http://a", 3: "http://c"})
        assert registry.levels == [1, 3]
        assert isinstance(registry.get(3), RemoteValidator)
        assert registry.get(2) is None


# ═══════════════════════════════════════════════════════════════════════
# ROUTER
# ═══════════════════════════════════════════════════════════════════════


class TestRouterFallback:
    @pytest.mark.parametrize("level", [1, 2, 3])
    @pytest.mark.parametrize("text", ["", "x", "Records shall be retained for 7 years."])
    def test_no_validators_caps_certainty(self, level, text):
        result = asyncio.run(_route(ValidationRouter(), text=text, level=level))
        assert result.validation_level == 1
        assert result.certainty_level <= 2

    def test_fallback_is_marked_in_evidence(self):
        result = asyncio.run(_route(ValidationRouter(), level=3))
        assert result.evidence["fallback"] == {"reason": "no_validator_registered", "requestedLevel": 3}
        assert result.evidence["textExists"] is True

    def test_remote_failure_falls_back(self):
        async def run():
            async with _client(_json_handler({"message": "down"}, 502)) as client:
                router = ValidationRouter(ValidatorRegistry.from_urls({2: "http://l2"}, client=client))
                return await _route(router, level=2)

        result = asyncio.run(run())
        assert result.certainty_level == 2
        assert result.evidence["fallback"]["reason"] == "validator_unavailable"

    def test_malformed_validator_url_falls_back(self):
        async def run():
            async with _client(_json_handler(REMOTE_OK)) as client:
                router = ValidationRouter(
                    ValidatorRegistry.from_urls({1: "http://exa mple.com/\x00"}, client=client)
                )
                return await _route(router, level=1)

        result = asyncio.run(run())
        assert result.certainty_level == 2
        assert result.evidence["fallback"]["reason"] == "validator_unavailable"

    def test_downgrades_to_lower_registered_level(self):
        seen: list[dict] = []

        async def run():
            async with _client(_json_handler(REMOTE_OK, seen=seen)) as client:
                router = ValidationRouter(ValidatorRegistry.from_urls({1: "http://l1"}, client=client))
                return await _route(router, level=3)

        result = asyncio.run(run())
        assert len(seen) == 1
        assert result.certainty_level == 5
        assert "fallback" not in result.evidence

    def test_remote_success_passes_through(self):
        async def run():
            async with _client(_json_handler(REMOTE_OK)) as client:
                router = ValidationRouter(ValidatorRegistry.from_urls({3: "http://l3"}, client=client))
                return await _route(router, level=3)

        result = asyncio.run(run())
        assert result.validation_level == 3
        assert result.is_valid is True


class TestRouteBatch:
    def _requests(self, texts: list[str]) -> list[RouteRequest]:
        classification = classify_regulation(SNAPSHOT, 1)
        return [
            RouteRequest(classification, SNAPSHOT, RegulationContent(text=t), 1, ValidationOptions())
            for t in texts
        ]

    def test_order_matches_input(self):
        results = asyncio.run(ValidationRouter().route_batch(self._requests(["a", "", "b"])))
        assert [r.is_valid for r in results] == [True, False, True]

    def test_fault_is_isolated_to_its_slot(self):
        router = ValidationRouter(ValidatorRegistry({1: _ExplodingValidator()}))
        results = asyncio.run(router.route_batch(self._requests(["ok", "boom", "fine"])))
        assert isinstance(results[0], ValidationResult)
        assert isinstance(results[1], ErrorInfo)
        assert results[1].code == "VALIDATION_FAILED"
        assert "validator bug" in results[1].message
        assert isinstance(results[2], ValidationResult)

    def test_empty_batch(self):
        assert asyncio.run(ValidationRouter().route_batch([])) == []


class TestValidatorAvailability:
    def test_unregistered_level_is_unavailable(self):
        assert asyncio.run(ValidationRouter().is_validator_available(2)) is False

    def test_registered_local_is_available(self):
        router = ValidationRouter(ValidatorRegistry({1: LocalBasicValidator()}))
        assert asyncio.run(router.is_validator_available(1)) is True

    def test_failed_ping_is_unavailable(self):
        async def run():
            async with _client(_json_handler({}, 500)) as client:
                router = ValidationRouter(ValidatorRegistry.from_urls({1: "http://l1"}, client=client))
                return await router.is_validator_available(1)

        assert asyncio.run(run()) is False
