from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from apps.rotafrete import route_optimizer
from apps.rotafrete.auth import get_current_user
from apps.rotafrete.route_optimizer import (
    RouteOptimizationError,
    RouteOptimizationInput,
    optimize_route,
    render_prompt,
)


def _input(**overrides):
    data = {
        "origin": "São Paulo, SP",
        "destination": "Curitiba, PR",
        "freightType": "frete completo",
        "vehicleType": "Carreta",
    }
    data.update(overrides)
    return RouteOptimizationInput(**data)


class _FakeClient:
    def __init__(self, content=None, error=None):
        self.calls = []
        self._content = content
        self._error = error
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error:
            raise self._error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self._content))])


def _use_client(monkeypatch, client):
    monkeypatch.setattr(route_optimizer, "_client", lambda: client)
    return client


def test_avoid_return_freight_defaults_to_true():
    assert _input().avoidReturnFreight is True
    assert "Prioritize Avoiding Return Freight: true" in render_prompt(_input())


def test_required_fields_must_be_non_empty():
    with pytest.raises(ValueError):
        _input(origin="")


def test_prompt_includes_driver_inputs():
    prompt = render_prompt(_input(currentLocation="Registro, SP", preferences="Evitar pedágios", avoidReturnFreight=False))
    assert "Origin: São Paulo, SP" in prompt
    assert "Current Location: Registro, SP" in prompt
    assert "Driver Preferences: Evitar pedágios" in prompt
    assert "Prioritize Avoiding Return Freight: false" in prompt


def test_returns_full_output(monkeypatch):
    payload = {
        "optimizedRoute": "BR-116 via Registro, ~6h",
        "returnFreightSuggestions": "Procure cargas em Curitiba para SP",
        "efficiencyTips": "Abasteça em Registro",
    }
    client = _use_client(monkeypatch, _FakeClient(content=json.dumps(payload)))

    out = optimize_route(_input())

    assert out.optimizedRoute == payload["optimizedRoute"]
    assert out.efficiencyTips == payload["efficiencyTips"]
    assert len(client.calls) == 1
    assert client.calls[0]["response_format"] == {"type": "json_object"}


def test_optional_fields_may_be_absent(monkeypatch):
    _use_client(monkeypatch, _FakeClient(content='```json\n{"optimizedRoute": "BR-116"}\n```'))
    out = optimize_route(_input())
    assert out.optimizedRoute == "BR-116"
    assert out.returnFreightSuggestions is None


@pytest.mark.parametrize(
    "content",
    [
        '{"returnFreightSuggestions": "x"}',
        '{"optimizedRoute": ""}',
        "não é json",
    ],
)
def test_invalid_output_raises(monkeypatch, content):
    client = _use_client(monkeypatch, _FakeClient(content=content))
    with pytest.raises(RouteOptimizationError):
        optimize_route(_input())
    # single call, no retry
    assert len(client.calls) == 1


def test_provider_error_raises(monkeypatch):
    _use_client(monkeypatch, _FakeClient(error=RuntimeError("rate limited")))
    with pytest.raises(RouteOptimizationError) as exc:
        optimize_route(_input())
    assert str(exc.value) == route_optimizer.FAILURE_MESSAGE


def _make_app():
    app = FastAPI()
    app.include_router(route_optimizer.router)
    app.dependency_overrides[get_current_user] = lambda: {"uid": "d1", "role": "driver"}
    return app


def test_endpoint_maps_failure_to_502(monkeypatch):
    _use_client(monkeypatch, _FakeClient(content="{}"))
    client = TestClient(_make_app())
    res = client.post("/optimizer/route", json=_input().model_dump())
    assert res.status_code == 502
    assert res.json()["detail"] == "Falha ao otimizar a rota. Tente novamente mais tarde."


def test_endpoint_returns_route(monkeypatch):
    _use_client(monkeypatch, _FakeClient(content='{"optimizedRoute": "BR-116"}'))
    client = TestClient(_make_app())
    body = {"origin": "A", "destination": "B", "freightType": "comum", "vehicleType": "Truck"}
    res = client.post("/optimizer/route", json=body)
    assert res.status_code == 200
    assert res.json()["optimizedRoute"] == "BR-116"
