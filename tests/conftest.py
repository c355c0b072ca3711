"""
conftest.py — Fixtures e configurações globais para os testes.

Aplicado automaticamente a todos os módulos de teste (autouse=True):
- tqdm substituído por iteração direta (sem saída de progresso nos testes).
- pausas do corretor LLM registradas em vez de dormir de verdade.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest


@pytest.fixture(autouse=True)
def desabilitar_tqdm(monkeypatch: pytest.MonkeyPatch) -> None:
    """Substitui tqdm por passthrough para suprimir barras de progresso."""
    monkeypatch.setattr(
        "rota.geocodificacao.tqdm",
        lambda iterable, **kw: iterable,
    )


@pytest.fixture(autouse=True)
def esperas(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Registra as chamadas a ``time.sleep`` feitas pelo corretor LLM."""
    registradas: list[float] = []
    monkeypatch.setattr(
        "rota.correcao_llm.time",
        SimpleNamespace(sleep=registradas.append),
    )
    return registradas


def _fazer_local(
    lat: float,
    lon: float,
    address: dict | None = None,
    display_name: str = "Local, Brasil",
) -> MagicMock:
    """Imita um :class:`geopy.location.Location` do Nominatim."""
    loc = MagicMock()
    loc.latitude = lat
    loc.longitude = lon
    loc.address = display_name
    loc.raw = {
        "lat": str(lat),
        "lon": str(lon),
        "display_name": display_name,
        "address": address or {},
    }
    return loc


@pytest.fixture
def fazer_local():
    """Fábrica de resultados falsos do Nominatim."""
    return _fazer_local
