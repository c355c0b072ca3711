"""
Créditos pré-pagos que liberam a exportação.

A exportação só acontece com saldo >= 1 e consome exatamente um crédito,
debitado de forma atômica antes de o arquivo ser gravado e devolvido se a
gravação falhar. A carteira real (banco, painel administrativo, aprovação
de compras) fica fora deste pacote; aqui estão a interface e duas
implementações locais.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from pathlib import Path

import pandas as pd

from rota.config import CREDITOS_JSON
from rota.planilha import exportar_planilha, nome_arquivo_exportacao

log = logging.getLogger(__name__)


class CreditoInsuficiente(RuntimeError):
    """Usuário sem crédito para exportar."""


class CarteiraCreditos(ABC):
    """Saldo de créditos por usuário."""

    @abstractmethod
    def saldo(self, usuario: str) -> int: ...

    @abstractmethod
    def debitar(self, usuario: str) -> bool:
        """Debita um crédito; ``False`` (sem alterar nada) se o saldo for < 1."""

    @abstractmethod
    def adicionar(self, usuario: str, quantidade: int) -> int:
        """Soma *quantidade* ao saldo e devolve o novo saldo."""

    def registrar_download(self, usuario: str, arquivo: str) -> None:
        """Histórico de downloads; implementações podem ignorar."""


class CarteiraMemoria(CarteiraCreditos):
    """Carteira em memória, segura entre threads."""

    def __init__(self, saldos: dict[str, int] | None = None) -> None:
        self._saldos: dict[str, int] = dict(saldos or {})
        self._downloads: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def saldo(self, usuario: str) -> int:
        with self._lock:
            return self._saldos.get(usuario, 0)

    def debitar(self, usuario: str) -> bool:
        with self._lock:
            atual = self._saldos.get(usuario, 0)
            if atual < 1:
                return False
            self._saldos[usuario] = atual - 1
            return True

    def adicionar(self, usuario: str, quantidade: int) -> int:
        if quantidade < 1:
            raise ValueError("Quantidade de créditos deve ser positiva.")
        with self._lock:
            self._saldos[usuario] = self._saldos.get(usuario, 0) + quantidade
            return self._saldos[usuario]

    def registrar_download(self, usuario: str, arquivo: str) -> None:
        with self._lock:
            self._downloads.append((usuario, arquivo))

    @property
    def downloads(self) -> list[tuple[str, str]]:
        with self._lock:
            return list(self._downloads)


class CarteiraJson(CarteiraCreditos):
    """Carteira persistida em JSON, usada pela CLI.

    Formato::

        {"saldos": {"ana": 3}, "downloads": [{"usuario": ..., "arquivo": ..., "em": ...}]}
    """

    def __init__(self, path: Path = CREDITOS_JSON) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _ler(self) -> dict:
        if not self.path.exists():
            return {"saldos": {}, "downloads": []}
        try:
            dados = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise ValueError(f"Carteira de créditos ilegível ({self.path}): {exc}") from exc
        if not isinstance(dados, dict):
            raise ValueError(
                f"Carteira de créditos ilegível ({self.path}): esperado objeto JSON"
            )
        dados.setdefault("saldos", {})
        dados.setdefault("downloads", [])
        return dados

    def _gravar(self, dados: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temporario = self.path.with_suffix(".tmp")
        temporario.write_text(
            json.dumps(dados, ensure_ascii=False, indent=2), encoding="utf-8"
        )
        temporario.replace(self.path)

    def saldo(self, usuario: str) -> int:
        with self._lock:
            return int(self._ler()["saldos"].get(usuario, 0))

    def debitar(self, usuario: str) -> bool:
        with self._lock:
            dados = self._ler()
            atual = int(dados["saldos"].get(usuario, 0))
            if atual < 1:
                return False
            dados["saldos"][usuario] = atual - 1
            self._gravar(dados)
            return True

    def adicionar(self, usuario: str, quantidade: int) -> int:
        if quantidade < 1:
            raise ValueError("Quantidade de créditos deve ser positiva.")
        with self._lock:
            dados = self._ler()
            novo = int(dados["saldos"].get(usuario, 0)) + quantidade
            dados["saldos"][usuario] = novo
            self._gravar(dados)
            return novo

    def registrar_download(self, usuario: str, arquivo: str) -> None:
        with self._lock:
            dados = self._ler()
            dados["downloads"].append(
                {
                    "usuario": usuario,
                    "arquivo": arquivo,
                    "em": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                }
            )
            self._gravar(dados)


def exportar_com_credito(
    df: pd.DataFrame,
    carteira: CarteiraCreditos,
    usuario: str,
    destino: Path,
    formato: str = "xlsx",
    data: date | None = None,
) -> Path:
    """Debita um crédito e grava a planilha exportada.

    Args:
        df:       Linhas finais do pipeline.
        carteira: Carteira de créditos.
        usuario:  Dono do saldo.
        destino:  Diretório de saída.
        formato:  ``"xlsx"`` ou ``"csv"``.
        data:     Data usada no nome do arquivo.

    Returns:
        Caminho do arquivo gerado.

    Raises:
        CreditoInsuficiente: Saldo < 1; nada é gravado.
        ValueError: Formato inválido (verificado antes do débito).
        OSError: Falha ao gravar o arquivo; o crédito é devolvido.
    """
    nome = nome_arquivo_exportacao(formato, data)

    if not carteira.debitar(usuario):
        raise CreditoInsuficiente(
            "Créditos insuficientes. Compre mais créditos para continuar."
        )

    try:
        saida = exportar_planilha(df, destino, formato=formato, data=data)
    except OSError:
        carteira.adicionar(usuario, 1)
        log.error("[EXPORTAR] Falha ao gravar; crédito devolvido a '%s'.", usuario)
        raise
    carteira.registrar_download(usuario, nome)
    log.info(
        "[EXPORTAR] Crédito debitado de '%s'. Restantes: %d",
        usuario,
        carteira.saldo(usuario),
    )
    return saida
