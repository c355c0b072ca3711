"""rota/correcao_llm.py — Correção de endereços em lote via LLM.

Os endereços são enviados em batches de 15 como lista numerada::

    1. R. Justo de Morais 21 casa
    2. Av Ernani do Amaral Peixoto 300

e a resposta deve trazer a mesma lista numerada, corrigida. A correção é
best-effort: qualquer falha, resposta malformada ou contagem divergente
devolve o batch original intacto. Nunca há aplicação parcial de um batch,
porque o mapeamento é posicional.

Respostas 429 (rate limit) são repetidas com backoff exponencial; batches
são processados em sequência com pausa fixa entre eles.
"""

# ============================================================================
# Imports
# ============================================================================
import logging
import os
import re
import threading
import time
from dataclasses import dataclass

import pandas as pd
import requests

from rota.config import (
    LLM_API_KEY_ENV,
    LLM_API_URL,
    LLM_ATRASO_BASE,
    LLM_BATCH_SIZE,
    LLM_MODEL,
    LLM_PAUSA_ENTRE_BATCHES,
    LLM_TEMPERATURA,
    LLM_TENTATIVAS,
    LLM_TIMEOUT_HTTP,
)
from rota.normalizacao import texto_limpo
from rota.planilha import EsquemaColunas

# ============================================================================
# Constants
# ============================================================================
log = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "Você é um assistente especializado em corrigir endereços brasileiros. "
    "Corrija erros de digitação, abreviações incorretas e formate cada endereço "
    "de forma padronizada. Retorne APENAS a lista numerada de endereços "
    "corrigidos, um por linha, mantendo a mesma numeração."
)

_PREFIXO_USUARIO = "Corrija estes endereços brasileiros:\n"

_NUMERACAO = re.compile(r"^\d+\.\s*")

HTTP_RATE_LIMIT = 429


# ============================================================================
# Cliente e política
# ============================================================================


@dataclass(frozen=True)
class RespostaLLM:
    """Status HTTP e texto devolvido pelo modelo (vazio quando não-200)."""

    status: int
    texto: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class PoliticaRetry:
    """Parâmetros de batch, retry e ritmo das chamadas ao LLM."""

    tentativas: int = LLM_TENTATIVAS
    atraso_base: float = LLM_ATRASO_BASE
    pausa_entre_batches: float = LLM_PAUSA_ENTRE_BATCHES
    batch_size: int = LLM_BATCH_SIZE

    def atraso(self, tentativa: int) -> float:
        """Espera antes de repetir após 429 na *tentativa* (0-based)."""
        return self.atraso_base * (2**tentativa)


def _api_key(api_key: str | None = None) -> str:
    """Obtém a API key do LLM (parâmetro ou variável de ambiente)."""
    key = api_key or os.environ.get(LLM_API_KEY_ENV, "")
    if not key:
        raise ValueError(
            "API key do LLM não fornecida. "
            f"Use --api-key ou exporte {LLM_API_KEY_ENV}."
        )
    return key


class ClienteLLM:
    """Chamada única a um endpoint chat/completions compatível com OpenAI."""

    def __init__(
        self,
        api_key: str | None = None,
        url: str = LLM_API_URL,
        modelo: str = LLM_MODEL,
        timeout: float = LLM_TIMEOUT_HTTP,
    ) -> None:
        self.api_key = _api_key(api_key)
        self.url = url
        self.modelo = modelo
        self.timeout = timeout

    def completar(self, sistema: str, usuario: str) -> RespostaLLM:
        """Envia o par system/user e devolve o conteúdo da primeira escolha.

        Raises:
            requests.RequestException: Falha de rede.
            ValueError: Corpo de resposta sem o formato esperado.
        """
        payload = {
            "model": self.modelo,
            "messages": [
                {"role": "system", "content": sistema},
                {"role": "user", "content": usuario},
            ],
            "temperature": LLM_TEMPERATURA,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        resp = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        if not 200 <= resp.status_code < 300:
            return RespostaLLM(resp.status_code)

        try:
            conteudo = resp.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ValueError(f"Resposta do LLM sem conteúdo: {exc}") from exc
        return RespostaLLM(resp.status_code, str(conteudo or "").strip())


# ============================================================================
# Core helpers
# ============================================================================


def _montar_lista_numerada(enderecos: list[str]) -> str:
    return "\n".join(f"{i}. {end}" for i, end in enumerate(enderecos, start=1))


def _interpretar_lista(texto: str) -> list[str]:
    """Converte a lista numerada devolvida pelo modelo em endereços.

    Linhas vazias e cercas de código (```) são descartadas; o prefixo
    ``"<n>. "`` é removido de cada linha.
    """
    linhas = [linha.strip() for linha in texto.splitlines()]
    return [
        _NUMERACAO.sub("", linha).strip()
        for linha in linhas
        if linha and not linha.startswith("```")
    ]


def _resumo(texto: str, limite: int = 30) -> str:
    return texto if len(texto) <= limite else texto[:limite] + "..."


def _corrigir_batch(
    enderecos: list[str],
    cliente: ClienteLLM,
    politica: PoliticaRetry,
    indice: int = 1,
) -> list[str]:
    """Corrige um batch; devolve *enderecos* intacto em qualquer falha."""
    usuario = _PREFIXO_USUARIO + _montar_lista_numerada(enderecos)

    for tentativa in range(politica.tentativas):
        try:
            resposta = cliente.completar(_SYSTEM_PROMPT, usuario)
        except (requests.RequestException, ValueError) as exc:
            log.warning("  [IA] Batch %d — erro na chamada: %s", indice, exc)
            return enderecos

        if resposta.status == HTTP_RATE_LIMIT:
            if tentativa + 1 < politica.tentativas:
                espera = politica.atraso(tentativa)
                log.info(
                    "  [IA] Rate limit, aguardando %.1fs (tentativa %d/%d)",
                    espera,
                    tentativa + 1,
                    politica.tentativas,
                )
                time.sleep(espera)
            continue

        if not resposta.ok:
            log.warning("  [IA] Batch %d — HTTP %d", indice, resposta.status)
            return enderecos

        corrigidos = _interpretar_lista(resposta.texto)
        if len(corrigidos) != len(enderecos):
            log.warning(
                "  [IA] Batch %d — %d linha(s) recebida(s) para %d endereço(s); "
                "mantendo originais.",
                indice,
                len(corrigidos),
                len(enderecos),
            )
            return enderecos
        return corrigidos

    log.warning(
        "  [IA] Batch %d — rate limit após %d tentativas; mantendo originais.",
        indice,
        politica.tentativas,
    )
    return enderecos


# ============================================================================
# Public API
# ============================================================================


def corrigir_enderecos(
    enderecos: list[str],
    cliente: ClienteLLM | None = None,
    politica: PoliticaRetry | None = None,
    cancelamento: threading.Event | None = None,
    api_key: str | None = None,
) -> list[str]:
    """Corrige endereços em batches sequenciais, preservando o tamanho da lista.

    Endereços vazios não são enviados ao modelo e permanecem na posição.

    Args:
        enderecos:    Endereços na ordem das linhas.
        cliente:      Cliente LLM (padrão: :class:`ClienteLLM` com *api_key*).
        politica:     Batch, retry e pausas (padrão: :class:`PoliticaRetry`).
        cancelamento: Quando sinalizado, nenhum batch novo é iniciado e o
                      restante volta sem correção.
        api_key:      Usada apenas quando *cliente* não é fornecido.

    Returns:
        Lista do mesmo tamanho de *enderecos*.
    """
    politica = politica or PoliticaRetry()
    resultado = list(enderecos)
    if not resultado:
        return resultado
    cliente = cliente or ClienteLLM(api_key=api_key)

    total_batches = -(-len(resultado) // politica.batch_size)
    for numero, inicio in enumerate(range(0, len(resultado), politica.batch_size), 1):
        if cancelamento is not None and cancelamento.is_set():
            log.warning("  [IA] Correção cancelada antes do batch %d.", numero)
            break

        fim = min(inicio + politica.batch_size, len(resultado))
        posicoes = [p for p in range(inicio, fim) if texto_limpo(resultado[p])]
        log.info(
            "[IA] Batch %d/%d (%d-%d)", numero, total_batches, inicio + 1, fim
        )

        if posicoes:
            lote = [texto_limpo(resultado[p]) for p in posicoes]
            corrigidos = _corrigir_batch(lote, cliente, politica, indice=numero)
            for posicao, corrigido in zip(posicoes, corrigidos):
                resultado[posicao] = corrigido

        if fim < len(resultado):
            time.sleep(politica.pausa_entre_batches)

    return resultado


def corrigir_linhas(
    df: pd.DataFrame,
    esquema: EsquemaColunas,
    cliente: ClienteLLM | None = None,
    politica: PoliticaRetry | None = None,
    cancelamento: threading.Event | None = None,
    api_key: str | None = None,
) -> pd.DataFrame:
    """Aplica a correção do LLM à coluna de endereço das linhas agrupadas.

    Returns:
        Cópia de *df*; só as células cujo texto mudou são substituídas.
    """
    col = esquema.endereco
    originais = [texto_limpo(v) for v in df[col].tolist()]
    log.info("[IA] Corrigindo %d endereço(s)...", len(originais))

    corrigidos = corrigir_enderecos(
        originais,
        cliente=cliente,
        politica=politica,
        cancelamento=cancelamento,
        api_key=api_key,
    )

    df = df.copy()
    alterados = 0
    for posicao, (original, corrigido) in enumerate(zip(originais, corrigidos)):
        if corrigido and corrigido != original:
            df.iat[posicao, df.columns.get_loc(col)] = corrigido
            alterados += 1
            log.debug('  ✓ "%s" -> "%s"', _resumo(original), _resumo(corrigido))

    log.info("[IA] %d endereço(s) alterado(s).", alterados)
    return df
