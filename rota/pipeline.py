"""
Pipeline completo: planilha → agrupamento → correção IA → geocodificação.

A correção dos endereços pelo LLM roda em uma thread separada e disputa
com um prazo total. Se o prazo vencer ou qualquer erro ocorrer, o
resultado inteiro da correção é descartado e as linhas agrupadas originais
seguem adiante; nunca há correção parcial.

A validação de coordenadas roda depois, fora do prazo, sobre as linhas
corrigidas: cada linha degrada sozinha quando o Nominatim falha. Um único
geocodificador (com rate limit) atende todas as fases, então nunca há duas
requisições ao Nominatim ao mesmo tempo.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field

import pandas as pd

from rota.agrupamento import agrupar_por_endereco
from rota.config import CORRECAO_TIMEOUT
from rota.correcao_llm import ClienteLLM, PoliticaRetry, corrigir_linhas
from rota.geocodificacao import (
    Geocode,
    criar_geocodificador,
    geocodificar_pendentes,
    validar_coordenadas_linhas,
)
from rota.planilha import EsquemaColunas, descobrir_colunas

log = logging.getLogger(__name__)

AVISO_TIMEOUT = "Correção demorou muito, usando dados originais"
AVISO_ERRO = "Erro ao corrigir endereços, usando dados originais"


@dataclass
class ResultadoProcessamento:
    """Linhas finais e metadados do processamento de uma planilha."""

    linhas: pd.DataFrame
    esquema: EsquemaColunas
    total_original: int
    total_enderecos: int
    avisos: list[str] = field(default_factory=list)
    ia_aplicada: bool = False

    @property
    def resumo(self) -> str:
        return (
            f"{self.total_enderecos} endereços únicos de "
            f"{self.total_original} registros"
        )


def corrigir_com_prazo(
    agrupado: pd.DataFrame,
    esquema: EsquemaColunas,
    cliente: ClienteLLM | None = None,
    politica: PoliticaRetry | None = None,
    timeout: float = CORRECAO_TIMEOUT,
    api_key: str | None = None,
) -> tuple[pd.DataFrame, str | None]:
    """Executa a correção via LLM limitada a *timeout* segundos.

    Returns:
        ``(linhas, aviso)``: linhas corrigidas e ``None``, ou as linhas
        agrupadas originais e o aviso a exibir ao usuário.
    """
    cancelamento = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rota-correcao")
    futuro = executor.submit(
        corrigir_linhas,
        agrupado,
        esquema,
        cliente=cliente,
        politica=politica,
        cancelamento=cancelamento,
        api_key=api_key,
    )
    try:
        return futuro.result(timeout=timeout), None
    except FuturesTimeoutError:
        cancelamento.set()
        log.warning("[IA] Prazo de %.0fs excedido; usando dados originais.", timeout)
        return agrupado, AVISO_TIMEOUT
    except Exception as exc:  # noqa: BLE001
        log.warning("[IA] Erro na correção (%s); usando dados originais.", exc)
        return agrupado, AVISO_ERRO
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def processar_planilha(
    df: pd.DataFrame,
    corrigir: bool = True,
    geocodificar: bool = False,
    cliente: ClienteLLM | None = None,
    politica: PoliticaRetry | None = None,
    geocode: Geocode | None = None,
    timeout: float = CORRECAO_TIMEOUT,
    api_key: str | None = None,
    comparacao_legada: bool = False,
) -> ResultadoProcessamento:
    """Processa a planilha de pedidos de ponta a ponta.

    Args:
        df:                Planilha lida (uma linha por pedido).
        corrigir:          Corrige endereços via IA e valida as coordenadas.
        geocodificar:      Resolve coordenadas de linhas sem lat/lon.
        cliente:           Cliente LLM (padrão: criado com *api_key*).
        politica:          Política de batch/retry do LLM.
        geocode:           Geocodificador (padrão: Nominatim com rate limit),
                           compartilhado pela validação e pela resolução.
        timeout:           Prazo da correção via LLM, em segundos.
        api_key:           API key do LLM quando *cliente* não é fornecido.
        comparacao_legada: Regra antiga de estado/bairro na resolução.

    Returns:
        :class:`ResultadoProcessamento`.

    Raises:
        ValueError: Planilha vazia ou sem coluna de endereço.
    """
    df = df.dropna(how="all")
    if df.empty:
        raise ValueError("Planilha vazia ou sem dados válidos")

    esquema = descobrir_colunas(list(df.columns))
    total_original = len(df)
    log.info("[PIPELINE] %d registro(s); endereço em '%s'", total_original, esquema.endereco)

    linhas = agrupar_por_endereco(df, esquema.endereco, esquema.sequencia)
    avisos: list[str] = []
    ia_aplicada = False

    if corrigir:
        linhas, aviso = corrigir_com_prazo(
            linhas,
            esquema,
            cliente=cliente,
            politica=politica,
            timeout=timeout,
            api_key=api_key,
        )
        if aviso:
            avisos.append(aviso)
        else:
            ia_aplicada = True

    validar = ia_aplicada and esquema.tem_coordenadas
    if geocode is None and (validar or geocodificar):
        geocode = criar_geocodificador()

    if validar:
        linhas = validar_coordenadas_linhas(linhas, esquema, geocode=geocode)

    if geocodificar:
        linhas = geocodificar_pendentes(
            linhas, esquema, geocode=geocode, comparacao_legada=comparacao_legada
        )

    resultado = ResultadoProcessamento(
        linhas=linhas.reset_index(drop=True),
        esquema=esquema,
        total_original=total_original,
        total_enderecos=len(linhas),
        avisos=avisos,
        ia_aplicada=ia_aplicada,
    )
    log.info("[PIPELINE] Concluído: %s", resultado.resumo)
    return resultado
