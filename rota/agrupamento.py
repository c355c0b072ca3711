"""
Agrupamento de pedidos por endereço normalizado (logradouro + número).

Cada grupo vira uma única linha: cópia da primeira linha do grupo, com a
coluna de sequência (quando existe) substituída pela junção ``"; "`` de
todas as sequências do grupo, na ordem da planilha.
"""

import logging

import pandas as pd

from rota.normalizacao import normalizar_endereco, texto_limpo

log = logging.getLogger(__name__)

SEPARADOR_SEQUENCIAS: str = "; "


def chaves_de_agrupamento(df: pd.DataFrame, col_endereco: str) -> dict[str, list[int]]:
    """Particiona as posições das linhas por chave de endereço.

    A ordem das chaves é a ordem da primeira aparição na planilha.

    Raises:
        ValueError: Se *col_endereco* não for coluna de *df*.
    """
    if col_endereco not in df.columns:
        raise ValueError(
            f"Coluna de endereço '{col_endereco}' não encontrada. "
            f"Colunas encontradas: {list(df.columns)}"
        )

    grupos: dict[str, list[int]] = {}
    for posicao, valor in enumerate(df[col_endereco].tolist()):
        chave = normalizar_endereco(valor)
        grupos.setdefault(chave, []).append(posicao)
    return grupos


def juntar_sequencias(valores: list[object]) -> str:
    """Junta sequências não vazias, sem espaços nas pontas, preservando a ordem."""
    return SEPARADOR_SEQUENCIAS.join(
        texto for texto in (texto_limpo(v) for v in valores) if texto
    )


def agrupar_por_endereco(
    df: pd.DataFrame,
    col_endereco: str,
    col_sequencia: str | None = None,
) -> pd.DataFrame:
    """Agrupa linhas com o mesmo logradouro + número em uma linha só.

    Args:
        df:            Planilha original (uma linha por pedido).
        col_endereco:  Coluna com o endereço completo.
        col_sequencia: Coluna de sequência/rastreio a ser mesclada (opcional).

    Returns:
        DataFrame com uma linha por endereço único, na ordem da primeira
        aparição, com as mesmas colunas de *df*.

    Raises:
        ValueError: Se *col_endereco* não existir.
    """
    grupos = chaves_de_agrupamento(df, col_endereco)
    registros = df.to_dict(orient="records")

    if col_sequencia is not None and col_sequencia not in df.columns:
        log.warning(
            "  Coluna de sequência '%s' ausente; sequências não serão mescladas.",
            col_sequencia,
        )
        col_sequencia = None

    mesclados: list[dict] = []
    for posicoes in grupos.values():
        linha = dict(registros[posicoes[0]])
        if col_sequencia is not None:
            linha[col_sequencia] = juntar_sequencias(
                [registros[p][col_sequencia] for p in posicoes]
            )
        mesclados.append(linha)

    log.info(
        "[AGRUPAR] %d endereço(s) único(s) de %d registro(s)",
        len(mesclados),
        len(registros),
    )
    return pd.DataFrame(mesclados, columns=df.columns)
