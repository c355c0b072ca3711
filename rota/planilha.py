"""
Leitura, descoberta de colunas e exportação de planilhas de entregas.

A descoberta de colunas acontece uma única vez, na ingestão, e produz um
:class:`EsquemaColunas` que é repassado explicitamente às demais etapas.
Cada campo lógico tem uma lista ordenada de nomes candidatos; o nome da
coluna (sem acentos, minúsculo) precisa ser igual ao candidato ou começar
com ele seguido de um separador.

Uso standalone::

    python -m rota.planilha entregas.xlsx
"""

import logging
import re
from dataclasses import dataclass, fields
from datetime import date
from pathlib import Path

import pandas as pd

from rota.config import ABA_EXPORTACAO, FORMATOS_EXPORTACAO, PREFIXO_EXPORTACAO
from rota.normalizacao import remover_acentos

log = logging.getLogger(__name__)

_EXTENSOES_EXCEL: tuple[str, ...] = (".xlsx", ".xlsm", ".xls")
_EXTENSOES_TEXTO: tuple[str, ...] = (".csv", ".txt")

#: Candidatos por campo lógico, em ordem de preferência
CANDIDATOS_COLUNAS: dict[str, tuple[str, ...]] = {
    "endereco": (
        "endereco",
        "endereco do cliente",
        "destination address",
        "address",
        "logradouro",
        "rua",
    ),
    "sequencia": ("sequence", "sequencia", "sequencial", "pedido", "tracking"),
    "cep": ("cep", "zipcode", "zip", "postal", "codigo postal"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lon", "lng"),
    "bairro": ("bairro", "neighborhood", "suburb"),
    "cidade": ("cidade", "municipio", "city"),
    "estado": ("estado", "uf", "state"),
}

# Separadores aceitos entre o candidato e o restante do nome da coluna
_SEPARADORES = r"[\s_\-\.\(]"


@dataclass(frozen=True)
class EsquemaColunas:
    """Nomes reais das colunas da planilha, por campo lógico."""

    endereco: str
    sequencia: str | None = None
    cep: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    estado: str | None = None

    @property
    def tem_coordenadas(self) -> bool:
        return bool(self.latitude and self.longitude)

    @property
    def tem_localidade(self) -> bool:
        return bool(self.bairro or self.cidade or self.estado)


# ===========================================================================
# Descoberta de colunas
# ===========================================================================


def _chave_coluna(nome: object) -> str:
    return remover_acentos(str(nome)).strip().lower()


def _prefixo_confere(nome: str, candidato: str) -> bool:
    return re.match(rf"^{re.escape(candidato)}{_SEPARADORES}", nome) is not None


def descobrir_colunas(colunas: list[str]) -> EsquemaColunas:
    """Resolve o esquema de colunas a partir dos cabeçalhos da planilha.

    Para cada campo, percorre os candidatos em ordem; para cada candidato,
    uma coluna com nome idêntico vence uma que apenas começa com ele, e
    entre iguais vale a ordem da planilha. Uma coluna nunca é atribuída a
    dois campos.

    Args:
        colunas: Cabeçalhos na ordem em que aparecem.

    Returns:
        :class:`EsquemaColunas` resolvido.

    Raises:
        ValueError: Se nenhuma coluna de endereço for encontrada.
    """
    chaves = [(col, _chave_coluna(col)) for col in colunas]
    usadas: set[str] = set()
    resolvido: dict[str, str | None] = {}

    for campo, candidatos in CANDIDATOS_COLUNAS.items():
        resolvido[campo] = None
        for candidato in candidatos:
            livres = [(col, chave) for col, chave in chaves if col not in usadas]
            achada = next(
                (col for col, chave in livres if chave == candidato),
                None,
            ) or next(
                (col for col, chave in livres if _prefixo_confere(chave, candidato)),
                None,
            )
            if achada is not None:
                resolvido[campo] = achada
                usadas.add(achada)
                break

    if resolvido["endereco"] is None:
        raise ValueError(
            "Coluna de endereço não encontrada na planilha. "
            f"Colunas encontradas: {list(colunas)}"
        )

    esquema = EsquemaColunas(**resolvido)  # type: ignore[arg-type]
    log.debug(
        "  Esquema: %s",
        {f.name: getattr(esquema, f.name) for f in fields(esquema)},
    )
    return esquema


def colunas_resumo(esquema: EsquemaColunas) -> list[str]:
    """Colunas exibidas na tabela de resultados: endereço e depois sequência."""
    colunas = [esquema.endereco]
    if esquema.sequencia:
        colunas.append(esquema.sequencia)
    return colunas


# ===========================================================================
# Leitura
# ===========================================================================


def ler_planilha(arquivo: Path) -> pd.DataFrame:
    """Lê a primeira aba de um Excel ou um CSV delimitado.

    CSV: tenta ``utf-8-sig`` (BOM do Excel) e depois ``latin-1``; separador
    detectado automaticamente (vírgula ou ponto-e-vírgula).

    Args:
        arquivo: Caminho da planilha enviada.

    Returns:
        DataFrame com cabeçalhos sem espaços nas pontas e sem linhas vazias.

    Raises:
        ValueError: Extensão não suportada ou arquivo ilegível.
    """
    sufixo = arquivo.suffix.lower()
    if sufixo in _EXTENSOES_EXCEL:
        try:
            df = pd.read_excel(arquivo, sheet_name=0, dtype=object)
        except (OSError, ValueError) as exc:
            raise ValueError(f"Não foi possível ler {arquivo.name}: {exc}") from exc
    elif sufixo in _EXTENSOES_TEXTO:
        df = _ler_csv_com_fallback(arquivo)
    else:
        raise ValueError(
            f"Formato não suportado: '{arquivo.suffix}'. "
            f"Use {', '.join(_EXTENSOES_EXCEL + _EXTENSOES_TEXTO)}."
        )

    df.columns = [str(c).strip() for c in df.columns]
    df = df.dropna(how="all").reset_index(drop=True)
    log.info("  %s: %d linhas, colunas: %s", arquivo.name, len(df), list(df.columns))
    return df


def _ler_csv_com_fallback(arquivo: Path) -> pd.DataFrame:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return pd.read_csv(
                arquivo, encoding=encoding, sep=None, engine="python", dtype=str
            )
        except UnicodeDecodeError:
            continue
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
            raise ValueError(f"Não foi possível ler {arquivo.name}: {exc}") from exc
    raise ValueError(
        f"Não foi possível decodificar {arquivo.name} com UTF-8 nem latin-1."
    )


# ===========================================================================
# Exportação
# ===========================================================================


def nome_arquivo_exportacao(formato: str, data: date | None = None) -> str:
    """Nome do arquivo exportado: ``RotaSmart-DD-MM-AAAA.<formato>``."""
    formato = _validar_formato(formato)
    dia = data or date.today()
    return f"{PREFIXO_EXPORTACAO}-{dia.strftime('%d-%m-%Y')}.{formato}"


def exportar_planilha(
    df: pd.DataFrame,
    destino: Path,
    formato: str = "xlsx",
    data: date | None = None,
) -> Path:
    """Grava as linhas agrupadas em Excel ou CSV com data no nome.

    Args:
        df:      Linhas finais do pipeline.
        destino: Diretório de saída. Criado automaticamente se não existir.
        formato: ``"xlsx"`` ou ``"csv"``.
        data:    Data usada no nome do arquivo (padrão: hoje).

    Returns:
        :class:`~pathlib.Path` do arquivo gerado.
    """
    formato = _validar_formato(formato)
    destino.mkdir(parents=True, exist_ok=True)
    saida = destino / nome_arquivo_exportacao(formato, data)

    if formato == "xlsx":
        with pd.ExcelWriter(saida, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=ABA_EXPORTACAO, index=False)
    else:
        df.to_csv(saida, index=False, encoding="utf-8-sig")

    log.info("[EXPORTAR] %s (%d linhas)", saida, len(df))
    return saida


def _validar_formato(formato: str) -> str:
    valor = formato.strip().lower()
    if valor not in FORMATOS_EXPORTACAO:
        raise ValueError(
            f"Formato inválido: '{formato}'. Opções: {', '.join(FORMATOS_EXPORTACAO)}"
        )
    return valor


# ===========================================================================
# Entrypoint standalone: python -m rota.planilha
# ===========================================================================


if __name__ == "__main__":
    import argparse
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(
        prog="python -m rota.planilha",
        description="Lê uma planilha e exibe o esquema de colunas detectado.",
    )
    parser.add_argument("arquivo", type=Path, help="Planilha (.xlsx ou .csv)")
    args = parser.parse_args()

    try:
        df_lido = ler_planilha(args.arquivo)
        esquema_lido = descobrir_colunas(list(df_lido.columns))
    except ValueError as e:
        log.error("%s", e)
        sys.exit(1)

    for campo in fields(esquema_lido):
        print(f"{campo.name:<10}  {getattr(esquema_lido, campo.name) or '—'}")
    sys.exit(0)
