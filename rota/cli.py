"""
CLI unificado do Rota.

Subcomandos disponíveis::

    rota processar ARQUIVO [--sem-ia] [--geocodificar] [--timeout S]
                           [--formato xlsx|csv] [--destino DIR]
                           [--usuario U] [--creditos JSON] [--api-key KEY]
    rota agrupar   ARQUIVO [--formato xlsx|csv] [--destino DIR] [--sem-exportar]
    rota creditos  saldo USUARIO [--creditos JSON]
    rota creditos  adicionar USUARIO N [--creditos JSON]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

import pandas as pd

from rota.config import CORRECAO_TIMEOUT, CREDITOS_JSON, EXPORT_DIR, FORMATOS_EXPORTACAO

log = logging.getLogger(__name__)

_LINHAS_PREVIA = 10


# ===========================================================================
# Logging
# ===========================================================================


def _setup_logging(verbose: bool = False) -> None:
    """Configura logging do pipeline."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _imprimir_previa(df: pd.DataFrame, colunas: list[str]) -> None:
    """Exibe as primeiras linhas com as colunas da tabela de resultados."""
    print()
    print(df[colunas].head(_LINHAS_PREVIA).to_string(index=False))
    if len(df) > _LINHAS_PREVIA:
        print(f"... (+{len(df) - _LINHAS_PREVIA} linhas)")
    print()


# ===========================================================================
# Subcomando: processar (pipeline completo)
# ===========================================================================


def cmd_processar(args: argparse.Namespace) -> int:
    """Lê, agrupa, corrige, geocodifica e exporta (consumindo um crédito)."""
    from rota.creditos import CarteiraJson, CreditoInsuficiente, exportar_com_credito
    from rota.pipeline import processar_planilha
    from rota.planilha import colunas_resumo, ler_planilha

    log.info("=" * 60)
    log.info("Rota — Processamento de planilha")
    log.info("=" * 60)

    try:
        df = ler_planilha(Path(args.arquivo))
        resultado = processar_planilha(
            df,
            corrigir=not args.sem_ia,
            geocodificar=args.geocodificar,
            timeout=args.timeout,
            api_key=args.api_key,
        )
    except ValueError as e:
        log.error("%s", e)
        return 1

    for aviso in resultado.avisos:
        log.warning("%s", aviso)

    _imprimir_previa(resultado.linhas, colunas_resumo(resultado.esquema))
    print(f"Processamento concluído! {resultado.resumo}")

    if args.sem_exportar:
        return 0

    carteira = CarteiraJson(Path(args.creditos))
    try:
        saida = exportar_com_credito(
            resultado.linhas,
            carteira,
            args.usuario,
            Path(args.destino),
            formato=args.formato,
        )
    except CreditoInsuficiente as e:
        log.error("%s", e)
        return 1
    except ValueError as e:
        log.error("Erro ao exportar: %s", e)
        return 1
    except OSError as e:
        log.error("Erro ao gravar arquivo: %s", e)
        return 1

    print(f"Arquivo exportado: {saida}")
    print(f"Créditos restantes: {carteira.saldo(args.usuario)}")
    return 0


# ===========================================================================
# Subcomando: agrupar (sem chamadas externas)
# ===========================================================================


def cmd_agrupar(args: argparse.Namespace) -> int:
    """Agrupa por logradouro + número e exibe a prévia."""
    from rota.agrupamento import agrupar_por_endereco
    from rota.planilha import (
        colunas_resumo,
        descobrir_colunas,
        exportar_planilha,
        ler_planilha,
    )

    try:
        df = ler_planilha(Path(args.arquivo))
        if df.empty:
            raise ValueError("Planilha vazia ou sem dados válidos")
        esquema = descobrir_colunas(list(df.columns))
    except ValueError as e:
        log.error("%s", e)
        return 1

    agrupado = agrupar_por_endereco(df, esquema.endereco, esquema.sequencia)
    _imprimir_previa(agrupado, colunas_resumo(esquema))
    print(f"{len(agrupado)} endereços únicos de {len(df)} registros")

    if args.sem_exportar:
        return 0

    saida = exportar_planilha(agrupado, Path(args.destino), formato=args.formato)
    print(f"Arquivo gerado: {saida}")
    return 0


# ===========================================================================
# Subcomando: creditos
# ===========================================================================


def cmd_creditos(args: argparse.Namespace) -> int:
    """Consulta ou adiciona créditos na carteira local."""
    from rota.creditos import CarteiraJson

    carteira = CarteiraJson(Path(args.creditos))
    try:
        if args.acao == "adicionar":
            novo = carteira.adicionar(args.usuario, args.quantidade)
            print(f"+{args.quantidade} créditos adicionados. Novo saldo: {novo}")
        else:
            print(f"{args.usuario}: {carteira.saldo(args.usuario)} crédito(s)")
    except ValueError as e:
        log.error("%s", e)
        return 1
    return 0


# ===========================================================================
# Parser argparse
# ===========================================================================


def _build_parser() -> argparse.ArgumentParser:
    """Constrói o parser principal com todos os subcomandos."""
    parser = argparse.ArgumentParser(
        prog="rota",
        description="Preparação de rotas de entrega a partir de planilhas",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Exemplos:
  rota processar pedidos.xlsx --usuario ana          Pipeline completo + exportação
  rota processar pedidos.csv --sem-ia --formato csv  Sem correção por IA
  rota processar pedidos.xlsx --geocodificar         Resolve linhas sem lat/lon
  rota agrupar pedidos.xlsx --sem-exportar           Só a prévia do agrupamento
  rota creditos adicionar ana 5                      Adiciona 5 créditos
  rota creditos saldo ana                            Consulta o saldo
""",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Exibe logs de depuração (DEBUG)"
    )

    sub = parser.add_subparsers(dest="comando", required=True, metavar="COMANDO")

    # ------------------------------------------------------------ processar
    p_proc = sub.add_parser(
        "processar",
        help="Executa o pipeline completo e exporta",
        description=(
            "Agrupa por endereço, corrige via IA, valida coordenadas e "
            "exporta consumindo um crédito."
        ),
    )
    p_proc.add_argument("arquivo", metavar="ARQUIVO", help="Planilha .xlsx ou .csv")
    p_proc.add_argument(
        "--sem-ia",
        dest="sem_ia",
        action="store_true",
        help="Pula a correção de endereços e coordenadas",
    )
    p_proc.add_argument(
        "--geocodificar",
        action="store_true",
        help="Resolve coordenadas de linhas sem lat/lon via Nominatim",
    )
    p_proc.add_argument(
        "--timeout",
        type=float,
        default=CORRECAO_TIMEOUT,
        metavar="S",
        help=f"Prazo total da correção em segundos (padrão: {CORRECAO_TIMEOUT:.0f})",
    )
    p_proc.add_argument(
        "--api-key",
        dest="api_key",
        default=None,
        metavar="KEY",
        help="API key do LLM (padrão: env FIREWORKS_API_KEY)",
    )
    _args_exportacao(p_proc)
    p_proc.add_argument(
        "--usuario",
        default="local",
        help="Usuário cujo crédito será consumido (padrão: local)",
    )
    p_proc.add_argument(
        "--creditos",
        default=str(CREDITOS_JSON),
        metavar="JSON",
        help=f"Carteira de créditos (padrão: {CREDITOS_JSON})",
    )

    # -------------------------------------------------------------- agrupar
    p_agr = sub.add_parser(
        "agrupar",
        help="Agrupa pedidos por endereço, sem IA nem créditos",
        description="Agrupa por logradouro + número e mescla as sequências.",
    )
    p_agr.add_argument("arquivo", metavar="ARQUIVO", help="Planilha .xlsx ou .csv")
    _args_exportacao(p_agr)

    # ------------------------------------------------------------- creditos
    p_cred = sub.add_parser(
        "creditos",
        help="Consulta ou adiciona créditos na carteira local",
    )
    p_cred.add_argument("acao", choices=["saldo", "adicionar"])
    p_cred.add_argument("usuario", metavar="USUARIO")
    p_cred.add_argument("quantidade", type=int, nargs="?", default=1, metavar="N")
    p_cred.add_argument(
        "--creditos",
        default=str(CREDITOS_JSON),
        metavar="JSON",
        help=f"Carteira de créditos (padrão: {CREDITOS_JSON})",
    )

    return parser


def _args_exportacao(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--formato",
        choices=list(FORMATOS_EXPORTACAO),
        default="xlsx",
        help="Formato da planilha exportada (padrão: xlsx)",
    )
    p.add_argument(
        "--destino",
        default=str(EXPORT_DIR),
        metavar="DIR",
        help=f"Diretório de saída (padrão: {EXPORT_DIR})",
    )
    p.add_argument(
        "--sem-exportar",
        dest="sem_exportar",
        action="store_true",
        help="Apenas exibe o resultado, sem gravar arquivo",
    )


# ===========================================================================
# Dispatch e entry point
# ===========================================================================

_HANDLER_MAP: dict[str, Callable[[argparse.Namespace], int]] = {
    "processar": cmd_processar,
    "agrupar": cmd_agrupar,
    "creditos": cmd_creditos,
}


def main() -> None:
    """Entry point público — chamado por ``python -m rota`` e pelo script ``rota``."""
    parser = _build_parser()
    args = parser.parse_args()
    _setup_logging(verbose=args.verbose)

    handler = _HANDLER_MAP.get(args.comando)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(handler(args))
