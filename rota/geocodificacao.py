"""
Geocodificação de endereços via Nominatim (OpenStreetMap).

Dois usos distintos:

- **Validação de coordenadas** (:func:`validar_coordenadas`): linhas que já
  trazem latitude/longitude têm o endereço (possivelmente corrigido pelo
  LLM) geocodificado de novo; se o ponto encontrado estiver a mais de
  :data:`~rota.config.LIMIAR_DISTANCIA_M` metros, as coordenadas da
  planilha são substituídas.
- **Resolução estruturada** (:func:`resolver_endereco`): linhas sem
  coordenadas, mas com bairro/cidade/estado, passam por até três buscas:

  1. estruturada (logradouro + cidade + estado, restrita ao país);
  2. texto livre (endereço, bairro, cidade, estado) — só se 1 não achou;
  3. retry corretivo (logradouro + cidade) — só se algo foi achado mas não
     conferiu com a localidade esperada.

O ritmo de 1 req/s é garantido pelo :class:`~geopy.extra.rate_limiter.RateLimiter`.

Uso standalone::

    python -m rota.geocodificacao entregas.xlsx
    python -m rota.geocodificacao entregas.csv --forcar
"""

import logging
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal

import pandas as pd
from geopy.exc import GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim
from tqdm import tqdm

from rota.config import (
    LIMIAR_DISTANCIA_M,
    NOMINATIM_DELAY,
    NOMINATIM_TIMEOUT,
    NOMINATIM_USER_AGENT,
    PAIS_PADRAO,
    RAIO_TERRA_M,
)
from rota.normalizacao import expandir_uf, normalizar_texto, texto_limpo
from rota.planilha import EsquemaColunas

log = logging.getLogger(__name__)

StatusGeo = Literal["valid", "corrected", "pending", "mismatch"]

#: Callable no formato de ``Nominatim.geocode`` (ou o RateLimiter que o envolve)
Geocode = Callable[..., Any]

_ERROS_GEOCODER = (GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable)

#: Colunas criadas quando a planilha não tem latitude/longitude
COL_LAT_PADRAO = "LAT"
COL_LON_PADRAO = "LON"

COL_STATUS = "STATUS_GEO"
COL_NOTA = "NOTA_GEO"
COL_ENDERECO_GEO = "ENDERECO_GEO"
COL_BUSCA = "BUSCA_GEO"


@dataclass(frozen=True)
class ResultadoGeocodificacao:
    """Desfecho da resolução estruturada de uma linha."""

    status: StatusGeo
    latitude: float | None = None
    longitude: float | None = None
    endereco_corrigido: str = ""
    display_name: str = ""
    nota: str = ""
    busca_usada: str = ""


# ===========================================================================
# Infra
# ===========================================================================


def criar_geocodificador(
    user_agent: str = NOMINATIM_USER_AGENT,
    atraso: float = NOMINATIM_DELAY,
) -> Geocode:
    """Nominatim com 1 req/s; erros do provedor são propagados ao chamador."""
    geolocator = Nominatim(user_agent=user_agent, timeout=NOMINATIM_TIMEOUT)
    return RateLimiter(
        geolocator.geocode,
        min_delay_seconds=atraso,
        max_retries=0,
        swallow_exceptions=False,
    )


def distancia_haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distância de grande círculo em metros entre dois pontos (lat/lon em graus)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return RAIO_TERRA_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _numero(valor: object) -> float | None:
    """Converte célula em float aceitando vírgula decimal; inválido → ``None``."""
    texto = texto_limpo(valor).replace(",", ".")
    if not texto:
        return None
    try:
        numero = float(texto)
    except ValueError:
        return None
    return None if math.isnan(numero) else numero


def _campo(linha: dict, coluna: str | None) -> str:
    return texto_limpo(linha.get(coluna, "")) if coluna else ""


def _resumo(texto: str, limite: int = 30) -> str:
    return texto if len(texto) <= limite else texto[:limite] + "..."


# ===========================================================================
# Validação de coordenadas existentes
# ===========================================================================


def validar_coordenadas(
    linha: dict,
    esquema: EsquemaColunas,
    geocode: Geocode,
    limiar_m: float = LIMIAR_DISTANCIA_M,
) -> dict:
    """Substitui lat/lon da linha se o endereço geocodificado estiver longe.

    Só atua quando o esquema tem latitude e longitude e ambos os valores da
    linha são numéricos. Falhas de geocodificação mantêm a linha intacta.

    Args:
        linha:    Linha agrupada (possivelmente com endereço corrigido).
        esquema:  Esquema de colunas da planilha.
        geocode:  Callable no formato de ``Nominatim.geocode``.
        limiar_m: Distância máxima tolerada, em metros.

    Returns:
        Nova linha (a original não é alterada).
    """
    nova = dict(linha)
    if not esquema.tem_coordenadas:
        return nova

    lat = _numero(linha.get(esquema.latitude))
    lon = _numero(linha.get(esquema.longitude))
    endereco = _campo(linha, esquema.endereco)
    if lat is None or lon is None or not endereco:
        return nova

    cep = _campo(linha, esquema.cep)
    consulta = f"{endereco}, {cep}" if cep else endereco

    try:
        loc = geocode(consulta, exactly_one=True, country_codes=PAIS_PADRAO)
    except _ERROS_GEOCODER as exc:
        log.warning("  [GEO] Falha ao validar '%s': %s", _resumo(endereco), exc)
        return nova

    if not loc:
        log.debug("  [GEO] Sem resultado para '%s'", _resumo(endereco))
        return nova

    distancia = distancia_haversine(lat, lon, loc.latitude, loc.longitude)
    if distancia > limiar_m:
        nova[esquema.latitude] = loc.latitude
        nova[esquema.longitude] = loc.longitude
        log.info(
            "  [GEO] ✓ Coords corrigidas (%dm): '%s'", round(distancia), _resumo(endereco)
        )
    return nova


def validar_coordenadas_linhas(
    df: pd.DataFrame,
    esquema: EsquemaColunas,
    geocode: Geocode | None = None,
    cancelamento: threading.Event | None = None,
) -> pd.DataFrame:
    """Aplica :func:`validar_coordenadas` a todas as linhas, em sequência."""
    if not esquema.tem_coordenadas:
        return df

    geocode = geocode or criar_geocodificador()
    log.info("[GEO] Validando coordenadas de %d linha(s)...", len(df))

    saida: list[dict] = []
    for linha in tqdm(df.to_dict(orient="records"), desc="Validando", unit="end"):
        if cancelamento is not None and cancelamento.is_set():
            saida.append(linha)
            continue
        saida.append(validar_coordenadas(linha, esquema, geocode))
    return pd.DataFrame(saida, columns=df.columns)


# ===========================================================================
# Resolução estruturada
# ===========================================================================


def _contem(a: str, b: str) -> bool:
    return a in b or b in a


def endereco_confere(
    endereco_provedor: dict | None,
    bairro: str = "",
    cidade: str = "",
    estado: str = "",
    comparacao_legada: bool = False,
) -> bool:
    """Confere cidade, estado e bairro devolvidos pelo provedor com a planilha.

    Cada campo esperado vazio é aceito. Preenchido, o valor do provedor
    precisa existir e um conter o outro (sem acento, minúsculo). Siglas de
    UF são expandidas antes de comparar.

    Com ``comparacao_legada=True`` estado e bairro reproduzem a regra antiga,
    que comparava o valor esperado com ele mesmo: basta o provedor devolver
    qualquer valor.

    Args:
        endereco_provedor: Bloco ``address`` do resultado do Nominatim.
        bairro, cidade, estado: Localidade esperada (da planilha).
        comparacao_legada: Reproduz a regra antiga de estado/bairro.

    Returns:
        ``True`` apenas se cidade, estado e bairro conferem.
    """
    if endereco_provedor is None:
        return False

    obtido_cidade = normalizar_texto(
        endereco_provedor.get("city")
        or endereco_provedor.get("town")
        or endereco_provedor.get("village")
        or endereco_provedor.get("county")
        or ""
    )
    obtido_bairro = normalizar_texto(
        endereco_provedor.get("suburb") or endereco_provedor.get("neighbourhood") or ""
    )
    obtido_estado = normalizar_texto(endereco_provedor.get("state") or "")

    esp_cidade = normalizar_texto(cidade)
    esp_bairro = normalizar_texto(bairro)
    esp_estado = normalizar_texto(expandir_uf(estado))

    cidade_ok = not esp_cidade or bool(
        obtido_cidade and _contem(esp_cidade, obtido_cidade)
    )

    if comparacao_legada:
        estado_ok = not esp_estado or bool(obtido_estado)
        bairro_ok = not esp_bairro or bool(obtido_bairro)
    else:
        estado_ok = not esp_estado or bool(
            obtido_estado and _contem(esp_estado, obtido_estado)
        )
        bairro_ok = not esp_bairro or bool(
            obtido_bairro and _contem(esp_bairro, obtido_bairro)
        )

    return cidade_ok and estado_ok and bairro_ok


def _descrever_busca(prefixo: str, consulta: dict[str, str] | str) -> str:
    if isinstance(consulta, dict):
        return prefixo + "&".join(f"{k}={v}" for k, v in consulta.items())
    return prefixo + consulta


def _consultar(geocode: Geocode, consulta: dict[str, str] | str) -> Any:
    return geocode(
        consulta,
        exactly_one=True,
        addressdetails=True,
        country_codes=PAIS_PADRAO,
    )


def _bloco_endereco(loc: Any) -> dict | None:
    raw = getattr(loc, "raw", None) or {}
    endereco = raw.get("address") if isinstance(raw, dict) else None
    return endereco if isinstance(endereco, dict) else None


def resolver_endereco(
    linha: dict,
    esquema: EsquemaColunas,
    geocode: Geocode,
    comparacao_legada: bool = False,
) -> ResultadoGeocodificacao:
    """Resolve coordenadas de uma linha sem lat/lon, validando a localidade.

    Nunca levanta exceção do provedor: erros viram notas e o fluxo segue
    para a próxima busca ou termina em ``mismatch``/``pending``.

    Args:
        linha:   Linha da planilha.
        esquema: Esquema de colunas (endereço, bairro, cidade, estado).
        geocode: Callable no formato de ``Nominatim.geocode``.
        comparacao_legada: Ver :func:`endereco_confere`.

    Returns:
        :class:`ResultadoGeocodificacao` com status ``valid``, ``corrected``,
        ``mismatch`` ou ``pending``.
    """
    endereco = _campo(linha, esquema.endereco)
    bairro = _campo(linha, esquema.bairro)
    cidade = _campo(linha, esquema.cidade)
    estado = _campo(linha, esquema.estado)

    if not endereco:
        return ResultadoGeocodificacao(status="pending", nota="endereco-vazio")

    def confere(loc: Any) -> bool:
        return endereco_confere(
            _bloco_endereco(loc), bairro, cidade, estado, comparacao_legada
        )

    rua_norm = normalizar_texto(endereco)
    cidade_norm = normalizar_texto(cidade)
    estado_norm = normalizar_texto(expandir_uf(estado))

    notas: list[str] = []
    encontrado = None
    busca = ""

    # 1: estruturada (logradouro + cidade + estado)
    estruturada = {
        k: v
        for k, v in (("street", rua_norm), ("city", cidade_norm), ("state", estado_norm))
        if v
    }
    # sem parâmetros o Nominatim recusa a busca; segue direto para o texto livre
    if estruturada:
        busca = _descrever_busca("structured:", estruturada)
        try:
            encontrado = _consultar(geocode, estruturada)
        except _ERROS_GEOCODER as exc:
            notas.append("erro-na-requisicao-structured")
            log.warning(
                "  [GEO] Busca estruturada falhou '%s': %s", _resumo(endereco), exc
            )

    # 2: texto livre
    if not encontrado:
        livre = ", ".join(p for p in (endereco, bairro, cidade, estado) if p)
        busca = _descrever_busca("freetext:", livre)
        try:
            encontrado = _consultar(geocode, livre)
        except _ERROS_GEOCODER as exc:
            notas.append("erro-na-requisicao-freetext")
            log.warning("  [GEO] Busca livre falhou '%s': %s", _resumo(endereco), exc)

    if not encontrado:
        return ResultadoGeocodificacao(
            status="pending",
            endereco_corrigido=endereco,
            nota=";".join(notas) or "nao-encontrado",
            busca_usada=busca,
        )

    if confere(encontrado):
        return ResultadoGeocodificacao(
            status="valid",
            latitude=float(encontrado.latitude),
            longitude=float(encontrado.longitude),
            endereco_corrigido=encontrado.address or endereco,
            display_name=encontrado.address or "",
            nota="matches-planilha",
            busca_usada=busca,
        )

    # 3: retry corretivo (logradouro + cidade, sem estado)
    corretiva = {k: v for k, v in (("street", rua_norm), ("city", cidade_norm)) if v}
    retry = None
    if corretiva:
        busca = _descrever_busca("retry-corrected:", corretiva)
        try:
            retry = _consultar(geocode, corretiva)
        except _ERROS_GEOCODER as exc:
            notas.append("erro-na-requisicao-retry")
            log.warning(
                "  [GEO] Retry corretivo falhou '%s': %s", _resumo(endereco), exc
            )
            return ResultadoGeocodificacao(
                status="mismatch",
                endereco_corrigido=endereco,
                display_name=encontrado.address or "",
                nota=";".join(notas),
                busca_usada=busca,
            )

    if retry and confere(retry):
        return ResultadoGeocodificacao(
            status="corrected",
            latitude=float(retry.latitude),
            longitude=float(retry.longitude),
            endereco_corrigido=retry.address or endereco,
            display_name=retry.address or "",
            nota="retry-corrected-success",
            busca_usada=busca,
        )

    return ResultadoGeocodificacao(
        status="mismatch",
        endereco_corrigido=endereco,
        display_name=encontrado.address or "",
        nota="resultado-nao-coincide-com-cidade-bairro",
        busca_usada=busca,
    )


def geocodificar_pendentes(
    df: pd.DataFrame,
    esquema: EsquemaColunas,
    geocode: Geocode | None = None,
    comparacao_legada: bool = False,
    forcar: bool = False,
) -> pd.DataFrame:
    """Resolve, em sequência, as linhas sem coordenadas válidas.

    Entram na fila as linhas sem lat/lon numéricos que tenham ao menos uma
    dica de localidade (bairro, cidade ou estado) — ou todas, com *forcar*.
    Coordenadas resolvidas vão para as colunas de lat/lon do esquema (ou
    ``LAT``/``LON``, criadas quando ausentes). O diagnóstico fica em
    ``STATUS_GEO``, ``NOTA_GEO``, ``ENDERECO_GEO`` e ``BUSCA_GEO``.

    Returns:
        Cópia de *df* com as colunas de diagnóstico adicionadas.
    """
    col_lat = esquema.latitude or COL_LAT_PADRAO
    col_lon = esquema.longitude or COL_LON_PADRAO
    colunas = list(df.columns)
    for col in (col_lat, col_lon, COL_STATUS, COL_NOTA, COL_ENDERECO_GEO, COL_BUSCA):
        if col not in colunas:
            colunas.append(col)

    registros = df.to_dict(orient="records")
    fila = [
        i
        for i, linha in enumerate(registros)
        if (_numero(linha.get(col_lat)) is None or _numero(linha.get(col_lon)) is None)
        and (
            forcar
            or _campo(linha, esquema.bairro)
            or _campo(linha, esquema.cidade)
            or _campo(linha, esquema.estado)
        )
    ]
    log.info("[GEO] %d linha(s) sem coordenadas para resolver", len(fila))

    if fila and geocode is None:
        geocode = criar_geocodificador()

    contagem: dict[str, int] = {}
    for i in tqdm(fila, desc="Geocodificando", unit="end"):
        res = resolver_endereco(registros[i], esquema, geocode, comparacao_legada)
        contagem[res.status] = contagem.get(res.status, 0) + 1
        linha = registros[i]
        if res.latitude is not None and res.longitude is not None:
            linha[col_lat] = res.latitude
            linha[col_lon] = res.longitude
        linha[COL_STATUS] = res.status
        linha[COL_NOTA] = res.nota
        linha[COL_ENDERECO_GEO] = res.endereco_corrigido
        linha[COL_BUSCA] = res.busca_usada

    log.info("  Distribuição STATUS_GEO: %s", contagem)
    return pd.DataFrame(registros, columns=colunas)


# ===========================================================================
# Entrypoint standalone: python -m rota.geocodificacao
# ===========================================================================


def _build_arg_parser():  # type: ignore[return]
    import argparse

    parser = argparse.ArgumentParser(
        prog="python -m rota.geocodificacao",
        description="Resolve coordenadas das linhas sem latitude/longitude.",
    )
    parser.add_argument("arquivo", type=Path, help="Planilha (.xlsx ou .csv)")
    parser.add_argument(
        "--forcar",
        action="store_true",
        help="Resolve também linhas sem bairro/cidade/estado.",
    )
    parser.add_argument(
        "--saida",
        type=Path,
        default=None,
        metavar="CSV",
        help="CSV de saída (padrão: <arquivo>_geo.csv)",
    )
    return parser


if __name__ == "__main__":
    import sys

    from rota.planilha import descobrir_colunas, ler_planilha

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    args = _build_arg_parser().parse_args()
    try:
        df_lido = ler_planilha(args.arquivo)
        esquema_lido = descobrir_colunas(list(df_lido.columns))
    except ValueError as e:
        log.error("%s", e)
        sys.exit(1)

    df_geo = geocodificar_pendentes(df_lido, esquema_lido, forcar=args.forcar)
    saida = args.saida or args.arquivo.with_name(f"{args.arquivo.stem}_geo.csv")
    df_geo.to_csv(saida, index=False, encoding="utf-8-sig")
    print(f"\nGeocodificado salvo: {saida} ({len(df_geo)} linhas)")
    sys.exit(0)
