"""
Testes para rota.geocodificacao.

Cobre:
- distancia_haversine: zero, simetria, ordem de grandeza
- validar_coordenadas: limiar de 200 m, falhas do provedor, linha intacta
- endereco_confere: regra corrigida vs regra legada, UF por extenso
- resolver_endereco: estruturada → texto livre → retry corretivo
- geocodificar_pendentes: fila, colunas de diagnóstico
"""

import math
import threading

import pandas as pd
import pytest
from geopy.exc import GeocoderTimedOut, GeocoderUnavailable

from rota.geocodificacao import (
    COL_BUSCA,
    COL_NOTA,
    COL_STATUS,
    distancia_haversine,
    endereco_confere,
    geocodificar_pendentes,
    resolver_endereco,
    validar_coordenadas,
    validar_coordenadas_linhas,
)
from rota.planilha import EsquemaColunas

# Centro do Rio de Janeiro
LAT0, LON0 = -22.9068, -43.1729

NITEROI = {"suburb": "Icaraí", "city": "Niterói", "state": "Rio de Janeiro"}
SAO_GONCALO = {"suburb": "Alcântara", "city": "São Gonçalo", "state": "Rio de Janeiro"}


class GeocodeFalso:
    """Callable no formato de ``Nominatim.geocode`` com respostas em fila."""

    def __init__(self, *respostas: object) -> None:
        self.respostas = list(respostas)
        self.chamadas: list[tuple[object, dict]] = []

    def __call__(self, consulta: object, **kwargs: object) -> object:
        self.chamadas.append((consulta, kwargs))
        resposta = self.respostas.pop(0) if len(self.respostas) > 1 else self.respostas[0]
        if isinstance(resposta, Exception):
            raise resposta
        return resposta


def _deslocar_norte(metros: float) -> float:
    """Latitude a *metros* ao norte de LAT0 (mesmo meridiano)."""
    return LAT0 + math.degrees(metros / 6_371_000)


ESQUEMA_COORDS = EsquemaColunas(
    endereco="Endereço", cep="CEP", latitude="Latitude", longitude="Longitude"
)
ESQUEMA_LOCALIDADE = EsquemaColunas(
    endereco="Endereço", bairro="Bairro", cidade="Cidade", estado="UF"
)


def _linha_localidade(
    endereco: str = "Rua Moreira César, 100",
    bairro: str = "Icaraí",
    cidade: str = "Niterói",
    uf: str = "RJ",
) -> dict:
    return {"Endereço": endereco, "Bairro": bairro, "Cidade": cidade, "UF": uf}


# ===========================================================================
# distancia_haversine
# ===========================================================================


def test_haversine_zero_no_mesmo_ponto() -> None:
    assert distancia_haversine(LAT0, LON0, LAT0, LON0) == 0


def test_haversine_simetrica() -> None:
    ida = distancia_haversine(LAT0, LON0, -23.5505, -46.6333)
    volta = distancia_haversine(-23.5505, -46.6333, LAT0, LON0)
    assert ida == pytest.approx(volta)
    # Rio → São Paulo: ~360 km em linha reta
    assert 340_000 < ida < 380_000


def test_haversine_ao_longo_do_meridiano() -> None:
    assert distancia_haversine(LAT0, LON0, _deslocar_norte(250), LON0) == pytest.approx(250)


# ===========================================================================
# validar_coordenadas
# ===========================================================================


class TestValidarCoordenadas:
    def _linha(self, lat: object = LAT0, lon: object = LON0, cep: str = "") -> dict:
        return {"Endereço": "Rua A, 10", "CEP": cep, "Latitude": lat, "Longitude": lon}

    def test_acima_do_limiar_substitui(self, fazer_local) -> None:
        novo_lat = _deslocar_norte(250)
        geocode = GeocodeFalso(fazer_local(novo_lat, LON0))

        resultado = validar_coordenadas(self._linha(), ESQUEMA_COORDS, geocode)

        assert resultado["Latitude"] == pytest.approx(novo_lat)
        assert resultado["Longitude"] == pytest.approx(LON0)

    def test_abaixo_do_limiar_mantem(self, fazer_local) -> None:
        geocode = GeocodeFalso(fazer_local(_deslocar_norte(150), LON0))
        linha = self._linha()

        resultado = validar_coordenadas(linha, ESQUEMA_COORDS, geocode)

        assert resultado == linha

    def test_consulta_inclui_cep_e_pais(self, fazer_local) -> None:
        geocode = GeocodeFalso(fazer_local(LAT0, LON0))

        validar_coordenadas(self._linha(cep="24220-000"), ESQUEMA_COORDS, geocode)

        consulta, kwargs = geocode.chamadas[0]
        assert consulta == "Rua A, 10, 24220-000"
        assert kwargs["country_codes"] == "br"
        assert kwargs["exactly_one"] is True

    def test_virgula_decimal_aceita(self, fazer_local) -> None:
        novo_lat = _deslocar_norte(500)
        geocode = GeocodeFalso(fazer_local(novo_lat, LON0))

        resultado = validar_coordenadas(
            self._linha(lat="-22,9068", lon="-43,1729"), ESQUEMA_COORDS, geocode
        )

        assert resultado["Latitude"] == pytest.approx(novo_lat)

    @pytest.mark.parametrize("resposta", [None, GeocoderTimedOut("timeout")])
    def test_sem_resultado_ou_erro_mantem_linha(self, resposta: object) -> None:
        linha = self._linha()

        resultado = validar_coordenadas(linha, ESQUEMA_COORDS, GeocodeFalso(resposta))

        assert resultado == linha
        assert resultado is not linha

    def test_coordenadas_invalidas_nao_consulta(self) -> None:
        geocode = GeocodeFalso(None)

        validar_coordenadas(self._linha(lat="", lon="abc"), ESQUEMA_COORDS, geocode)

        assert geocode.chamadas == []

    def test_esquema_sem_coordenadas_nao_consulta(self) -> None:
        geocode = GeocodeFalso(None)

        validar_coordenadas({"Endereço": "Rua A, 10"}, EsquemaColunas("Endereço"), geocode)

        assert geocode.chamadas == []


def test_validar_linhas_respeita_cancelamento(fazer_local) -> None:
    df = pd.DataFrame(
        {"Endereço": ["Rua A, 10"], "CEP": [""], "Latitude": [LAT0], "Longitude": [LON0]}
    )
    cancelamento = threading.Event()
    cancelamento.set()
    geocode = GeocodeFalso(fazer_local(_deslocar_norte(1000), LON0))

    resultado = validar_coordenadas_linhas(df, ESQUEMA_COORDS, geocode, cancelamento)

    assert geocode.chamadas == []
    assert resultado["Latitude"].tolist() == [LAT0]


def test_validar_linhas_aplica_a_cada_linha(fazer_local) -> None:
    df = pd.DataFrame(
        {
            "Endereço": ["Rua A, 10", "Rua B, 20"],
            "CEP": ["", ""],
            "Latitude": [LAT0, LAT0],
            "Longitude": [LON0, LON0],
        }
    )
    novo_lat = _deslocar_norte(1000)
    geocode = GeocodeFalso(fazer_local(novo_lat, LON0))

    resultado = validar_coordenadas_linhas(df, ESQUEMA_COORDS, geocode)

    assert resultado["Latitude"].tolist() == pytest.approx([novo_lat, novo_lat])
    assert list(resultado.columns) == list(df.columns)


# ===========================================================================
# endereco_confere
# ===========================================================================


class TestEnderecoConfere:
    def test_confere_com_uf_por_extenso(self) -> None:
        assert endereco_confere(NITEROI, "Icaraí", "Niterói", "RJ")

    def test_contencao_em_qualquer_direcao(self) -> None:
        assert endereco_confere({"city": "Niterói"}, cidade="Niteroi RJ")
        assert endereco_confere({"city": "Niterói - RJ"}, cidade="niteroi")

    def test_cidade_divergente(self) -> None:
        assert not endereco_confere(SAO_GONCALO, cidade="Niterói")

    def test_cidade_do_provedor_em_town(self) -> None:
        assert endereco_confere({"town": "Maricá"}, cidade="Marica")

    def test_campos_esperados_vazios_conferem(self) -> None:
        assert endereco_confere({}, "", "", "")

    def test_campo_esperado_sem_valor_do_provedor(self) -> None:
        assert not endereco_confere({"state": "Rio de Janeiro"}, cidade="Niterói")

    def test_sem_bloco_de_endereco(self) -> None:
        assert not endereco_confere(None)

    def test_estado_e_bairro_divergentes_regra_corrigida(self) -> None:
        provedor = {"city": "Niterói", "state": "São Paulo", "suburb": "Centro"}
        assert not endereco_confere(provedor, "Icaraí", "Niterói", "RJ")

    def test_regra_legada_aceita_qualquer_estado_e_bairro(self) -> None:
        provedor = {"city": "Niterói", "state": "São Paulo", "suburb": "Centro"}
        assert endereco_confere(provedor, "Icaraí", "Niterói", "RJ", comparacao_legada=True)

    def test_regra_legada_exige_valor_do_provedor(self) -> None:
        provedor = {"city": "Niterói"}
        assert not endereco_confere(provedor, "Icaraí", "Niterói", "", comparacao_legada=True)


# ===========================================================================
# resolver_endereco
# ===========================================================================


class TestResolverEndereco:
    def test_estruturada_confere_valid(self, fazer_local) -> None:
        geocode = GeocodeFalso(fazer_local(LAT0, LON0, NITEROI, "Rua Moreira César, Niterói"))

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "valid"
        assert res.nota == "matches-planilha"
        assert (res.latitude, res.longitude) == (LAT0, LON0)
        assert res.endereco_corrigido == "Rua Moreira César, Niterói"
        assert len(geocode.chamadas) == 1
        consulta, kwargs = geocode.chamadas[0]
        assert consulta == {
            "street": "rua moreira cesar, 100",
            "city": "niteroi",
            "state": "rio de janeiro",
        }
        assert kwargs["addressdetails"] is True
        assert kwargs["country_codes"] == "br"
        assert res.busca_usada.startswith("structured:street=")

    def test_dicas_vazias_aceitam_primeiro_resultado(self, fazer_local) -> None:
        geocode = GeocodeFalso(fazer_local(LAT0, LON0))

        res = resolver_endereco(
            _linha_localidade(bairro="", cidade="", uf=""), ESQUEMA_LOCALIDADE, geocode
        )

        assert res.status == "valid"
        assert geocode.chamadas[0][0] == {"street": "rua moreira cesar, 100"}

    def test_texto_livre_quando_estruturada_nao_acha(self, fazer_local) -> None:
        geocode = GeocodeFalso(None, fazer_local(LAT0, LON0, NITEROI))

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "valid"
        assert len(geocode.chamadas) == 2
        assert geocode.chamadas[1][0] == "Rua Moreira César, 100, Icaraí, Niterói, RJ"
        assert res.busca_usada == "freetext:Rua Moreira César, 100, Icaraí, Niterói, RJ"

    def test_retry_corretivo_corrected(self, fazer_local) -> None:
        geocode = GeocodeFalso(
            fazer_local(-22.82, -43.05, SAO_GONCALO),
            fazer_local(-22.90, -43.11, NITEROI, "Rua Moreira César, Icaraí"),
        )

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "corrected"
        assert res.nota == "retry-corrected-success"
        assert (res.latitude, res.longitude) == (-22.90, -43.11)
        assert geocode.chamadas[1][0] == {"street": "rua moreira cesar, 100", "city": "niteroi"}
        assert res.busca_usada.startswith("retry-corrected:")

    def test_retry_tambem_diverge_mismatch(self, fazer_local) -> None:
        geocode = GeocodeFalso(
            fazer_local(-22.82, -43.05, SAO_GONCALO, "Rua X, São Gonçalo"),
            fazer_local(-22.83, -43.06, SAO_GONCALO),
        )

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "mismatch"
        assert res.nota == "resultado-nao-coincide-com-cidade-bairro"
        assert res.latitude is None and res.longitude is None
        assert res.display_name == "Rua X, São Gonçalo"

    def test_erro_no_retry_mismatch_com_nota(self, fazer_local) -> None:
        geocode = GeocodeFalso(
            fazer_local(-22.82, -43.05, SAO_GONCALO), GeocoderUnavailable("503")
        )

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "mismatch"
        assert res.nota == "erro-na-requisicao-retry"

    def test_nada_encontrado_pending(self) -> None:
        geocode = GeocodeFalso(None)

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "pending"
        assert res.nota == "nao-encontrado"
        assert res.latitude is None
        assert len(geocode.chamadas) == 2

    def test_erros_nas_duas_buscas_pending_com_notas(self) -> None:
        geocode = GeocodeFalso(GeocoderTimedOut("t1"), GeocoderTimedOut("t2"))

        res = resolver_endereco(_linha_localidade(), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "pending"
        assert res.nota == "erro-na-requisicao-structured;erro-na-requisicao-freetext"

    def test_endereco_vazio_pending_sem_consulta(self) -> None:
        geocode = GeocodeFalso(None)

        res = resolver_endereco(_linha_localidade(endereco=""), ESQUEMA_LOCALIDADE, geocode)

        assert res.status == "pending"
        assert res.nota == "endereco-vazio"
        assert geocode.chamadas == []

    def test_regra_legada_aceita_estado_divergente(self, fazer_local) -> None:
        provedor = {"suburb": "Centro", "city": "Niterói", "state": "São Paulo"}

        corrigida = resolver_endereco(
            _linha_localidade(),
            ESQUEMA_LOCALIDADE,
            GeocodeFalso(fazer_local(LAT0, LON0, provedor)),
        )
        legada = resolver_endereco(
            _linha_localidade(),
            ESQUEMA_LOCALIDADE,
            GeocodeFalso(fazer_local(LAT0, LON0, provedor)),
            comparacao_legada=True,
        )

        assert corrigida.status == "mismatch"
        assert legada.status == "valid"


# ===========================================================================
# geocodificar_pendentes
# ===========================================================================


def test_geocodificar_pendentes_preenche_colunas(fazer_local) -> None:
    df = pd.DataFrame(
        {
            "Endereço": ["Rua Moreira César, 100", "Rua Sem Dica, 5"],
            "Bairro": ["Icaraí", ""],
            "Cidade": ["Niterói", ""],
            "UF": ["RJ", ""],
        }
    )
    geocode = GeocodeFalso(fazer_local(LAT0, LON0, NITEROI))

    resultado = geocodificar_pendentes(df, ESQUEMA_LOCALIDADE, geocode)

    assert len(geocode.chamadas) == 1
    assert resultado.loc[0, "LAT"] == LAT0
    assert resultado.loc[0, "LON"] == LON0
    assert resultado.loc[0, COL_STATUS] == "valid"
    assert resultado.loc[0, COL_NOTA] == "matches-planilha"
    assert resultado.loc[0, COL_BUSCA].startswith("structured:")
    # linha sem dica de localidade fica fora da fila
    assert pd.isna(resultado.loc[1, COL_STATUS])
    assert list(resultado.columns)[:4] == list(df.columns)


def test_geocodificar_pendentes_forcar_inclui_sem_dica(fazer_local) -> None:
    df = pd.DataFrame({"Endereço": ["Rua Sem Dica, 5"], "Bairro": [""], "Cidade": [""], "UF": [""]})
    geocode = GeocodeFalso(fazer_local(LAT0, LON0))

    resultado = geocodificar_pendentes(df, ESQUEMA_LOCALIDADE, geocode, forcar=True)

    assert resultado.loc[0, COL_STATUS] == "valid"


def test_geocodificar_pendentes_ignora_linhas_com_coordenadas() -> None:
    esquema = EsquemaColunas(
        endereco="Endereço", latitude="Latitude", longitude="Longitude", cidade="Cidade"
    )
    df = pd.DataFrame(
        {"Endereço": ["Rua A, 1"], "Latitude": [LAT0], "Longitude": [LON0], "Cidade": ["Niterói"]}
    )
    geocode = GeocodeFalso(None)

    resultado = geocodificar_pendentes(df, esquema, geocode)

    assert geocode.chamadas == []
    assert resultado.loc[0, "Latitude"] == LAT0


def test_endereco_so_pontuacao_pula_busca_estruturada() -> None:
    geocode = GeocodeFalso(None)

    res = resolver_endereco(
        _linha_localidade(endereco="#", bairro="", cidade="", uf=""),
        ESQUEMA_LOCALIDADE,
        geocode,
    )

    assert res.status == "pending"
    assert [consulta for consulta, _ in geocode.chamadas] == ["#"]
    assert res.busca_usada == "freetext:#"


def test_retry_sem_parametros_nao_consulta(fazer_local) -> None:
    """Só o estado sobra na busca; o retry (rua + cidade) ficaria vazio."""
    geocode = GeocodeFalso(fazer_local(LAT0, LON0, {"state": "São Paulo"}))

    res = resolver_endereco(
        _linha_localidade(endereco="#", bairro="", cidade=""),
        ESQUEMA_LOCALIDADE,
        geocode,
    )

    assert res.status == "mismatch"
    assert [consulta for consulta, _ in geocode.chamadas] == [{"state": "rio de janeiro"}]
    assert {} not in [consulta for consulta, _ in geocode.chamadas]
