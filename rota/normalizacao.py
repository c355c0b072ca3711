"""
Normalização determinística de endereços e de texto.

Duas funções principais:

- :func:`normalizar_endereco` — chave de agrupamento "logradouro + número",
  descartando complementos (apartamento, bloco, casa, ponto de referência).
- :func:`normalizar_texto` — forma canônica para comparações aproximadas:
  sem acentos, minúsculas, abreviações expandidas, sem ruído.

Ambas são puras e nunca levantam exceção.
"""

import re
import unicodedata

import pandas as pd

# Padrão da chave de agrupamento: menor prefixo "texto + separador + dígitos"
_PADRAO_RUA_NUMERO = re.compile(r"^(.+?[,\s]+\d+)")

ABREVIACOES_LOGRADOURO: tuple[tuple[str, str], ...] = (
    (r"\bav\b", "avenida"),
    (r"\bavda\b", "avenida"),
    (r"\br\b", "rua"),
    (r"\brod\b", "rodovia"),
    (r"\btrav\b", "travessa"),
    (r"\btv\b", "travessa"),
    (r"\bestr\b", "estrada"),
    (r"\bal\b", "alameda"),
    (r"\bpca\b", "praca"),
)

#: Expressões de referência que não ajudam o geocodificador
RUIDOS: tuple[str, ...] = (
    "proximo a",
    "proximo",
    "perto de",
    "em frente ao",
    "ao lado de",
)

#: Siglas das UFs → nome por extenso (como o Nominatim devolve)
UF_PARA_ESTADO: dict[str, str] = {
    "ac": "Acre",
    "al": "Alagoas",
    "ap": "Amapá",
    "am": "Amazonas",
    "ba": "Bahia",
    "ce": "Ceará",
    "df": "Distrito Federal",
    "es": "Espírito Santo",
    "go": "Goiás",
    "ma": "Maranhão",
    "mt": "Mato Grosso",
    "ms": "Mato Grosso do Sul",
    "mg": "Minas Gerais",
    "pa": "Pará",
    "pb": "Paraíba",
    "pr": "Paraná",
    "pe": "Pernambuco",
    "pi": "Piauí",
    "rj": "Rio de Janeiro",
    "rn": "Rio Grande do Norte",
    "rs": "Rio Grande do Sul",
    "ro": "Rondônia",
    "rr": "Roraima",
    "sc": "Santa Catarina",
    "sp": "São Paulo",
    "se": "Sergipe",
    "to": "Tocantins",
}


def texto_limpo(valor: object) -> str:
    """Converte célula de planilha em texto: nulos/NaN viram ``""``, espaços colapsados."""
    if valor is None:
        return ""
    try:
        if bool(pd.isna(valor)):
            return ""
    except (TypeError, ValueError):
        pass
    if isinstance(valor, (list, tuple, dict, set)):
        return ""
    texto = str(valor).strip()
    if texto.lower() == "nan":
        return ""
    return re.sub(r"\s+", " ", texto)


def remover_acentos(texto: str) -> str:
    """Remove acentuação preservando caracteres ASCII básicos."""
    return "".join(
        c for c in unicodedata.normalize("NFKD", texto) if not unicodedata.combining(c)
    )


def normalizar_endereco(endereco: object) -> str:
    """Extrai a chave "logradouro + número" de um endereço bruto.

    Exemplos::

        "Rua Justo de Morais, 21, Casa"  -> "Rua Justo de Morais, 21"
        "Rua A, 10, Apto 2"              -> "Rua A, 10"
        "Travessa Sem Número"            -> "Travessa Sem Número"

    Args:
        endereco: Valor da célula de endereço (qualquer tipo).

    Returns:
        Chave de agrupamento; ``""`` para entrada vazia.
    """
    limpo = texto_limpo(endereco)
    if not limpo:
        return ""
    match = _PADRAO_RUA_NUMERO.match(limpo)
    if match:
        return match.group(1).strip()
    return limpo


def normalizar_texto(texto: object) -> str:
    """Forma canônica para comparação aproximada de logradouros e localidades.

    Remove acentos, passa para minúsculas, expande abreviações de logradouro
    (:data:`ABREVIACOES_LOGRADOURO`), descarta expressões de referência
    (:data:`RUIDOS`) e pontuação, exceto hífen e vírgula.
    """
    limpo = texto_limpo(texto)
    if not limpo:
        return ""
    resultado = remover_acentos(limpo).lower()
    for padrao, substituto in ABREVIACOES_LOGRADOURO:
        resultado = re.sub(padrao, substituto, resultado)
    for ruido in RUIDOS:
        resultado = re.sub(rf"\b{ruido}\b", "", resultado)
    resultado = re.sub(r"[^\w\s\-,]", "", resultado)
    return re.sub(r"\s+", " ", resultado).strip()


def expandir_uf(estado: object) -> str:
    """Troca sigla de UF pelo nome do estado; demais valores passam intactos."""
    limpo = texto_limpo(estado)
    return UF_PARA_ESTADO.get(limpo.lower(), limpo)
