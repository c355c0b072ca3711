"""
Constantes e caminhos centralizados para o pacote Rota.

Todas as demais etapas do pipeline devem importar daqui — nunca definir
constantes localmente para evitar divergências.
"""

import os
from pathlib import Path

# ===========================================================================
# Caminhos
# ===========================================================================

#: Diretório de trabalho local (fora do controle de versão)
DATA_DIR: Path = Path("data/rota")

#: Destino padrão das planilhas exportadas
EXPORT_DIR: Path = DATA_DIR / "exportacoes"

#: Carteira local de créditos usada pela CLI
CREDITOS_JSON: Path = DATA_DIR / "creditos.json"

# ===========================================================================
# Correção de endereços via LLM
# ===========================================================================

#: Endpoint compatível com OpenAI (chat/completions)
LLM_API_URL: str = os.environ.get(
    "ROTA_LLM_API_URL", "https://api.fireworks.ai/inference/v1/chat/completions"
)

#: Modelo usado na correção
LLM_MODEL: str = os.environ.get(
    "ROTA_LLM_MODEL", "accounts/fireworks/models/kimi-k2p5"
)

#: Variável de ambiente com a API key
LLM_API_KEY_ENV: str = "FIREWORKS_API_KEY"

#: Endereços por chamada ao LLM
LLM_BATCH_SIZE: int = 15

#: Tentativas totais por batch quando o provedor responde 429
LLM_TENTATIVAS: int = 3

#: Atraso base do backoff exponencial (segundos): base × 2^tentativa
LLM_ATRASO_BASE: float = 0.5

#: Pausa fixa entre batches (segundos)
LLM_PAUSA_ENTRE_BATCHES: float = 1.5

#: Timeout HTTP de cada chamada (segundos)
LLM_TIMEOUT_HTTP: float = 60.0

#: Temperatura da correção
LLM_TEMPERATURA: float = 0.3

#: Prazo total da fase de correção, imposto pelo chamador (segundos)
CORRECAO_TIMEOUT: float = 120.0

# ===========================================================================
# Geocodificação (Nominatim / OpenStreetMap)
# ===========================================================================

#: User-Agent identificador para o Nominatim (ToS exige string descritiva)
NOMINATIM_USER_AGENT: str = "RotaSmart-DeliveryOptimization/1.0"

#: Delay mínimo entre chamadas ao Nominatim (1 req/s conforme ToS)
NOMINATIM_DELAY: float = 1.1

#: Timeout de cada chamada ao Nominatim (segundos)
NOMINATIM_TIMEOUT: float = 10.0

#: Código de país usado para restringir as buscas
PAIS_PADRAO: str = "br"

#: Distância acima da qual as coordenadas da planilha são substituídas
LIMIAR_DISTANCIA_M: float = 200.0

#: Raio médio da Terra em metros (fórmula de Haversine)
RAIO_TERRA_M: float = 6_371_000.0

# ===========================================================================
# Exportação
# ===========================================================================

#: Prefixo do nome do arquivo exportado (seguido de DD-MM-AAAA)
PREFIXO_EXPORTACAO: str = "RotaSmart"

#: Nome da aba na planilha exportada
ABA_EXPORTACAO: str = "Agrupados por Endereço"

#: Formatos aceitos na exportação
FORMATOS_EXPORTACAO: tuple[str, ...] = ("xlsx", "csv")
