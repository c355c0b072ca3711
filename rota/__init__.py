"""
Pacote Rota — preparação de rotas de entrega a partir de planilhas.

Módulos disponíveis:

- ``rota.config``         — constantes e caminhos centralizados
- ``rota.normalizacao``   — chave logradouro + número e texto canônico
- ``rota.planilha``       — leitura, esquema de colunas e exportação
- ``rota.agrupamento``    — agrupamento de pedidos por endereço
- ``rota.correcao_llm``   — correção de endereços em lote via LLM
- ``rota.geocodificacao`` — validação e resolução de coordenadas (Nominatim)
- ``rota.creditos``       — créditos pré-pagos que liberam a exportação
- ``rota.pipeline``       — orquestração ponta a ponta
"""

__version__ = "0.1.0"
