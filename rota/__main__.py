"""
Ponto de entrada de ``python -m rota``.

Delega imediatamente para :func:`rota.cli.main`, que constrói o parser
argparse e despacha para o subcomando correto.

Uso::

    python -m rota --help
    python -m rota processar pedidos.xlsx
    python -m rota agrupar pedidos.csv
"""

from rota.cli import main

if __name__ == "__main__":
    main()
