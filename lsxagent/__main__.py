"""
Punto de entrada: python -m lsxagent
"""

from lsxagent.cli.app import main

if __name__ == "__main__":
    main()
