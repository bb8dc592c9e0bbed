"""
CLI: comandos typer sobre lsxagent.core.
"""
