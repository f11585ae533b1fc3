"""
Entry point for running deepshell as a module: python -m deepshell
"""

from deepshell.cli.commands import app

if __name__ == "__main__":
    app()
