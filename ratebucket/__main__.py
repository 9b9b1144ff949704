"""
Entry point for running ratebucket as a module: python -m ratebucket
"""

from ratebucket.cli.commands import app

if __name__ == "__main__":
    app()
