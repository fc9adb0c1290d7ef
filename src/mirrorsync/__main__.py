"""Entry point for running mirrorsync via python -m mirrorsync"""

from .cli import main

if __name__ == "__main__":
    main()
