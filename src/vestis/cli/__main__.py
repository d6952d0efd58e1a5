"""CLI entry point for vestis.cli module.

Enables execution via: python -m vestis.cli
"""

from vestis.cli.sweep_generations import main

if __name__ == "__main__":
    main()
