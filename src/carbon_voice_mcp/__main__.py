"""Entry point for ``python -m carbon_voice_mcp``."""

from .cli import main

if __name__ == "__main__":
    main()
