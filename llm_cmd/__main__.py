"""Allow running as `python -m llm_cmd`."""

from .cli import main

if __name__ == "__main__":
    main()
