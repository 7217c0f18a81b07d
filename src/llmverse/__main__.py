"""llmverse command line entry point."""

from llmverse.cli import app

if __name__ == "__main__":
    app()
