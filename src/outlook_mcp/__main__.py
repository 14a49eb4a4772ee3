"""Entry point for running the server as a module.

Usage:
    python -m outlook_mcp serve
    python -m outlook_mcp --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from outlook_mcp.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
