"""Main entry point for stacksmith."""

from stacksmith.cli import app


def main() -> None:
    """Run the stacksmith CLI; with no arguments it starts the MCP server."""
    app()


if __name__ == "__main__":
    main()
