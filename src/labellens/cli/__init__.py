def main() -> None:
    """CLI entrypoint for the labellens console script."""
    from labellens.cli.app import app

    app()
