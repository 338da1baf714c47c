"""Entry point for `python -m oneupdate`."""

from oneupdate.cli.app import app


def main() -> None:
    """Run the OneUpdate command line."""

    app()


if __name__ == "__main__":
    main()
