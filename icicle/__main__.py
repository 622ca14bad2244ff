# icicle/__main__.py
from icicle.cli import app


def main():
    """
    Main application
    """
    app()


if __name__ == "__main__":
    main()
