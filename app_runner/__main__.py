"""Allow ``python -m app_runner``."""

from app_runner.cli import run

if __name__ == "__main__":
    run()
