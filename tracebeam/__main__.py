"""Allow tracebeam to be executable through `python -m tracebeam`."""
from tracebeam.cli import app


if __name__ == "__main__":  # pragma: no cover
    app(prog_name="tracebeam")
