"""Run the facilitator with ``python -m facilitator``."""

from __future__ import annotations

import argparse
import os

import uvicorn

from .process import configure_logging, create_app


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Payment facilitator service")
    parser.add_argument("--config", default=None, help="Path to facilitator YAML (defaults to $FACILITATOR_CONFIG)")
    parser.add_argument("--host", default=os.getenv("FACILITATOR_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("FACILITATOR_PORT", "8402")))
    args = parser.parse_args(argv)

    configure_logging()
    uvicorn.run(create_app(config_path=args.config), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
