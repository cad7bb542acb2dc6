"""Run the attestation verifier with ``python -m attestation``."""

from __future__ import annotations

import argparse
import os

import uvicorn

from .process import configure_logging, create_app


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Work-attestation verifier service")
    parser.add_argument("--config", default=None, help="Path to attestation YAML (defaults to $ATTESTATION_CONFIG)")
    parser.add_argument("--host", default=os.getenv("ATTESTATION_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("ATTESTATION_PORT", "8000")))
    args = parser.parse_args(argv)

    configure_logging()
    uvicorn.run(create_app(config_path=args.config), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
