import argparse
import sys

import uvicorn
from loguru import logger
from pydantic import ValidationError

from api.server import create_app
from core.config import Settings, load_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doxy", description="Build git branches into containers and proxy to them."
    )
    parser.add_argument(
        "--directory", help="The git directory from which to build images (DOXY_GIT_DIR)."
    )
    parser.add_argument("--host", help="Interface to listen on (DOXY_HOST).")
    parser.add_argument("--port", type=int, help="Port to listen on (DOXY_PORT, default 5000).")
    parser.add_argument(
        "--base-port", type=int, help="First host port handed to containers (DOXY_BASE_PORT)."
    )
    parser.add_argument(
        "--routing",
        choices=["subdomain", "path"],
        help="Route by subdomain or first path segment (DOXY_ROUTING_MODE).",
    )
    parser.add_argument(
        "--domain-suffix", help="Domain stripped from Host in subdomain routing (DOXY_DOMAIN_SUFFIX)."
    )
    return parser


def configure_logging(settings: Settings):
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level.upper(), rotation="1 MB")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            git_dir=args.directory,
            host=args.host,
            port=args.port,
            base_port=args.base_port,
            routing_mode=args.routing,
            domain_suffix=args.domain_suffix,
        )
    except ValidationError as e:
        for err in e.errors():
            field = ".".join(str(part) for part in err.get("loc", ()))
            if field == "git_dir" and err.get("type") == "missing":
                logger.error("Please specify a directory.")
            else:
                logger.error(f"Invalid setting {field}: {err.get('msg')}")
        return 1

    configure_logging(settings)
    logger.info(f"Starting doxy on {settings.host}:{settings.port}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
