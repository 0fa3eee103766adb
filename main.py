import asyncio
import argparse
import logging
import uvicorn
from core.config import load_settings
from api.rest import create_app

logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Fleet Deploy")
    parser.add_argument("--host", default="0.0.0.0", help="REST API host")
    parser.add_argument("--rest-port", type=int, default=8000, help="REST API port")
    parser.add_argument("--allowlist", default=None, help="Path to the allowlist YAML file")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    settings = load_settings()
    if args.allowlist:
        settings.allowlist_path = args.allowlist
    if args.log_level:
        settings.log_level = args.log_level.upper()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.gateway_token:
        logger.warning("RUNNER_TOKEN is not set, deploy operations will be refused")

    rest_app = create_app(settings)
    config = uvicorn.Config(rest_app, host=args.host, port=args.rest_port, log_level=settings.log_level.lower())
    server = uvicorn.Server(config)
    logger.info("REST API started on port %d", args.rest_port)
    try:
        await server.serve()
    except KeyboardInterrupt:
        logger.info("Shutting down server...")


if __name__ == "__main__":
    asyncio.run(main())
