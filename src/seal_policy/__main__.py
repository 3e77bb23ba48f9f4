"""Run a key server: ``python -m seal_policy``.

Reads :class:`~seal_policy.core.config.KeyServerConfig` from the
environment (and ``.env``) and serves the ASGI app with uvicorn, which is
installed by the ``server`` extra.
"""
from __future__ import annotations

import argparse
import logging
import sys

from seal_policy.core.config import KeyServerConfig
from seal_policy.core.errors import ConfigurationError
from seal_policy.server import KeyServer
from seal_policy.wire.asgi import create_asgi_app

logger = logging.getLogger("seal_policy")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="seal_policy", description="Seal policy key server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=2024)
    parser.add_argument("--env-file", default=None, help="dotenv file to load")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = KeyServerConfig.from_env(args.env_file)
    except ConfigurationError as exc:
        logger.error("%s (%s)", exc.message, exc.resolution or exc.code)
        return 2

    import uvicorn

    server = KeyServer(config)
    logger.info(
        "Serving key server %s on %s:%d (network %s, master key %s)",
        config.server_id,
        args.host,
        args.port,
        config.network,
        server.master_key_fingerprint(),
    )
    uvicorn.run(
        create_asgi_app(server),
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        lifespan="on",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
