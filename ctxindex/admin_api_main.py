import argparse
import logging
from pathlib import Path

import uvicorn

from .admin_api import create_app
from .config import configure_logging, load_config
from .workspace import WorkspaceSession

logger = logging.getLogger("ctxindex_admin_main")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Serve the ctxindex admin API")
    parser.add_argument("--config", type=Path, help="Path to a ctxindex JSON config file")
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    configure_logging(cfg)

    if not cfg.admin_enabled:
        logger.warning("Admin API is disabled in config (admin.enabled=false)")
        return

    session = WorkspaceSession(cfg)
    session.start()

    host = cfg.admin_host
    port = cfg.admin_port
    logger.info("Starting ctxindex admin API on %s:%s", host, port)
    logger.info("This API is intended for localhost-only access.")

    try:
        uvicorn.run(
            create_app(session),
            host=host,
            port=port,
            log_level=cfg.log_level.lower(),
        )
    finally:
        session.close()


if __name__ == "__main__":
    main()
