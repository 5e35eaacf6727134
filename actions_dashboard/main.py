"""Entry point for the Actions dashboard server."""

import pathlib

from dotenv import load_dotenv

from actions_dashboard.app import create_app
from actions_dashboard.config import AppConfig


def main() -> None:
    env_path = pathlib.Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config = AppConfig.from_env()
    app = create_app(config)
    app.run(
        host=config.server_host,
        port=config.server_port,
        debug=config.debug,
        threaded=True,
    )


if __name__ == "__main__":
    main()
