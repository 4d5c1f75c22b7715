"""Application entrypoint: starts the sentinel service and Flask web app."""

import logging

from sentinel_cam.config import Config  # App configuration
from sentinel_cam.service import SentinelService  # Scan loop and camera feed
from sentinel_cam.web import create_app  # Flask app factory


def configure_logging(level_name: str) -> None:
    """Configure application logging."""
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    """Create the service and run the Flask development server."""
    configure_logging(Config.LOG_LEVEL)
    service = SentinelService()  # Instantiate service
    service.start()  # Arm immediately when SENTINEL_AUTO_ACTIVATE=1
    app = create_app(service)  # Build Flask app bound to the service
    try:
        # Use Flask's built-in server; suitable for local/LAN use
        app.run(host=Config.HOST, port=Config.PORT, debug=Config.DEBUG, threaded=True, use_reloader=False)
    finally:
        service.stop()


if __name__ == "__main__":
    main()
