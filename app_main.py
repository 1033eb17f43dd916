"""Application entry point for the CodeShare Classroom server."""

from __future__ import annotations

from codeshare_app.core.classroom_manager import ClassroomManager
from codeshare_app.core.services.idle_reaper import IdleSessionReaper
from codeshare_app.core.services.task_catalog import TaskCatalog
from codeshare_app.core.settings import ServerSettings
from codeshare_app.server.api_server import run_api_server
from codeshare_app.utils.logging_config import configure_logging


def main() -> None:
    """Load settings and the task catalog, then serve the API and session channel."""
    settings = ServerSettings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting CodeShare Classroom server…")

    catalog = TaskCatalog.from_file(settings.tasks_path)
    logger.info("Loaded %d task(s) from %s", catalog.get_task_count(), settings.tasks_path)

    manager = ClassroomManager(
        catalog=catalog,
        grace_period_seconds=settings.grace_period_seconds,
        idle_timeout_seconds=settings.idle_timeout_seconds,
    )
    reaper = IdleSessionReaper(manager, interval_seconds=settings.sweep_interval_seconds)
    logger.info("Teachers and students connect at http://%s:%d/", settings.host, settings.port)
    run_api_server(
        manager,
        reaper=reaper,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
