"""Startup snapshot of the effective configuration with secrets redacted."""

from sqlalchemy.engine import make_url

from debitrecon.common.config import CommonSettings, settings
from debitrecon.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token")


def _display(field: str, value) -> str:
    if value is None or value == "":
        return "<unset>"
    if field == "postgres_dsn":
        return make_url(value).render_as_string(hide_password=True)
    if any(marker in field for marker in SECRET_MARKERS):
        return "<redacted>"
    return str(value)


def log_startup_config(fields: list[str], config: CommonSettings = settings) -> dict[str, str]:
    """Log selected settings (env-var style names) for quick troubleshooting."""

    snapshot = {"SERVICE_NAME": config.service_name}
    for field in fields:
        snapshot[field.upper()] = _display(field, getattr(config, field))
    logger.info("startup_config=%s", snapshot)
    return snapshot
