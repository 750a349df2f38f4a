"""Run reporting and failure logs for CMS migration."""

from cms_migration.reporting.error_log import ErrorLog
from cms_migration.reporting.report import RunReporter, StageStats

__all__ = ["ErrorLog", "RunReporter", "StageStats"]
