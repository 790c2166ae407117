"""Job log sinks."""

from gallery_importer.infrastructure.logs.file_job_log import FileJobLog

__all__ = ["FileJobLog"]
