"""Import document staging and parsing."""

from gallery_importer.infrastructure.staging.file_source_stager import FileSourceStager
from gallery_importer.infrastructure.staging.json_payload_reader import (
    JsonPayloadReader,
    parse_document,
)

__all__ = ["FileSourceStager", "JsonPayloadReader", "parse_document"]
