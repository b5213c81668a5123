"""
Validation metadata for validated PDF documents.
"""

import io

from pypdf import PdfReader, PdfWriter

from .config import METADATA_PRODUCER, PDF_MEDIA_TYPE, logger
from .schemas import DocumentResult


class PdfMetadataWriter:
    """
    MetadataWriter that stamps title, subject and producer into a PDF.

    Best effort: non-PDF documents and any PDF that fails to load or save are
    returned unchanged.
    """

    async def write(self, content: bytes, media_type: str, result: DocumentResult) -> bytes:
        if media_type != PDF_MEDIA_TYPE:
            return content

        try:
            reader = PdfReader(io.BytesIO(content))
            writer = PdfWriter(clone_from=reader)
            writer.add_metadata({
                "/Title": f"VALIDATED: {result.file_name}",
                "/Subject": f"Validation Date: {result.processed_at.isoformat()}",
                "/Producer": METADATA_PRODUCER,
            })

            output = io.BytesIO()
            writer.write(output)
            return output.getvalue()
        except Exception as e:
            logger.error(f"Error writing metadata to {result.file_name}: {e}")
            return content
