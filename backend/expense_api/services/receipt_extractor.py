"""Receipt extraction over the remote model client.

Loads a stored receipt image, sends it to the model together with the
Polish receipt prompt and the strict ``receipt_extraction`` schema, and
returns the validated ``ReceiptExtraction``. The stored image is deleted
once the model has answered; a failed deletion is logged and otherwise
ignored so it never masks the extraction result.

Model client errors are not caught here. The pipeline's model step is
responsible for classifying them into public error codes.
"""

from __future__ import annotations

import base64
import logging
from typing import Optional

from expense_api.models.schemas import CompletionOptions, ReceiptExtraction, ResponseSchema
from expense_api.services.openrouter_client import OpenRouterClient
from expense_api.services.stores import BlobStore
from expense_api.utils.prompts import (
    RECEIPT_SCHEMA_NAME,
    build_image_user_message,
    get_receipt_extraction_prompt,
    get_receipt_extraction_schema,
)

logger = logging.getLogger(__name__)

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 2000


class OpenRouterReceiptExtractor:
    """``ReceiptExtractor`` backed by a blob store and ``OpenRouterClient``."""

    def __init__(
        self,
        blob_store: BlobStore,
        client: OpenRouterClient,
        model: Optional[str] = None,
        delete_after_processing: bool = True,
    ) -> None:
        self.blob_store = blob_store
        self.client = client
        self.model = model
        self.delete_after_processing = delete_after_processing

    def _options(self, image_b64: str) -> CompletionOptions:
        return CompletionOptions(
            system_message=get_receipt_extraction_prompt(),
            user_message=build_image_user_message(image_b64),
            response_schema=ResponseSchema(name=RECEIPT_SCHEMA_NAME, schema=get_receipt_extraction_schema()),
            model=self.model,
            temperature=EXTRACTION_TEMPERATURE,
            max_tokens=EXTRACTION_MAX_TOKENS,
        )

    async def extract(self, file_path: str) -> ReceiptExtraction | None:
        data = await self.blob_store.download(file_path)
        logger.info("[extractor] downloaded %s bytes=%d", file_path, len(data))
        image_b64 = base64.b64encode(data).decode("utf-8")

        result = await self.client.complete(self._options(image_b64), response_model=ReceiptExtraction)
        extraction = result.data
        if extraction is not None:
            logger.info("[extractor] model=%s items=%d", result.model, len(extraction.items))

        if self.delete_after_processing:
            await self._discard(file_path)
        return extraction

    async def _discard(self, file_path: str) -> None:
        try:
            await self.blob_store.remove(file_path)
        except Exception as exc:
            logger.warning("[extractor] failed to delete %s: %s", file_path, exc)
