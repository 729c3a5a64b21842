"""
Services package - Business logic and external API clients.

This package contains:
- Blob storage (local disk or S3) for uploaded files
- LLM client abstraction for multiple providers
- Document classification and record extraction
- Upload registry (state machine, candidates, delete)
- Classify/process pipeline runs
- Review and merge engine
- Audit logger
"""

from src.services.audit import AuditLogger, RequestMeta, compute_changed_fields
from src.services.classification import (
    Classification,
    ClassificationService,
    classification_view,
)
from src.services.extraction import (
    ExtractedItem,
    ExtractionResult,
    ExtractionService,
    normalize_date,
    summarize_counts,
)
from src.services.llm_client import (
    BaseLLMClient,
    ClaudeClient,
    GeminiClient,
    LLMAttachment,
    LLMError,
    LLMMessage,
    LLMParseError,
    LLMProvider,
    LLMRateLimitError,
    LLMResponse,
    MockLLMClient,
    get_llm_client,
)
from src.services.merge import MergeResult, ReviewMergeEngine, match_fields
from src.services.pipeline import DocumentPipeline, failure_message
from src.services.registry import DeletedUpload, UploadRegistry, validate_upload
from src.services.storage import (
    BlobNotFoundError,
    BlobStore,
    LocalBlobStore,
    S3BlobStore,
    StorageError,
    get_blob_store,
)

__all__ = [
    # Storage
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "StorageError",
    "BlobNotFoundError",
    "get_blob_store",
    # LLM Client
    "BaseLLMClient",
    "ClaudeClient",
    "GeminiClient",
    "MockLLMClient",
    "LLMAttachment",
    "LLMProvider",
    "LLMMessage",
    "LLMResponse",
    "LLMError",
    "LLMParseError",
    "LLMRateLimitError",
    "get_llm_client",
    # Classification
    "Classification",
    "ClassificationService",
    "classification_view",
    # Extraction
    "ExtractionService",
    "ExtractedItem",
    "ExtractionResult",
    "normalize_date",
    "summarize_counts",
    # Registry and pipeline
    "UploadRegistry",
    "DeletedUpload",
    "validate_upload",
    "DocumentPipeline",
    "failure_message",
    # Merge
    "ReviewMergeEngine",
    "MergeResult",
    "match_fields",
    # Audit
    "AuditLogger",
    "RequestMeta",
    "compute_changed_fields",
]
