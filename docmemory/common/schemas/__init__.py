"""
docmemory Schemas

Document metadata records and the aggregated facts derived from them.
"""

from .document_record import (
    DocumentRecord,
    DocumentStatus,
    BusinessFolder,
    Signer,
    Party,
    FreeTextFields,
    TemplateAnalysis,
    folder_for_category,
    generate_record_id,
)
from .memory_fact import MemoryFact, Bucket, ALL_BUCKETS, DOCUMENTS_BUCKET
from .templates import render_bucket_markdown, render_fact, BUCKET_FILES, BUCKET_TITLES

__all__ = [
    "DocumentRecord",
    "DocumentStatus",
    "BusinessFolder",
    "Signer",
    "Party",
    "FreeTextFields",
    "TemplateAnalysis",
    "folder_for_category",
    "generate_record_id",
    "MemoryFact",
    "Bucket",
    "ALL_BUCKETS",
    "DOCUMENTS_BUCKET",
    "render_bucket_markdown",
    "render_fact",
    "BUCKET_FILES",
    "BUCKET_TITLES",
]
