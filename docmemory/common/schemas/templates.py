"""
Memory Bucket Templates

Renders memory buckets to Markdown, one file per bucket. The files are a
human-readable export; the index itself is the source of truth.
"""

from datetime import datetime
from typing import Dict, Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from .memory_fact import MemoryFact


BUCKET_FILES: Dict[str, str] = {
    "company": "company_info.md",
    "people": "people_directory.md",
    "financial": "financial_summary.md",
    "dates": "key_dates_timeline.md",
    "templates": "templates_inventory.md",
    "contracts": "contracts_summary.md",
}

BUCKET_TITLES: Dict[str, str] = {
    "company": "Company Information",
    "people": "People Directory",
    "financial": "Financial Summary",
    "dates": "Key Dates Timeline",
    "templates": "Templates Inventory",
    "contracts": "Contracts Summary",
}

BUCKET_TEMPLATE = """# {title}

_Last updated: {generated_at}_
_Facts: {count}_

{body}
"""

FACT_TEMPLATE = """## {key}
{value}

Sources: {sources}
"""


def _format_sources(fact: "MemoryFact") -> str:
    return ", ".join(f"`{record_id}`" for record_id in sorted(fact.source_document_ids))


def render_fact(fact: "MemoryFact") -> str:
    """Render one fact as a Markdown section"""
    return FACT_TEMPLATE.format(
        key=fact.fact_key,
        value=fact.value or "(empty)",
        sources=_format_sources(fact),
    )


def render_bucket_markdown(
    bucket: str,
    facts: Iterable["MemoryFact"],
    generated_at: datetime,
) -> str:
    """
    Render a bucket to Markdown.

    Args:
        bucket: Bucket name
        facts: Facts of that bucket, already sorted by key
        generated_at: Timestamp printed in the header

    Returns:
        Markdown document
    """
    sections = [render_fact(f) for f in facts]
    body = "\n".join(sections) if sections else "- (no facts recorded)\n"
    return BUCKET_TEMPLATE.format(
        title=BUCKET_TITLES.get(bucket, bucket.title()),
        generated_at=generated_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
        count=len(sections),
        body=body,
    )
