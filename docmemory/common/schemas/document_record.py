"""
Document Record Schema

One record per organized document, parsed from the `<document>.metadata.json`
sidecar the extraction pipeline writes next to it.

Core principle: the sidecar shape is loose (every field optional, values of
any JSON type), the record is not. Everything the fact extraction rules read
is an explicit field, plus one open `critical_facts` string mapping.
"""

from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Dict, List, Optional
from enum import Enum

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import MalformedRecord


# ============================================================================
# Enums
# ============================================================================

class DocumentStatus(str, Enum):
    """Execution status of a document"""
    NOT_EXECUTED = "not_executed"
    PARTIALLY_EXECUTED = "partially_executed"
    EXECUTED = "executed"
    TEMPLATE = "template"


class BusinessFolder(str, Enum):
    """Top-level folders of the organized tree"""
    CORPORATE = "01_Corporate_and_Governance"
    PEOPLE = "02_People_and_Employment"
    FINANCE = "03_Finance_and_Investment"
    SALES = "04_Sales_and_Revenue"
    OPERATIONS = "05_Operations_and_Vendors"
    TECHNOLOGY = "06_Technology_and_IP"
    MARKETING = "07_Marketing_and_Partnerships"
    RISK = "08_Risk_and_Compliance"
    TEMPLATES = "09_Templates"
    ARCHIVE = "10_Archive"


# Category keyword -> folder, checked in order
_FOLDER_KEYWORDS = [
    (("template",), BusinessFolder.TEMPLATES),
    (("archive",), BusinessFolder.ARCHIVE),
    (("invest", "financ", "fundrais", "banking", "insurance", "tax"), BusinessFolder.FINANCE),
    (("employ", "people", "consult", "equity", "compensation"), BusinessFolder.PEOPLE),
    (("corporate", "governance", "formation", "founder", "board"), BusinessFolder.CORPORATE),
    (("sales", "customer", "revenue"), BusinessFolder.SALES),
    (("operation", "vendor", "facilit"), BusinessFolder.OPERATIONS),
    (("technology", "intellectual", "licens", "development", "security"), BusinessFolder.TECHNOLOGY),
    (("marketing", "partnership", "business_development", "brand"), BusinessFolder.MARKETING),
    (("risk", "compliance", "regulatory", "legal", "privacy"), BusinessFolder.RISK),
]


def folder_for_category(category: str) -> Optional[BusinessFolder]:
    """Map a classifier category (e.g. "Investment_Fundraising") to its folder."""
    lowered = category.lower()
    for folder in BusinessFolder:
        if lowered == folder.value.lower():
            return folder
    for keywords, folder in _FOLDER_KEYWORDS:
        if any(k in lowered for k in keywords):
            return folder
    return None


# ============================================================================
# Sub-models
# ============================================================================

class Signer(BaseModel):
    """A signature line, in document order"""
    name: str
    date_signed: Optional[str] = None


class Party(BaseModel):
    """A primary party to the document"""
    name: str
    organization: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    role: Optional[str] = None  # "Company", "Investor", "Employee", "Contractor", ...

    def identity(self) -> tuple:
        return (self.name.strip().lower(), (self.organization or "").lower(), (self.role or "").lower())


class FreeTextFields(BaseModel):
    """Narrative fields captured by the extraction pipeline"""
    business_context: Optional[str] = None
    key_terms: List[str] = Field(default_factory=list)
    obligations: List[str] = Field(default_factory=list)

    def texts(self) -> List[str]:
        parts = [self.business_context] if self.business_context else []
        return parts + list(self.key_terms) + list(self.obligations)


class TemplateAnalysis(BaseModel):
    """Template detection output"""
    is_template: bool = False
    confidence: Optional[str] = None  # "HIGH", "MEDIUM", "LOW"
    template_type: Optional[str] = None
    field_placeholders: List[str] = Field(default_factory=list)
    typical_use_case: Optional[str] = None


# ============================================================================
# Main Schema
# ============================================================================

def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(_stringify(v) for v in value)
    if isinstance(value, dict):
        return "; ".join(f"{k}: {_stringify(v)}" for k, v in value.items())
    return str(value)


class DocumentRecord(BaseModel):
    """
    Metadata record for one organized document.

    Immutable once built; re-extraction produces a new record with the same id.
    """
    model_config = {"frozen": True}

    id: str = Field(..., description="Document path relative to the organized root")
    filename: str
    category: str
    status: DocumentStatus

    signers: List[Signer] = Field(default_factory=list)
    primary_parties: List[Party] = Field(default_factory=list)
    effective_date: Optional[str] = None
    contract_value: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    critical_facts: Dict[str, str] = Field(default_factory=dict)
    free_text_fields: FreeTextFields = Field(default_factory=FreeTextFields)

    document_type: Optional[str] = None
    fully_executed_date: Optional[str] = None
    expiration_date: Optional[str] = None
    renewal_terms: Optional[str] = None
    notice_period: Optional[str] = None
    governing_law: Optional[str] = None
    financial_terms: Dict[str, str] = Field(default_factory=dict)
    template_analysis: Optional[TemplateAnalysis] = None
    notes: Optional[str] = None

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("filename", "category")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("critical_facts", "financial_terms", mode="before")
    @classmethod
    def _coerce_mapping(cls, value: Any) -> Dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("must be an object")
        return {str(k): _stringify(v) for k, v in value.items() if v is not None and v != ""}

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value: Any) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            value = [value]
        elif not isinstance(value, (list, tuple)):
            raise ValueError("must be a list of strings")
        seen = {}
        for tag in value:
            tag = str(tag).strip()
            if tag and tag.lower() not in seen:
                seen[tag.lower()] = tag
        return list(seen.values())

    @field_validator("primary_parties")
    @classmethod
    def _dedupe_parties(cls, value: List[Party]) -> List[Party]:
        unique = {}
        for party in value:
            unique.setdefault(party.identity(), party)
        return list(unique.values())

    @property
    def is_template(self) -> bool:
        if self.status == DocumentStatus.TEMPLATE:
            return True
        return bool(self.template_analysis and self.template_analysis.is_template)

    @property
    def folder(self) -> Optional[BusinessFolder]:
        return folder_for_category(self.category)

    @property
    def label(self) -> str:
        """Human label: document type, else the filename without extension"""
        return self.document_type or PurePath(self.filename).stem

    def party_names(self) -> List[str]:
        """Party, organization and signer names, in document order"""
        names = []
        for party in self.primary_parties:
            names.append(party.name)
            if party.organization:
                names.append(party.organization)
        names.extend(s.name for s in self.signers)
        return list(dict.fromkeys(n for n in names if n))

    @classmethod
    def from_metadata(
        cls,
        data: Dict[str, Any],
        record_id: str,
        updated_at: Optional[datetime] = None,
    ) -> "DocumentRecord":
        """
        Build a record from a raw sidecar dict.

        Sidecars keep business_context / key_terms / obligations at the top
        level; they are folded into free_text_fields here.

        Raises:
            MalformedRecord: required fields missing or of the wrong type
        """
        if not isinstance(data, dict):
            raise MalformedRecord("metadata must be a JSON object", source=record_id)

        missing = [k for k in ("filename", "status", "category") if not data.get(k)]
        if missing:
            raise MalformedRecord(f"missing required fields: {', '.join(missing)}", source=record_id)

        free_text = data.get("free_text_fields") or {}
        if not isinstance(free_text, dict):
            raise MalformedRecord("free_text_fields must be an object", source=record_id)
        free_text = dict(free_text)
        for key in ("business_context", "key_terms", "obligations"):
            if data.get(key) and not free_text.get(key):
                free_text[key] = data[key]

        fields = {k: v for k, v in data.items() if k in cls.model_fields and v is not None}
        fields["id"] = record_id
        fields["free_text_fields"] = free_text
        if updated_at is not None:
            fields["updated_at"] = updated_at

        try:
            return cls(**fields)
        except ValidationError as e:
            raise MalformedRecord(str(e), source=record_id) from e


def generate_record_id(document_path: PurePath, organized_root: PurePath) -> str:
    """
    Stable record id: the document path relative to the organized root.

    A path outside the root keeps only its file name.
    """
    try:
        relative = PurePath(document_path).relative_to(organized_root)
    except ValueError:
        relative = PurePath(PurePath(document_path).name)
    return relative.as_posix()
