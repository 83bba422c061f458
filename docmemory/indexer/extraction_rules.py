"""
Fact Extraction Rules

Versioned table of rules that turn one DocumentRecord into (bucket, key) ->
value facts. Bump RULESET_VERSION whenever a rule's output changes so that
persisted indexes can be rebuilt.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..common.errors import MalformedRecord
from ..common.schemas import DocumentRecord, DocumentStatus, Bucket

RULESET_VERSION = "3"

FactPairs = Iterable[Tuple[str, str]]

# critical_facts keys that describe the company itself
_COMPANY_FACT_RE = re.compile(
    r"(^|_)(ein|tin|tax|incorporat\w*|formation|formed|entity|address|state_of\w*|registered\w*|registration)(_|$)"
)
# critical_facts keys that describe money
_FINANCIAL_FACT_RE = re.compile(
    r"(^|_)(invest\w*|valuation\w*|discount\w*|amount|price|fees?|payments?|mfn\w*|cap|salary|compensation|rate|shares)(_|$)"
)
_EIN_RE = re.compile(r"\b\d{2}-\d{7}\b")
_INVESTMENT_RE = re.compile(r"invest|\bsafe\b|convertible|fundrais", re.IGNORECASE)
_OPEN_ENDED = {"indefinite", "perpetual", "none", "n/a", "na", "ongoing"}


@dataclass(frozen=True)
class ExtractionRule:
    """One rule: a bucket and the function producing its facts"""
    bucket: str
    name: str
    extract: Callable[[DocumentRecord], FactPairs]


# ============================================================================
# Helpers
# ============================================================================

def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text.replace("_", " ")).strip()


def _company_parties(record: DocumentRecord) -> List:
    return [p for p in record.primary_parties if (p.role or "").lower() == "company"]


def investor_name(record: DocumentRecord) -> Optional[str]:
    """Investor party, else the first signer not signing for the company"""
    for party in record.primary_parties:
        if (party.role or "").lower() == "investor":
            return party.name

    company_names = set()
    for party in _company_parties(record):
        company_names.add(party.name.lower())
        if party.organization:
            company_names.add(party.organization.lower())
    for signer in record.signers:
        if signer.name.lower() not in company_names:
            return signer.name
    return None


def counterparty_name(record: DocumentRecord) -> Optional[str]:
    """Client, customer or investor party, else any non-company party with an organization"""
    for party in record.primary_parties:
        if (party.role or "").lower() in ("client", "customer", "investor"):
            return party.organization or party.name
    for party in record.primary_parties:
        if (party.role or "").lower() not in ("company", "service provider") and party.organization:
            return party.organization
    return None


def is_investment(record: DocumentRecord) -> bool:
    if any((p.role or "").lower() == "investor" for p in record.primary_parties):
        return True
    haystack = " ".join([record.category, record.document_type or "", " ".join(record.tags)])
    return bool(_INVESTMENT_RE.search(haystack))


def _subject(record: DocumentRecord) -> str:
    """Document label qualified by its counterparty"""
    counterparty = counterparty_name(record)
    if counterparty:
        return f"{record.label} ({counterparty})"
    return record.label


# ============================================================================
# Rules
# ============================================================================

def _company_facts(record: DocumentRecord) -> FactPairs:
    for key, value in record.critical_facts.items():
        if _COMPANY_FACT_RE.search(key.lower()):
            label = _clean(key.lower())
            if not label.startswith("company"):
                label = f"company {label}"
            yield label, value

    # EIN confirmation letters sometimes carry the number only in the notes
    doc_type = (record.document_type or "").lower()
    if "ein" in doc_type.split() and not any("ein" in k.lower() for k in record.critical_facts):
        match = _EIN_RE.search(record.notes or "")
        if match:
            yield "company ein number", match.group(0)

    for party in _company_parties(record):
        yield "company legal name", party.organization or party.name
        if party.address:
            yield "company address", party.address


def _people_facts(record: DocumentRecord) -> FactPairs:
    listed = set()
    for party in record.primary_parties:
        listed.add(party.name.lower())
        # The company entity itself is not a person
        if (party.role or "").lower() == "company" and not party.organization:
            continue
        details = [d for d in (party.organization, party.title, party.email) if d]
        value = party.role or "Party"
        if details:
            value = f"{value} ({', '.join(details)})"
        yield _clean(party.name), value

    for signer in record.signers:
        if signer.name.lower() in listed:
            continue
        listed.add(signer.name.lower())
        value = f"Signer of {record.filename}"
        if signer.date_signed:
            value = f"{value} on {signer.date_signed}"
        yield _clean(signer.name), value


def _financial_facts(record: DocumentRecord) -> FactPairs:
    investment = is_investment(record)
    if investment:
        subject = investor_name(record) or record.label
    else:
        subject = counterparty_name(record) or record.label

    if record.contract_value:
        if investment:
            yield f"{subject} investment", record.contract_value
        else:
            yield f"{subject} contract value", record.contract_value

    for key, value in record.critical_facts.items():
        if _FINANCIAL_FACT_RE.search(key.lower()) and not _COMPANY_FACT_RE.search(key.lower()):
            yield f"{subject} {_clean(key.lower())}", value

    for key, value in record.financial_terms.items():
        yield f"{subject} {_clean(key.lower())}", value


def _date_facts(record: DocumentRecord) -> FactPairs:
    subject = _subject(record)
    if record.effective_date:
        yield f"{subject} effective date", record.effective_date
    if record.expiration_date and record.expiration_date.strip().lower() not in _OPEN_ENDED:
        yield f"{subject} expiration date", record.expiration_date
    if record.fully_executed_date:
        yield f"{subject} executed date", record.fully_executed_date
    if record.renewal_terms:
        yield f"{subject} renewal terms", record.renewal_terms


def _template_facts(record: DocumentRecord) -> FactPairs:
    if not record.is_template:
        return
    analysis = record.template_analysis
    kind = (analysis.template_type if analysis else None) or record.document_type or record.category
    value = f"{_clean(kind)} template"
    if analysis and analysis.typical_use_case:
        value = f"{value}: {analysis.typical_use_case}"
    yield record.filename, value


def _contract_facts(record: DocumentRecord) -> FactPairs:
    if record.status not in (DocumentStatus.EXECUTED, DocumentStatus.PARTIALLY_EXECUTED):
        return
    parts = [record.document_type or _clean(record.category), record.status.value.replace("_", " ")]
    counterparty = counterparty_name(record)
    if counterparty:
        parts.append(f"with {counterparty}")
    if record.tags:
        parts.append(f"tags: {', '.join(record.tags)}")
    yield record.filename, ", ".join(parts)


EXTRACTION_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule(Bucket.COMPANY.value, "company_identity", _company_facts),
    ExtractionRule(Bucket.PEOPLE.value, "parties_and_signers", _people_facts),
    ExtractionRule(Bucket.FINANCIAL.value, "money_terms", _financial_facts),
    ExtractionRule(Bucket.DATES.value, "key_dates", _date_facts),
    ExtractionRule(Bucket.TEMPLATES.value, "template_inventory", _template_facts),
    ExtractionRule(Bucket.CONTRACTS.value, "executed_contracts", _contract_facts),
)


def extract_facts(
    record: DocumentRecord,
    rules: Iterable[ExtractionRule] = EXTRACTION_RULES,
) -> Dict[Tuple[str, str], str]:
    """
    Apply every rule to a record.

    Later pairs with the same (bucket, key) overwrite earlier ones. Empty
    keys and values are dropped.

    Raises:
        MalformedRecord: a rule could not read the record
    """
    facts: Dict[Tuple[str, str], str] = {}
    for rule in rules:
        try:
            pairs = list(rule.extract(record))
        except (AttributeError, TypeError, ValueError) as e:
            raise MalformedRecord(f"rule {rule.name} failed: {e}", source=record.id) from e
        for key, value in pairs:
            key = key.strip()
            value = str(value).strip()
            if key and value:
                facts[(rule.bucket, key)] = value
    return facts
