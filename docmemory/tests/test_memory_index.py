"""
Tests for the extraction rules and MemoryIndex

Covers per-bucket extraction, idempotent ingest, retraction on re-ingest,
monotonic pruning, rebuild and subscriber notification.
"""

import pytest
from datetime import datetime, timedelta, timezone


def make_record(record_id, **fields):
    from docmemory.common.schemas import DocumentRecord
    data = {"filename": record_id.split("/")[-1], "status": "executed", "category": "Corporate_Governance"}
    data.update(fields)
    return DocumentRecord.from_metadata(data, record_id)


def ticking_clock():
    """Clock that advances one second per call"""
    state = {"now": datetime(2024, 1, 1, tzinfo=timezone.utc)}

    def _clock():
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return _clock


@pytest.fixture
def ein_letter():
    return make_record(
        "01_Corporate_and_Governance/EIN_Letter.pdf",
        document_type="EIN Confirmation Letter",
        critical_facts={"ein_number": "85-0989775", "state_of_incorporation": "Delaware"},
        primary_parties=[{"name": "Every Media, Inc.", "role": "Company", "address": "1 Main St, Wilmington DE"}],
    )


@pytest.fixture
def bo_ren_safe():
    return make_record(
        "03_Finance_and_Investment/SAFE_Bo_Ren.pdf",
        category="Investment_Fundraising",
        document_type="SAFE",
        contract_value="$25,000",
        effective_date="2024-01-16",
        expiration_date="indefinite",
        tags=["investment", "safe"],
        signers=[{"name": "Bo Ren", "date_signed": "2024-01-16"}, {"name": "Alex Kim"}],
        primary_parties=[
            {"name": "Bo Ren", "role": "Investor"},
            {"name": "Alex Kim", "organization": "Every Media, Inc.", "title": "CEO", "role": "Company"},
        ],
        critical_facts={"valuation_cap": "$10,000,000"},
    )


@pytest.fixture
def index():
    from docmemory.indexer import MemoryIndex
    return MemoryIndex(clock=ticking_clock())


class TestExtractionRules:
    def test_company_facts(self, ein_letter):
        from docmemory.indexer import extract_facts

        facts = extract_facts(ein_letter)

        assert facts[("company", "company ein number")] == "85-0989775"
        assert facts[("company", "company state of incorporation")] == "Delaware"
        assert facts[("company", "company legal name")] == "Every Media, Inc."
        assert facts[("company", "company address")] == "1 Main St, Wilmington DE"

    def test_ein_from_notes(self):
        from docmemory.indexer import extract_facts

        record = make_record("01/IRS.pdf", document_type="IRS EIN Notice", notes="Assigned EIN 12-3456789.")

        assert extract_facts(record)[("company", "company ein number")] == "12-3456789"

    def test_investment_facts(self, bo_ren_safe):
        from docmemory.indexer import extract_facts

        facts = extract_facts(bo_ren_safe)

        assert facts[("financial", "Bo Ren investment")] == "$25,000"
        assert facts[("financial", "Bo Ren valuation cap")] == "$10,000,000"
        assert facts[("people", "Bo Ren")] == "Investor"
        assert facts[("people", "Alex Kim")] == "Company (Every Media, Inc., CEO)"
        assert facts[("dates", "SAFE (Bo Ren) effective date")] == "2024-01-16"
        assert ("dates", "SAFE (Bo Ren) expiration date") not in facts
        assert facts[("contracts", "SAFE_Bo_Ren.pdf")].startswith("SAFE, executed, with Bo Ren")

    def test_counterparty_contract_value(self):
        from docmemory.indexer import extract_facts

        record = make_record(
            "04/MSA.pdf",
            category="Sales_Customer",
            contract_value="$120,000",
            primary_parties=[{"name": "Dana Lee", "organization": "Globex", "role": "Client"}],
        )

        assert extract_facts(record)[("financial", "Globex contract value")] == "$120,000"

    def test_unlisted_signers_become_people(self):
        from docmemory.indexer import extract_facts

        record = make_record("02/Offer.pdf", signers=[{"name": "Sam Park", "date_signed": "2024-02-01"}])

        assert extract_facts(record)[("people", "Sam Park")] == "Signer of Offer.pdf on 2024-02-01"

    def test_template_facts(self):
        from docmemory.indexer import extract_facts

        record = make_record(
            "09/NDA.docx",
            status="template",
            template_analysis={"is_template": True, "template_type": "Mutual_NDA",
                               "typical_use_case": "vendor conversations"},
        )
        facts = extract_facts(record)

        assert facts[("templates", "NDA.docx")] == "Mutual NDA template: vendor conversations"
        assert not any(bucket == "contracts" for bucket, _ in facts)


class TestIngest:
    def test_ingest_returns_affected_buckets(self, index, ein_letter):
        affected = index.ingest(ein_letter)

        assert affected == {"company", "contracts"}
        fact = index.get("company", "company ein number")
        assert fact.value == "85-0989775"
        assert fact.source_document_ids == frozenset({ein_letter.id})

    def test_ingest_is_idempotent(self, index, bo_ren_safe):
        index.ingest(bo_ren_safe)
        before = [(f.bucket, f.fact_key, f.source_values) for f in index.query()]
        version = index.snapshot_version()

        affected = index.ingest(bo_ren_safe)

        assert affected == set()
        assert index.snapshot_version() == version + 1
        assert index.bucket_version("financial") == version
        assert [(f.bucket, f.fact_key, f.source_values) for f in index.query()] == before

    def test_reingest_retracts_facts_no_longer_yielded(self, index, bo_ren_safe):
        index.ingest(bo_ren_safe)
        changed = bo_ren_safe.model_copy(update={"contract_value": None})

        affected = index.ingest(changed)

        assert "financial" in affected
        assert index.get("financial", "Bo Ren investment") is None
        assert index.get("financial", "Bo Ren valuation cap") is not None

    def test_remove_prunes_orphaned_facts(self, index, ein_letter, bo_ren_safe):
        index.ingest(ein_letter)
        index.ingest(bo_ren_safe)

        affected = index.remove(bo_ren_safe.id)

        assert "people" in affected
        assert index.get("people", "Bo Ren") is None
        # shared fact keeps its remaining source
        legal_name = index.get("company", "company legal name")
        assert legal_name.source_document_ids == frozenset({ein_letter.id})
        for fact in index.query():
            assert bo_ren_safe.id not in fact.source_document_ids

    def test_remove_restores_previous_value(self, index):
        first = make_record("01/A.pdf", critical_facts={"ein_number": "11-1111111"})
        second = make_record("01/B.pdf", critical_facts={"ein_number": "85-0989775"})
        index.ingest(first)
        index.ingest(second)
        assert index.get("company", "company ein number").value == "85-0989775"

        index.remove(second.id)

        assert index.get("company", "company ein number").value == "11-1111111"

    def test_remove_unknown_record_is_a_no_op(self, index, ein_letter):
        index.ingest(ein_letter)
        version = index.snapshot_version()

        assert index.remove("missing.pdf") == set()
        assert index.snapshot_version() == version + 1
        assert index.bucket_version("company") == version

    def test_query_is_sorted_and_filterable(self, index, ein_letter, bo_ren_safe):
        index.ingest(bo_ren_safe)
        index.ingest(ein_letter)

        facts = index.query()
        assert facts == sorted(facts, key=lambda f: (f.bucket, f.fact_key))

        company = index.query(bucket="company")
        assert {f.bucket for f in company} == {"company"}

        names = index.query(predicate=lambda f: "Bo Ren" in f.fact_key)
        assert {f.fact_key for f in names} >= {"Bo Ren", "Bo Ren investment"}


class TestVersionsAndSubscribers:
    def test_versions_are_monotonic(self, index, ein_letter, bo_ren_safe):
        assert index.snapshot_version() == 0
        index.ingest(ein_letter)
        v1 = index.snapshot_version()
        index.ingest(bo_ren_safe)
        v2 = index.snapshot_version()

        assert 0 < v1 < v2
        assert index.bucket_version("company") == v2
        assert index.bucket_version("financial") == v2

    def test_subscribers_receive_affected_buckets(self, index, ein_letter):
        notices = []
        unsubscribe = index.subscribe(notices.append)

        index.ingest(ein_letter)
        unsubscribe()
        index.remove(ein_letter.id)

        assert notices == [frozenset({"company", "contracts"})]

    def test_unchanged_ingest_bumps_snapshot_without_notifying(self, index, ein_letter):
        notices = []
        index.ingest(ein_letter)
        index.subscribe(notices.append)

        index.ingest(ein_letter)
        index.remove("missing.pdf")

        assert index.snapshot_version() == 3
        assert index.bucket_version("company") == 1
        assert notices == []

    def test_touch_bumps_foreign_buckets(self, index):
        notices = []
        index.subscribe(notices.append)

        index.touch({"documents"})

        assert index.bucket_version("documents") == index.snapshot_version() == 1
        assert notices == [frozenset({"documents"})]


class TestRebuild:
    def test_rebuild_fully_replaces(self, index, ein_letter, bo_ren_safe):
        index.ingest(ein_letter)

        index.rebuild([bo_ren_safe])

        assert index.get("company", "company ein number") is None
        assert index.get("financial", "Bo Ren investment") is not None

    def test_rebuild_is_idempotent(self, index, ein_letter, bo_ren_safe):
        index.rebuild([ein_letter, bo_ren_safe])
        snapshot = [(f.bucket, f.fact_key, f.source_values) for f in index.query()]

        affected = index.rebuild([ein_letter, bo_ren_safe])

        assert affected == set()
        assert [(f.bucket, f.fact_key, f.source_values) for f in index.query()] == snapshot

    def test_rebuild_matches_incremental_ingest(self, ein_letter, bo_ren_safe):
        from docmemory.indexer import MemoryIndex

        incremental = MemoryIndex()
        incremental.ingest(ein_letter)
        incremental.ingest(bo_ren_safe)
        rebuilt = MemoryIndex()
        rebuilt.rebuild([ein_letter, bo_ren_safe])

        assert [(f.bucket, f.fact_key, f.value) for f in incremental.query()] == \
               [(f.bucket, f.fact_key, f.value) for f in rebuilt.query()]


class TestLifecycle:
    def test_closed_index_raises(self, index, ein_letter):
        from docmemory.common.errors import IndexUnavailable

        index.ingest(ein_letter)
        index.close()

        with pytest.raises(IndexUnavailable):
            index.query()
        with pytest.raises(IndexUnavailable):
            index.ingest(ein_letter)

    def test_export_markdown(self, index, ein_letter, tmp_path):
        index.ingest(ein_letter)

        written = index.export_markdown(tmp_path / "memory")

        names = sorted(p.name for p in written)
        assert "company_info.md" in names and "people_directory.md" in names
        assert "85-0989775" in (tmp_path / "memory" / "company_info.md").read_text()
