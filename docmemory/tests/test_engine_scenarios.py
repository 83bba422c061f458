"""
Search Engine Scenario Tests

End-to-end runs over a small organized tree written under tmp_path:

- 01_Corporate_and_Governance/EIN_Letter.pdf   company EIN
- 03_Finance_and_Investment/SAFE_Bo_Ren.pdf     $25,000 SAFE from Bo Ren
- 03_Finance_and_Investment/SAFE_Chen_Wei.pdf   $50,000 SAFE from Chen Wei
- 09_Templates/Mutual_NDA.docx                  NDA template

Pipeline:
  rebuild_all -> MetadataStore.scan -> MemoryIndex.rebuild
  search      -> QueryProcessor -> ResultCache -> Ranker -> Synthesizer
"""

import json
import shutil
import pytest


# ============================================================================
# Document tree
# ============================================================================

EIN_LETTER = {
    "filename": "EIN_Letter.pdf",
    "status": "executed",
    "category": "Corporate_Governance",
    "document_type": "EIN Confirmation Letter",
    "critical_facts": {"ein_number": "85-0989775", "state_of_incorporation": "Delaware"},
    "primary_parties": [{"name": "Every Media, Inc.", "role": "Company"}],
}

SAFE_BO_REN = {
    "filename": "SAFE_Bo_Ren.pdf",
    "status": "executed",
    "category": "Investment_Fundraising",
    "document_type": "SAFE",
    "tags": ["investment", "safe"],
    "contract_value": "$25,000",
    "signers": [{"name": "Bo Ren", "date_signed": "2024-01-16"}, {"name": "Alex Kim"}],
    "primary_parties": [
        {"name": "Bo Ren", "role": "Investor"},
        {"name": "Alex Kim", "organization": "Every Media, Inc.", "role": "Company"},
    ],
    "business_context": "Pre-seed SAFE investment from Bo Ren",
}

# Free text deliberately avoids investment vocabulary
SAFE_CHEN_WEI = {
    "filename": "SAFE_Chen_Wei.pdf",
    "status": "executed",
    "category": "Investment_Fundraising",
    "document_type": "SAFE",
    "tags": ["investment", "safe"],
    "contract_value": "$50,000",
    "signers": [{"name": "Chen Wei"}],
    "primary_parties": [{"name": "Chen Wei", "role": "Investor"}],
    "business_context": "Signed after the demo day meeting",
}

NDA_TEMPLATE = {
    "filename": "Mutual_NDA.docx",
    "status": "template",
    "category": "Templates",
    "document_type": "Mutual NDA",
    "tags": ["nda", "template"],
    "template_analysis": {"is_template": True, "template_type": "Mutual_NDA"},
}

SAFE_BO_REN_ID = "03_Finance_and_Investment/SAFE_Bo_Ren.pdf"
SAFE_CHEN_WEI_ID = "03_Finance_and_Investment/SAFE_Chen_Wei.pdf"


def write_sidecar(root, relative_document, metadata):
    document = root / relative_document
    document.parent.mkdir(parents=True, exist_ok=True)
    document.write_bytes(b"%PDF-1.4")
    sidecar = document.parent / f"{document.name}.metadata.json"
    sidecar.write_text(json.dumps(metadata))
    return sidecar


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "organized"
    write_sidecar(root, "01_Corporate_and_Governance/EIN_Letter.pdf", EIN_LETTER)
    write_sidecar(root, SAFE_BO_REN_ID, SAFE_BO_REN)
    write_sidecar(root, SAFE_CHEN_WEI_ID, SAFE_CHEN_WEI)
    write_sidecar(root, "09_Templates/Mutual_NDA.docx", NDA_TEMPLATE)
    return root


@pytest.fixture
def engine(tree):
    from docmemory.indexer import MetadataStore
    from docmemory.retriever import SearchEngine
    return SearchEngine(MetadataStore(str(tree)))


def fact_keys(result):
    return [h.fact.fact_key for h in result.memory_hits]


# ============================================================================
# Scenarios
# ============================================================================

class TestCompanyFacts:
    @pytest.mark.asyncio
    async def test_ein_answered_from_memory(self, engine):
        await engine.rebuild_all()

        result = await engine.search("What is our EIN?")

        assert result.answer is not None
        assert "85-0989775" in result.answer.text
        ein = [h for h in result.memory_hits if h.fact.fact_key == "company ein number"]
        assert ein and ein[0].relevance == 1.0
        assert result.search_path.value == "hybrid"
        assert result.documents[0].record.filename == "EIN_Letter.pdf"
        assert result.documents[0].match_type.value == "exact"

    @pytest.mark.asyncio
    async def test_ein_from_single_pushed_record(self, tmp_path):
        from docmemory.common.schemas import DocumentRecord
        from docmemory.indexer import MetadataStore
        from docmemory.retriever import SearchEngine

        root = tmp_path / "organized"
        root.mkdir()
        engine = SearchEngine(MetadataStore(str(root)))
        record = DocumentRecord.from_metadata(
            {"filename": "EIN.pdf", "status": "executed", "category": "Corporate_Governance",
             "critical_facts": {"ein_number": "85-0989775"}},
            "01_Corporate_and_Governance/EIN.pdf",
        )

        await engine.ingest(record)
        result = await engine.search("What is the company's EIN?")

        assert "85-0989775" in result.answer.text
        assert result.answer.confidence >= 0.3

    @pytest.mark.asyncio
    async def test_bucket_restriction(self, engine):
        await engine.rebuild_all()

        result = await engine.search("What is our EIN?", engine.default_options(buckets=["people"]))

        assert fact_keys(result) == []


class TestInvestorLookup:
    @pytest.mark.asyncio
    async def test_bo_ren_investment(self, engine):
        await engine.rebuild_all()

        result = await engine.search("How much did Bo Ren invest?")

        assert "$25,000" in result.answer.text
        assert "Bo Ren investment" in fact_keys(result)
        assert "Chen Wei investment" not in fact_keys(result)
        # the other SAFE only matches on fields (0.5) and stays under 0.6
        assert [h.record.id for h in result.documents] == [SAFE_BO_REN_ID]
        assert result.documents[0].match_type.value == "party"

    @pytest.mark.asyncio
    async def test_threshold_one_keeps_full_matches(self, engine):
        await engine.rebuild_all()

        result = await engine.search("How much did Bo Ren invest?", engine.default_options(fuzzy_threshold=1.0))

        assert [h.record.id for h in result.documents] == [SAFE_BO_REN_ID]
        assert all(h.relevance == 1.0 for h in result.memory_hits)

    @pytest.mark.asyncio
    async def test_browse_mode_returns_everything(self, engine):
        await engine.rebuild_all()

        result = await engine.search("safe", engine.default_options(fuzzy_threshold=0.0, max_results=50))

        assert len(result.documents) == 4


class TestFilteredSearch:
    @pytest.mark.asyncio
    async def test_status_filter_alone(self, engine):
        await engine.rebuild_all()

        result = await engine.search("status:template")

        assert [h.record.id for h in result.documents] == ["09_Templates/Mutual_NDA.docx"]
        assert result.documents[0].match_reason == "filter: status=template"

    @pytest.mark.asyncio
    async def test_value_filter_excludes_smaller_investment(self, engine):
        await engine.rebuild_all()

        result = await engine.search("safe over $30k")

        ids = [h.record.id for h in result.documents]
        assert SAFE_CHEN_WEI_ID in ids
        assert SAFE_BO_REN_ID not in ids

    @pytest.mark.asyncio
    async def test_filters_are_part_of_the_cache_key(self, engine):
        await engine.rebuild_all()

        await engine.search("safe over $30k")
        result = await engine.search("safe under $30k")

        assert result.search_path.value != "cache"
        ids = [h.record.id for h in result.documents]
        assert SAFE_BO_REN_ID in ids
        assert SAFE_CHEN_WEI_ID not in ids


class TestEmptyAndInvalid:
    @pytest.mark.asyncio
    async def test_empty_index(self, tmp_path):
        from docmemory.indexer import MetadataStore
        from docmemory.retriever import SearchEngine

        root = tmp_path / "organized"
        root.mkdir()
        engine = SearchEngine(MetadataStore(str(root)))
        await engine.rebuild_all()

        result = await engine.search("What is our EIN?")

        assert result.is_empty
        assert result.answer is None
        assert result.search_path.value == "document_only"

    @pytest.mark.asyncio
    async def test_empty_query(self, engine):
        await engine.rebuild_all()

        for query in ("", "   ", "what is the"):
            result = await engine.search(query)
            assert result.is_empty
            assert result.search_path.value == "document_only"

    @pytest.mark.asyncio
    async def test_invalid_options_raise(self, engine):
        from docmemory.common.errors import InvalidQueryOptions

        with pytest.raises(InvalidQueryOptions):
            await engine.search("EIN", engine.default_options(fuzzy_threshold=2.0))

    @pytest.mark.asyncio
    async def test_closed_index_degrades_to_empty_result(self, engine, caplog):
        await engine.rebuild_all()
        engine.index.close()

        with caplog.at_level("WARNING", logger="docmemory.retriever.engine"):
            result = await engine.search("What is our EIN?", engine.default_options(use_cache=False))

        assert result.is_empty
        assert "degraded" in caplog.text


class TestCaching:
    @pytest.mark.asyncio
    async def test_repeat_query_is_served_from_cache(self, engine):
        await engine.rebuild_all()

        first = await engine.search("What is our EIN?")
        second = await engine.search("what is our  EIN")

        assert first.search_path.value == "hybrid"
        assert second.search_path.value == "cache"
        assert second.answer == first.answer
        assert "cache_lookup" in second.performance.stage_times_ms

    @pytest.mark.asyncio
    async def test_ingest_invalidates(self, engine):
        from docmemory.common.schemas import DocumentRecord

        await engine.rebuild_all()
        await engine.search("What is our EIN?")

        corrected = DocumentRecord.from_metadata(
            {**EIN_LETTER, "critical_facts": {"ein_number": "85-0989776"}},
            "01_Corporate_and_Governance/EIN_Letter.pdf",
        )
        await engine.ingest(corrected)
        result = await engine.search("What is our EIN?")

        assert result.search_path.value != "cache"
        assert "85-0989776" in result.answer.text

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses(self, engine):
        await engine.rebuild_all()
        options = engine.default_options(use_cache=False)

        await engine.search("What is our EIN?", options)
        result = await engine.search("What is our EIN?", options)

        assert result.search_path.value != "cache"
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_cached_result_matches_fresh_result(self, engine):
        await engine.rebuild_all()

        cached_path = await engine.search("How much did Bo Ren invest?")
        cached = await engine.search("How much did Bo Ren invest?")
        fresh = await engine.search("How much did Bo Ren invest?", engine.default_options(use_cache=False))

        assert cached.search_path.value == "cache"
        assert cached.record_ids() == fresh.record_ids() == cached_path.record_ids()
        assert fact_keys(cached) == fact_keys(fresh)


class TestWritePath:
    @pytest.mark.asyncio
    async def test_rebuild_is_a_full_replace(self, engine, tree):
        await engine.rebuild_all()
        (tree / f"{SAFE_CHEN_WEI_ID}.metadata.json").unlink()

        await engine.rebuild_all()

        assert SAFE_CHEN_WEI_ID not in engine.store
        assert engine.index.get("financial", "Chen Wei investment") is None
        assert engine.index.get("financial", "Bo Ren investment") is not None

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, engine):
        await engine.rebuild_all()
        before = [(f.bucket, f.fact_key, f.source_values) for f in engine.index.query()]

        affected = await engine.rebuild_all()

        assert affected == {"documents"}
        assert [(f.bucket, f.fact_key, f.source_values) for f in engine.index.query()] == before

    @pytest.mark.asyncio
    async def test_failed_rebuild_keeps_previous_state(self, engine, tree):
        from docmemory.common.errors import StoreReadError

        await engine.rebuild_all()
        facts = len(engine.index)
        shutil.rmtree(tree)

        with pytest.raises(StoreReadError):
            await engine.rebuild_all()

        assert len(engine.store) == 4
        assert len(engine.index) == facts

    @pytest.mark.asyncio
    async def test_malformed_sidecar_is_skipped(self, engine, tree, caplog):
        await engine.rebuild_all()
        broken = tree / "04_Sales_and_Revenue" / "Broken.pdf.metadata.json"
        broken.parent.mkdir()
        broken.write_text("{not json")

        with caplog.at_level("WARNING", logger="docmemory.retriever.engine"):
            affected = await engine.ingest_file(broken)

        assert affected == set()
        assert "Skipping malformed sidecar" in caplog.text
        assert len(engine.store) == 4

    @pytest.mark.asyncio
    async def test_rebuild_skips_sidecar_with_invalid_utf8(self, engine, tree, caplog):
        broken = tree / "04_Sales_and_Revenue" / "Garbled.pdf.metadata.json"
        broken.parent.mkdir()
        broken.write_bytes(b'{"filename": "\xff\xfe"}')

        with caplog.at_level("WARNING", logger="docmemory.indexer.metadata_store"):
            await engine.rebuild_all()

        assert len(engine.store) == 4
        assert "04_Sales_and_Revenue/Garbled.pdf" not in engine.store
        assert "not valid UTF-8" in caplog.text
        assert engine.index.get("company", "company ein number") is not None

    @pytest.mark.asyncio
    async def test_ingest_file_skips_sidecar_with_invalid_utf8(self, engine, tree):
        await engine.rebuild_all()
        broken = tree / "04_Sales_and_Revenue" / "Garbled.pdf.metadata.json"
        broken.parent.mkdir()
        broken.write_bytes(b'{"filename": "\xff\xfe"}')

        assert await engine.ingest_file(broken) == set()
        assert len(engine.store) == 4

    @pytest.mark.asyncio
    async def test_ingest_file_adds_record(self, engine, tree):
        await engine.rebuild_all()
        sidecar = write_sidecar(tree, "05_Legal_and_Compliance/NDA_Globex.pdf", {
            "filename": "NDA_Globex.pdf",
            "status": "executed",
            "category": "Legal_Compliance",
            "tags": ["nda"],
            "primary_parties": [{"name": "Dana Lee", "organization": "Globex", "role": "Client"}],
        })

        affected = await engine.ingest_file(sidecar)

        assert {"people", "contracts", "documents"} <= affected
        assert "05_Legal_and_Compliance/NDA_Globex.pdf" in engine.store

    @pytest.mark.asyncio
    async def test_remove_prunes_facts_and_documents(self, engine):
        await engine.rebuild_all()

        affected = await engine.remove(SAFE_BO_REN_ID)
        result = await engine.search("How much did Bo Ren invest?")

        assert {"financial", "people", "documents"} <= affected
        assert "Bo Ren investment" not in fact_keys(result)
        assert SAFE_BO_REN_ID not in result.record_ids()
        for fact in engine.index.query():
            assert SAFE_BO_REN_ID not in fact.source_document_ids


class TestLookups:
    @pytest.mark.asyncio
    async def test_statistics(self, engine):
        await engine.rebuild_all()

        stats = engine.statistics()

        assert stats.total_documents == 4
        assert stats.template_count == 1
        assert stats.by_category["Investment_Fundraising"] == 2

    @pytest.mark.asyncio
    async def test_find_document(self, engine):
        await engine.rebuild_all()

        assert engine.find_document("safe_bo_ren.pdf").record.id == SAFE_BO_REN_ID
        assert engine.find_document("SAFE_Bo_Ren").fuzzy is True
        assert engine.find_document("Quarterly_Board_Minutes_2019.xlsx") is None

    @pytest.mark.asyncio
    async def test_export_memory(self, engine, tree):
        await engine.rebuild_all()

        written = await engine.export_memory()

        assert {p.name for p in written} >= {"company_info.md", "financial_summary.md"}
        assert "$25,000" in (tree / "memory" / "financial_summary.md").read_text()

    @pytest.mark.asyncio
    async def test_context_manager_closes_index(self, tree):
        from docmemory.indexer import MetadataStore
        from docmemory.retriever import SearchEngine

        async with SearchEngine(MetadataStore(str(tree))) as engine:
            await engine.rebuild_all()

        assert engine.index.closed
        assert len(engine.cache) == 0
