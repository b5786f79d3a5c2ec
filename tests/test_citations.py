"""Tests for citation search: merge, deduplication, enrichment and degradation."""

import asyncio

import pytest

from citechain.citations import search_citations, seed_outcomes_to_citation_inputs
from citechain.citations.context import AggregationContext, merge_citation
from citechain.core.errors import CitechainError, ErrorCode
from citechain.core.identifiers import citation_key
from citechain.core.models import (
    Citation,
    CitationInput,
    CitationSearchOptions,
    ResolutionOutcome,
    ResolvedReference,
)
from citechain.core.settings import CitationSettings
from citechain.search.semantic_scholar import PaperCitations


# ── Fakes & Factories ────────────────────────────────────────────────


def _cit(title="Study A", doi=None, **kw):
    return Citation(title=title, doi=doi, **kw)


def _copies(citations):
    return [c.model_copy(deep=True) for c in citations]


class FakeOpenAlex:
    def __init__(self, references=None, works=None, citing=None, error=None):
        self.references = references or {}
        self.works = works or {}
        self.citing = citing or {}
        self.error = error
        self.calls = []

    async def fetch_referenced_work_ids(self, openalex_ids):
        self.calls.append(("references", list(openalex_ids)))
        if self.error:
            raise self.error
        seen = {}
        for work_id in openalex_ids:
            for ref in self.references.get(work_id, []):
                seen.setdefault(ref, None)
        return list(seen)

    async def fetch_works(self, openalex_ids, chunk_size=100):
        self.calls.append(("works", list(openalex_ids)))
        return _copies(self.works[i] for i in openalex_ids if i in self.works)

    async def fetch_citing_works(self, openalex_id, page=1, per_page=100):
        self.calls.append(("citing", openalex_id, page))
        items = self.citing.get(openalex_id, [])
        batch = items[(page - 1) * per_page : page * per_page]
        return _copies(batch), len(batch), len(items)


class FakeSemanticScholar:
    def __init__(self, graph=None, abstracts=None, failing=()):
        self.graph = graph or {}
        self.abstracts = abstracts or {}
        self.failing = set(failing)
        self.calls = []
        self.abstract_calls = []

    async def fetch_citation_graph(self, s2_ids, references=True, citations=True):
        self.calls.append(list(s2_ids))
        if self.failing.intersection(s2_ids):
            raise CitechainError(ErrorCode.TOO_MANY_REQUESTS, "rate limited", provider="fake")
        papers = []
        for s2_id in s2_ids:
            if s2_id not in self.graph:
                continue
            refs, cites = self.graph[s2_id]
            papers.append(PaperCitations(
                s2_id=s2_id,
                references=_copies(refs) if references else [],
                citations=_copies(cites) if citations else [],
            ))
        return papers

    async def fetch_abstracts(self, ids, batch_size=400):
        self.abstract_calls.append(list(ids))
        return dict(self.abstracts)


def _search(inputs, openalex, s2, provider="both", direction="both", settings=None):
    options = CitationSearchOptions(provider=provider, direction=direction)
    return asyncio.run(search_citations(inputs, options, openalex, s2, settings))


# ── Combined Results ─────────────────────────────────────────────────


def test_combined_is_union_of_directions():
    a, b, c = _cit("A", "10.1/a"), _cit("B", "10.1/b"), _cit("C", "10.1/c")
    openalex = FakeOpenAlex(
        references={"w1": ["w10", "w11"]},
        works={"w10": a, "w11": b},
        citing={"w1": [b, c]},
    )
    result = _search([CitationInput(id="1", openalex_id="W1")], openalex, FakeSemanticScholar())

    assert [x.doi for x in result.backward] == ["10.1/a", "10.1/b"]
    assert [x.doi for x in result.forward] == ["10.1/b", "10.1/c"]
    assert [x.doi for x in result.combined] == ["10.1/a", "10.1/b", "10.1/c"]
    assert result.deduplication.direction_overlap == 1
    assert result.statistics.total_combined == 3

    combined_keys = {citation_key(x) for x in result.combined}
    for x in result.backward + result.forward:
        assert citation_key(x) in combined_keys


def test_combined_reuses_backward_record():
    shared = _cit("Shared", "10.1/s")
    openalex = FakeOpenAlex(references={"w1": ["w10"]}, works={"w10": shared}, citing={"w1": [shared]})
    result = _search([CitationInput(id="1", openalex_id="w1")], openalex, FakeSemanticScholar())
    assert result.combined[0].id == result.backward[0].id


# ── Cross-provider Merge ─────────────────────────────────────────────


def test_s2_abstract_wins_and_gaps_are_filled():
    openalex = FakeOpenAlex(
        references={"w1": ["w10"]},
        works={"w10": _cit("Paper A", "10.1/a", openalex_id="w10", abstract="OpenAlex abstract")},
    )
    s2 = FakeSemanticScholar(graph={
        "seed": ([_cit("Paper A", "10.1/A", s2_id="s2A", abstract="S2 abstract", authors=["Ada"])], []),
    })
    result = _search([CitationInput(id="1", openalex_id="W1", s2_id="seed")], openalex, s2)

    assert len(result.backward) == 1
    merged = result.backward[0]
    assert merged.abstract == "S2 abstract"
    assert merged.s2_id == "s2A"
    assert merged.openalex_id == "w10"
    assert merged.authors == ["Ada"]

    assert result.deduplication.backward_provider_overlap == 1
    assert result.deduplication.forward_provider_overlap == 0
    assert result.statistics.sources.openalex.backward == 1
    assert result.statistics.sources.semantic_scholar.backward == 0


def test_same_provider_repeat_is_not_provider_overlap():
    ref = _cit("Common Reference", "10.1/common")
    s2 = FakeSemanticScholar(graph={"p1": ([ref], []), "p2": ([ref], [])})
    inputs = [CitationInput(id="1", s2_id="p1"), CitationInput(id="2", s2_id="p2")]
    result = _search(inputs, FakeOpenAlex(), s2)

    assert len(result.backward) == 1
    assert result.deduplication.backward_provider_overlap == 0
    assert result.statistics.sources.semantic_scholar.backward == 1


def test_merge_citation_keeps_existing_abstract_unless_preferred():
    existing = _cit(abstract="kept", volume=None)
    incoming = _cit(abstract="ignored", volume="7", open_access=True)
    merge_citation(existing, incoming, prefer_incoming_abstract=False)
    assert existing.abstract == "kept"
    assert existing.volume == "7"
    assert existing.open_access is True


def test_aggregation_context_counts_inserts_only():
    context = AggregationContext(options=CitationSearchOptions())
    added, merged = context.add("openalex", "forward", [_cit("X", "10.1/x"), _cit("X", "10.1/x")])
    assert (added, merged) == (1, 1)
    assert context.sources.openalex.forward == 1
    assert context.forward_provider_overlap == 0


# ── Abstract Enrichment ──────────────────────────────────────────────


def test_s2_abstracts_fill_other_direction_by_doi():
    openalex = FakeOpenAlex(citing={"w1": [_cit("Cited Later", "10.1/c")]})
    s2 = FakeSemanticScholar(graph={
        "seed": ([_cit("Cited Later", "10.1/C", abstract="From S2 references")], []),
    })
    result = _search(
        [CitationInput(id="1", openalex_id="w1", s2_id="seed")], openalex, s2, direction="both"
    )
    assert result.forward[0].abstract == "From S2 references"
    assert s2.abstract_calls == []


def test_openalex_only_fetches_missing_abstracts():
    openalex = FakeOpenAlex(
        references={"w1": ["w10", "w11"]},
        works={
            "w10": _cit("No Abstract", "10.1/a"),
            "w11": _cit("Has Abstract", "10.1/b", abstract="Present"),
        },
    )
    s2 = FakeSemanticScholar(abstracts={"10.1/a": "Filled from Semantic Scholar"})
    result = _search(
        [CitationInput(id="1", openalex_id="w1")], openalex, s2, provider="openalex", direction="backward"
    )

    by_doi = {c.doi: c for c in result.backward}
    assert by_doi["10.1/a"].abstract == "Filled from Semantic Scholar"
    assert by_doi["10.1/b"].abstract == "Present"
    assert s2.abstract_calls == [["DOI:10.1/a"]]
    assert s2.calls == []


def test_abstract_lookup_prefers_s2_id():
    openalex = FakeOpenAlex(
        references={"w1": ["w10"]},
        works={"w10": _cit("Paper", "10.1/a", s2_id="s2x")},
    )
    s2 = FakeSemanticScholar(abstracts={"s2x": "By id", "10.1/a": "By DOI"})
    result = _search(
        [CitationInput(id="1", openalex_id="w1")], openalex, s2, provider="openalex", direction="backward"
    )
    assert result.backward[0].abstract == "By id"
    assert s2.abstract_calls == [["s2x"]]


# ── Options & Pagination ─────────────────────────────────────────────


def test_backward_only_skips_forward_calls():
    openalex = FakeOpenAlex(references={"w1": ["w10"]}, works={"w10": _cit("A", "10.1/a")})
    result = _search([CitationInput(id="1", openalex_id="w1")], openalex, FakeSemanticScholar(), direction="backward")
    assert result.forward == []
    assert not any(call[0] == "citing" for call in openalex.calls)


def test_semantic_scholar_only_skips_openalex():
    openalex = FakeOpenAlex()
    s2 = FakeSemanticScholar(graph={"p1": ([], [_cit("Citer", "10.1/z")])})
    result = _search(
        [CitationInput(id="1", openalex_id="w1", s2_id="p1")], openalex, s2, provider="semantic_scholar"
    )
    assert [c.doi for c in result.forward] == ["10.1/z"]
    assert openalex.calls == []
    assert result.statistics.sources.semantic_scholar.forward == 1


def test_forward_pagination_respects_page_ceiling():
    citing = [_cit(f"Citer {i}", f"10.1/{i}") for i in range(10)]
    openalex = FakeOpenAlex(citing={"w1": citing})
    settings = CitationSettings(forward_page_size=2, max_forward_pages=3)
    result = _search(
        [CitationInput(id="1", openalex_id="w1")], openalex, FakeSemanticScholar(),
        provider="openalex", direction="forward", settings=settings,
    )
    assert len(result.forward) == 6
    assert [c[2] for c in openalex.calls if c[0] == "citing"] == [1, 2, 3]


def test_forward_pagination_stops_on_short_page():
    citing = [_cit(f"Citer {i}", f"10.1/{i}") for i in range(3)]
    openalex = FakeOpenAlex(citing={"w1": citing})
    settings = CitationSettings(forward_page_size=2)
    result = _search(
        [CitationInput(id="1", openalex_id="w1")], openalex, FakeSemanticScholar(),
        provider="openalex", direction="forward", settings=settings,
    )
    assert len(result.forward) == 3
    assert [c[2] for c in openalex.calls if c[0] == "citing"] == [1, 2]


# ── Degradation ──────────────────────────────────────────────────────


def test_failed_s2_batch_is_skipped():
    graph = {f"p{i}": ([_cit(f"Ref {i}", f"10.1/r{i}")], []) for i in range(25)}
    s2 = FakeSemanticScholar(graph=graph, failing={"p0"})
    inputs = [CitationInput(id=str(i), s2_id=f"p{i}") for i in range(25)]
    result = _search(inputs, FakeOpenAlex(), s2, provider="semantic_scholar", direction="backward")

    assert [len(batch) for batch in s2.calls] == [20, 5]
    assert len(result.backward) == 5


def test_failed_openalex_references_keep_s2_results():
    openalex = FakeOpenAlex(error=CitechainError(ErrorCode.TIMEOUT, "slow"))
    s2 = FakeSemanticScholar(graph={"p1": ([_cit("Ref", "10.1/r")], [])})
    result = _search(
        [CitationInput(id="1", openalex_id="w1", s2_id="p1")], openalex, s2, direction="backward"
    )
    assert [c.doi for c in result.backward] == ["10.1/r"]


def test_failed_s2_graph_keeps_openalex_results():
    a, b = _cit("A", "10.1/a"), _cit("B", "10.1/b")
    openalex = FakeOpenAlex(references={"w1": ["w10"]}, works={"w10": a}, citing={"w1": [b]})
    s2 = FakeSemanticScholar(graph={"p1": ([_cit("Ref", "10.1/r")], [])}, failing={"p1"})
    result = _search([CitationInput(id="1", openalex_id="w1", s2_id="p1")], openalex, s2)

    assert s2.calls == [["p1"]]
    assert [c.doi for c in result.backward] == ["10.1/a"]
    assert [c.doi for c in result.forward] == ["10.1/b"]
    assert result.deduplication.backward_provider_overlap == 0
    assert result.deduplication.forward_provider_overlap == 0


def test_unexpected_error_waits_for_other_provider():
    class SlowOpenAlex(FakeOpenAlex):
        finished = False

        async def fetch_referenced_work_ids(self, openalex_ids):
            await asyncio.sleep(0.01)
            self.finished = True
            return []

    class BrokenSemanticScholar(FakeSemanticScholar):
        async def fetch_citation_graph(self, s2_ids, references=True, citations=True):
            raise RuntimeError("bug")

    openalex = SlowOpenAlex()
    with pytest.raises(CitechainError) as exc_info:
        _search(
            [CitationInput(id="1", openalex_id="w1", s2_id="p1")],
            openalex,
            BrokenSemanticScholar(),
            direction="backward",
        )
    assert exc_info.value.code == ErrorCode.INTERNAL_SERVER_ERROR
    assert openalex.finished is True


def test_unexpected_error_becomes_internal_server_error():
    openalex = FakeOpenAlex(error=RuntimeError("bug"))
    with pytest.raises(CitechainError) as exc_info:
        _search([CitationInput(id="1", openalex_id="w1")], openalex, FakeSemanticScholar())
    assert exc_info.value.code == ErrorCode.INTERNAL_SERVER_ERROR


def test_empty_input_returns_zero_result():
    openalex, s2 = FakeOpenAlex(), FakeSemanticScholar()
    result = _search([], openalex, s2)
    assert result.combined == []
    assert result.statistics.total_combined == 0
    assert result.deduplication.direction_overlap == 0
    assert openalex.calls == [] and s2.calls == []


# ── Seed Outcomes → Inputs ───────────────────────────────────────────


def test_seed_outcomes_to_citation_inputs():
    outcomes = [
        ResolutionOutcome(
            id="a",
            found=True,
            data=ResolvedReference(title="Found", doi="10.1/f", openalex_id="w5", s2_id="s5"),
        ),
        ResolutionOutcome(id="b", found=False),
    ]
    inputs = seed_outcomes_to_citation_inputs(outcomes)
    assert len(inputs) == 1
    assert inputs[0].id == "a"
    assert inputs[0].openalex_id == "w5"
    assert inputs[0].s2_id == "s5"
    assert inputs[0].doi == "10.1/f"
