"""Tests for seed reference resolution with in-memory provider fakes."""

import asyncio

import pytest
from pydantic import ValidationError

from citechain.core.errors import CitechainError, ErrorCode
from citechain.core.identifiers import normalize_identifier
from citechain.core.models import Candidate, CandidateIds, ResolutionOutcome, SeedInput
from citechain.core.settings import ResolutionSettings
from citechain.resolution import resolve_seed_references, resolve_seed_references_with_stats
from citechain.resolution.context import build_context
from citechain.resolution.resolver import find_title_match


# ── Fakes & Factories ────────────────────────────────────────────────


class FakeProvider:
    """Serves candidates from memory; ``fail`` makes a method raise."""

    def __init__(self, candidates=(), title_results=None, fail=()):
        self.candidates = list(candidates)
        self.title_results = title_results
        self.fail = dict.fromkeys(fail, ErrorCode.TOO_MANY_REQUESTS) if not isinstance(fail, dict) else fail
        self.calls = []

    def _maybe_fail(self, name):
        error = self.fail.get(name)
        if isinstance(error, ErrorCode):
            raise CitechainError(error, f"{name} failed", provider="fake", operation=name)
        if error is not None:
            raise error

    async def lookup_by_identifiers(self, identifier_type, values):
        self.calls.append(("lookup", identifier_type, list(values)))
        self._maybe_fail("lookup")
        wanted = {normalize_identifier(identifier_type, v) for v in values}
        return [c.model_copy(deep=True) for c in self.candidates if c.identifier(identifier_type) in wanted]

    async def search_by_title(self, query, limit=20):
        self.calls.append(("search", query))
        self._maybe_fail("search")
        results = self.title_results if self.title_results is not None else self.candidates
        return [c.model_copy(deep=True) for c in results][:limit]


class FakeSemanticScholar(FakeProvider):
    async def lookup_by_identifiers(self, identifier_type, values):
        # Semantic Scholar has no OpenAlex id lookup
        if identifier_type == "openalex":
            self.calls.append(("lookup", identifier_type, list(values)))
            return []
        return await super().lookup_by_identifiers(identifier_type, values)


def _oa(title="Robotic Surgery Outcomes", doi="10.1000/a", openalex_id="w1", pmid=None, **kw):
    return Candidate(
        title=title,
        doi=doi,
        openalex_id=openalex_id,
        year=2020,
        ids=CandidateIds(doi=doi, pmid=pmid, openalex=openalex_id),
        **kw,
    )


def _s2(title="Robotic Surgery Outcomes", doi="10.1000/a", s2_id="s2-a", pmid=None, **kw):
    return Candidate(title=title, doi=doi, s2_id=s2_id, ids=CandidateIds(doi=doi, pmid=pmid), **kw)


def _resolve(refs, openalex, s2, settings=None):
    return asyncio.run(resolve_seed_references_with_stats(refs, openalex, s2, settings))


# ── Identifier Resolution ────────────────────────────────────────────


def test_exact_doi_match_with_s2_enrichment():
    refs = [SeedInput(id="r1", doi="https://doi.org/10.1000/A")]
    response = _resolve(refs, FakeProvider([_oa()]), FakeSemanticScholar([_s2()]))

    outcome = response.results[0]
    assert outcome.id == "r1"
    assert outcome.found is True
    assert outcome.searched_by_title is False
    assert outcome.data.doi == "10.1000/a"
    assert outcome.data.openalex_id == "w1"
    assert outcome.data.s2_id == "s2-a"
    assert response.deduplication == {}


def test_s2_enrichment_falls_back_to_pmid():
    refs = [SeedInput(id="r1", openalex="W1")]
    openalex = FakeProvider([_oa(doi=None, pmid="123")])
    s2 = FakeSemanticScholar([_s2(doi=None, pmid="123", s2_id="by-pmid")])
    response = _resolve(refs, openalex, s2)
    assert response.results[0].data.s2_id == "by-pmid"


def test_highest_priority_identifier_is_used():
    refs = [SeedInput(id="r1", doi="10.1000/a", pmid="999")]
    openalex = FakeProvider([_oa()])
    _resolve(refs, openalex, FakeSemanticScholar())
    assert openalex.calls[0] == ("lookup", "doi", ["10.1000/a"])


def test_openalex_failure_falls_through_to_s2():
    refs = [SeedInput(id="r1", doi="10.1000/a")]
    openalex = FakeProvider([_oa()], fail=["lookup"])
    response = _resolve(refs, openalex, FakeSemanticScholar([_s2()]))

    outcome = response.results[0]
    assert outcome.found is True
    assert outcome.data.s2_id == "s2-a"
    assert outcome.data.openalex_id is None


def test_identifier_miss_falls_back_to_s2_title_search():
    refs = [SeedInput(id="r1", doi="10.1000/zzz", title="Robotic surgery outcomes.")]
    s2 = FakeSemanticScholar(title_results=[_s2(doi="10.1000/other")])
    response = _resolve(refs, FakeProvider(), s2)

    outcome = response.results[0]
    assert outcome.found is True
    assert outcome.searched_by_title is True
    assert response.statistics.found_by_title == 1


def test_s2_enrichment_failure_keeps_openalex_match():
    refs = [SeedInput(id="r1", doi="10.1000/a"), SeedInput(id="r2", pmid="77")]
    openalex = FakeProvider([_oa(), _oa(doi=None, openalex_id="w2", pmid="77")])
    s2 = FakeSemanticScholar([_s2()], fail=["lookup"])
    response = _resolve(refs, openalex, s2)

    assert [r.found for r in response.results] == [True, True]
    assert [r.data.openalex_id for r in response.results] == ["w1", "w2"]
    assert all(r.data.s2_id is None for r in response.results)
    assert response.statistics.found_by_identifier == 2


def test_s2_lookups_are_chunked_by_batch_size():
    refs = [SeedInput(id=f"r{i}", doi=f"10.1/{i}") for i in range(5)]
    s2 = FakeSemanticScholar([_s2(doi=f"10.1/{i}", s2_id=f"s{i}") for i in range(5)])
    settings = ResolutionSettings(semantic_scholar_batch_size=2)
    response = _resolve(refs, FakeProvider(), s2, settings)

    assert all(r.found for r in response.results)
    lookups = [c for c in s2.calls if c[0] == "lookup"]
    assert [len(c[2]) for c in lookups] == [2, 2, 1]


def test_all_providers_failing_leaves_reference_not_found():
    refs = [SeedInput(id="r1", doi="10.1000/a", title="Robotic Surgery Outcomes")]
    openalex = FakeProvider(fail=["lookup"])
    s2 = FakeSemanticScholar(fail=["lookup", "search"])
    response = _resolve(refs, openalex, s2)

    assert len(response.results) == 1
    assert response.results[0].found is False
    assert response.results[0].data is None


# ── Title Resolution ─────────────────────────────────────────────────


def test_title_fallback_exact_normalized_match():
    refs = [
        SeedInput(id="t1", title="Deep Learning: A Review"),
        SeedInput(id="t2", title="Something Else Entirely"),
    ]
    openalex = FakeProvider(title_results=[
        _oa(title="Deep learning - a review.", doi="10.1/dl"),
        _oa(title="Deep learning, a review of reviews", doi="10.1/other"),
    ])
    response = _resolve(refs, openalex, FakeSemanticScholar())

    by_id = {r.id: r for r in response.results}
    assert by_id["t1"].found is True
    assert by_id["t1"].searched_by_title is True
    assert by_id["t1"].data.doi == "10.1/dl"
    assert by_id["t2"].found is False
    assert by_id["t2"].searched_by_title is True
    assert openalex.calls[0] == ("search", "Deep Learning: A Review OR Something Else Entirely")


def test_title_search_failure_is_isolated_per_reference():
    refs = [SeedInput(id="t1", title="Alpha Study"), SeedInput(id="t2", title="Beta Study")]

    class FlakyS2(FakeSemanticScholar):
        async def search_by_title(self, query, limit=20):
            if query == "Alpha Study":
                raise CitechainError(ErrorCode.TIMEOUT, "slow")
            return [_s2(title="Beta Study", doi="10.1/beta")]

    response = _resolve(refs, FakeProvider(fail=["search"]), FlakyS2())
    by_id = {r.id: r for r in response.results}
    assert by_id["t1"].found is False
    assert by_id["t2"].found is True


def test_find_title_match_first_wins():
    first = _oa(title="Same Title", doi="10.1/first")
    second = _oa(title="same title!", doi="10.1/second")
    assert find_title_match("SAME TITLE", [first, second]) is first
    assert find_title_match("", [first]) is None


# ── Deduplication ────────────────────────────────────────────────────


def test_duplicate_pmid_default_not_found():
    refs = [SeedInput(id="a", pmid="123"), SeedInput(id="b", pmid="PMID: 123")]
    openalex = FakeProvider([_oa(pmid="123")])
    response = _resolve(refs, openalex, FakeSemanticScholar())

    assert [r.id for r in response.results] == ["a", "b"]
    assert response.results[0].found is True
    assert response.results[1].found is False
    assert response.results[1].searched_by_title is False
    assert response.deduplication == {"pmid": 1}
    # Only one identifier value is looked up
    assert openalex.calls[0] == ("lookup", "pmid", ["123"])


def test_duplicate_pmid_inherits_outcome_when_enabled():
    refs = [SeedInput(id="a", pmid="123"), SeedInput(id="b", pmid="123")]
    settings = ResolutionSettings(inherit_duplicate_outcomes=True)
    response = _resolve(refs, FakeProvider([_oa(pmid="123")]), FakeSemanticScholar(), settings)

    a, b = response.results
    assert b.id == "b"
    assert b.found is True
    assert b.data == a.data
    assert response.deduplication == {"pmid": 1}


def test_labelled_doi_url_resolves_and_dedups():
    refs = [
        SeedInput(id="r1", doi="doi:https://doi.org/10.1000/A"),
        SeedInput(id="r2", doi="10.1000/a"),
    ]
    openalex = FakeProvider([_oa()])
    response = _resolve(refs, openalex, FakeSemanticScholar([_s2()]))

    r1, r2 = response.results
    assert r1.found is True
    assert r1.data.doi == "10.1000/a"
    assert r2.found is False
    assert response.deduplication == {"doi": 1}
    assert openalex.calls[0] == ("lookup", "doi", ["10.1000/a"])


def test_dedup_counts_per_type():
    refs = [
        SeedInput(id="1", doi="10.1/x"),
        SeedInput(id="2", doi="https://doi.org/10.1/X"),
        SeedInput(id="3", doi="doi:10.1/x"),
        SeedInput(id="4", pmcid="PMC5"),
        SeedInput(id="5", pmcid="5"),
    ]
    context = build_context(refs)
    assert context.deduplication["doi"] == 2
    assert context.deduplication["pmcid"] == 1
    assert len(context.identifier_refs["doi"]) == 1
    assert context.duplicate_of == {"2": "1", "3": "1", "5": "4"}


# ── Response Shape ───────────────────────────────────────────────────


def test_every_input_gets_one_outcome_in_order():
    refs = [
        SeedInput(id="x1", title="Unknown Paper"),
        SeedInput(id="x2"),
        SeedInput(id="x3", doi="10.1000/a"),
    ]
    response = asyncio.run(
        resolve_seed_references(refs, FakeProvider([_oa()]), FakeSemanticScholar())
    )
    assert [r.id for r in response.results] == ["x1", "x2", "x3"]
    assert [r.found for r in response.results] == [False, False, True]
    assert response.statistics is None
    for r in response.results:
        assert r.found == (r.data is not None)


def test_statistics():
    refs = [SeedInput(id="a", doi="10.1000/a"), SeedInput(id="b", doi="10.9/none")]
    response = _resolve(refs, FakeProvider([_oa()]), FakeSemanticScholar())
    stats = response.statistics
    assert stats.total_processed == 2
    assert stats.found_by_identifier == 1
    assert stats.not_found == 1
    assert stats.success_rate == pytest.approx(50.0)


def test_empty_input_makes_no_calls():
    openalex, s2 = FakeProvider(), FakeSemanticScholar()
    response = _resolve([], openalex, s2)
    assert response.results == []
    assert response.deduplication == {}
    assert openalex.calls == [] and s2.calls == []


def test_unexpected_error_becomes_internal_server_error():
    openalex = FakeProvider(fail={"lookup": RuntimeError("bug")})
    with pytest.raises(CitechainError) as exc_info:
        _resolve([SeedInput(id="a", doi="10.1/a")], openalex, FakeSemanticScholar())
    assert exc_info.value.code == ErrorCode.INTERNAL_SERVER_ERROR
    assert isinstance(exc_info.value.cause, RuntimeError)


def test_found_requires_data():
    with pytest.raises(ValidationError):
        ResolutionOutcome(id="x", found=True)
    with pytest.raises(ValidationError):
        ResolutionOutcome(id="x", found=False, data={"title": "T"})
