from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from relgraph.api.v1.schemas import CanonicalContact, JobHistoryRecord, SourceMetadata
from relgraph.core.config import Settings
from relgraph.core.errors import StoreTimeout, ValidationError
from relgraph.db.memory.store import InMemoryGraphStore
from relgraph.services.graph.construct import construct_graph
from relgraph.services.paths.finder import find_paths
from relgraph.services.paths.scoring import strongest_link


def _settings(**overrides) -> Settings:
    values = {"graph_store_backend": "memory", "default_source_confidence": 0.8, "path_result_limit": None}
    values.update(overrides)
    return Settings(**values)


async def _seed(store: InMemoryGraphStore, contacts: list[CanonicalContact]) -> None:
    await construct_graph(contacts, [], store=store, settings=_settings())


async def _person(session, key: str, name: str, confidence: float = 1.0) -> None:
    await session.upsert_node("Person", key, {"name": name, "confidence": confidence, "source_type": "manual", "trust": 1.0})


async def _worked_at(session, person: str, company: str, confidence: float, source_type: str = "linkedin") -> None:
    await session.upsert_relationship(
        "WORKED_AT",
        person,
        company,
        {
            "id": f"{person}_{company}_WORKED_AT",
            "source_type": source_type,
            "source_confidence": confidence,
            "trust": 0.9,
        },
    )


@pytest.mark.asyncio
async def test_two_hop_path_through_shared_employer() -> None:
    store = InMemoryGraphStore()
    await _seed(
        store,
        [
            CanonicalContact(
                name="Alice Chen",
                job_history=[{"company": "Acme", "startYear": 2010, "endYear": 2015}],
                source=SourceMetadata(type="linkedin"),
                confidence={"overall": 0.9},
            ),
            CanonicalContact(
                name="Bob Li",
                job_history=[{"company": "Acme", "startYear": 2015, "endYear": "present"}],
                source=SourceMetadata(type="linkedin"),
                confidence={"overall": 0.8},
            ),
        ],
    )

    paths = await find_paths("person_alice_chen", "person_bob_li", store=store, settings=_settings())

    assert len(paths) == 1
    result = paths[0]
    assert result.hops == 2
    assert len(result.path) == 5
    assert [element.kind for element in result.path] == ["node", "relationship", "node", "relationship", "node"]
    assert result.path[0].id == "person_alice_chen"
    assert result.path[2].id == "company_acme"
    assert result.path[4].id == "person_bob_li"
    assert result.path_id == (
        "person_alice_chen->person_alice_chen_company_acme_WORKED_AT_2010->company_acme"
        "->person_bob_li_company_acme_WORKED_AT_2015->person_bob_li"
    )
    assert result.sources == ["linkedin"]
    # 0.9 * 0.8 * (0.8 * 1.0) ** 2 * 0.85
    assert result.confidence == pytest.approx(0.39168)
    assert result.recommended_action == "Reach out to Bob Li directly and mention your overlapping time at Acme"


@pytest.mark.asyncio
async def test_shared_school_path_has_fractional_confidence() -> None:
    store = InMemoryGraphStore()
    await _seed(
        store,
        [
            CanonicalContact(name="Alice Chen", education=[{"school": "Harvard", "degree": "MBA", "graduationYear": 2010}]),
            CanonicalContact(name="Charlie Ross", education=[{"school": "Harvard", "graduationYear": 2016}]),
        ],
    )

    paths = await find_paths("person_alice_chen", "person_charlie_ross", store=store, settings=_settings())

    assert len(paths) == 1
    assert paths[0].path[2].id == "school_harvard"
    assert 0.0 < paths[0].confidence < 1.0
    assert "Harvard" in paths[0].recommended_action


@pytest.mark.asyncio
async def test_missing_endpoint_or_no_path_returns_empty() -> None:
    store = InMemoryGraphStore()
    await _seed(store, [CanonicalContact(name="Alice Chen"), CanonicalContact(name="Bob Li")])

    assert await find_paths("person_alice_chen", "person_ghost", store=store, settings=_settings()) == []
    assert await find_paths("person_alice_chen", "person_bob_li", store=store, settings=_settings()) == []
    assert await find_paths("person_alice_chen", "person_alice_chen", store=store, settings=_settings()) == []


@pytest.mark.asyncio
async def test_higher_confidence_path_ranks_first_and_limit_truncates() -> None:
    store = InMemoryGraphStore()
    async with store.session() as session:
        await _person(session, "person_a", "A")
        await _person(session, "person_b", "B")
        for company in ("company_acme", "company_beta"):
            await session.upsert_node("Company", company, {"name": company, "confidence": 1.0, "trust": 1.0})
        await _worked_at(session, "person_a", "company_beta", 0.9)
        await _worked_at(session, "person_b", "company_beta", 0.9)
        await _worked_at(session, "person_a", "company_acme", 0.5)
        await _worked_at(session, "person_b", "company_acme", 0.5)

    paths = await find_paths("person_a", "person_b", store=store, settings=_settings())

    assert [result.path[2].id for result in paths] == ["company_beta", "company_acme"]
    assert paths[0].confidence > paths[1].confidence

    limited = await find_paths("person_a", "person_b", store=store, limit=1, settings=_settings())
    assert len(limited) == 1
    assert limited[0].path[2].id == "company_beta"


@pytest.mark.asyncio
async def test_corroborating_sources_break_confidence_ties() -> None:
    store = InMemoryGraphStore()
    async with store.session() as session:
        await _person(session, "person_a", "A")
        await _person(session, "person_b", "B")
        for company in ("company_acme", "company_beta"):
            await session.upsert_node("Company", company, {"name": company, "confidence": 1.0, "trust": 1.0})
        await _worked_at(session, "person_a", "company_acme", 0.8)
        await _worked_at(session, "person_b", "company_acme", 0.8)
        await _worked_at(session, "person_a", "company_beta", 0.8, source_type="linkedin")
        await _worked_at(session, "person_b", "company_beta", 0.8, source_type="csv")

    paths = await find_paths("person_a", "person_b", store=store, settings=_settings())

    assert paths[0].confidence == paths[1].confidence
    assert paths[0].path[2].id == "company_beta"
    assert paths[0].sources == ["csv", "linkedin"]


@pytest.mark.asyncio
async def test_fewer_hops_win_at_equal_confidence() -> None:
    store = InMemoryGraphStore()
    async with store.session() as session:
        await _person(session, "person_a", "A")
        await _person(session, "person_b", "B")
        await session.upsert_relationship(
            "CONNECTED_VIA_MUTUAL",
            "person_a",
            "person_b",
            {"id": "person_a_person_b_CONNECTED_VIA_MUTUAL", "source_type": "linkedin", "source_confidence": 0.0},
        )
        await session.upsert_node("Company", "company_acme", {"name": "Acme", "confidence": 1.0})
        await _worked_at(session, "person_a", "company_acme", 0.0)
        await _worked_at(session, "person_b", "company_acme", 0.0)

    paths = await find_paths("person_a", "person_b", store=store, settings=_settings())

    assert [result.hops for result in paths] == [1, 2]
    assert paths[0].recommended_action == "Request a warm introduction to B through your mutual connections"


@pytest.mark.asyncio
async def test_max_hops_bounds_traversal_and_is_validated() -> None:
    store = InMemoryGraphStore()
    async with store.session() as session:
        for key in ("person_a", "person_b", "person_c"):
            await _person(session, key, key)
        for left, right in (("person_a", "person_b"), ("person_b", "person_c")):
            await session.upsert_relationship(
                "CONNECTED_VIA_MUTUAL",
                left,
                right,
                {"id": f"{left}_{right}_CONNECTED_VIA_MUTUAL", "source_type": "linkedin", "source_confidence": 0.9},
            )

    assert await find_paths("person_a", "person_c", store=store, max_hops=1, settings=_settings()) == []
    paths = await find_paths("person_a", "person_c", store=store, max_hops=2, settings=_settings())
    assert len(paths) == 1
    assert paths[0].recommended_action == "Ask person_b for a warm introduction to person_c"

    with pytest.raises(ValidationError):
        await find_paths("person_a", "person_c", store=store, max_hops=7, settings=_settings(path_max_hops_limit=6))


_NODES = [
    {"id": "person_a", "variant": "Person", "name": "A", "confidence": 1.0},
    {"id": "company_acme", "variant": "Company", "name": "Acme", "confidence": 1.0},
    {"id": "person_b", "variant": "Person", "name": "B", "confidence": 1.0},
]
_RELS = [
    {"id": "r1", "type": "WORKED_AT", "from_id": "person_a", "to_id": "company_acme", "source_type": "csv", "source_confidence": 0.9},
    {"id": "r2", "type": "WORKED_AT", "from_id": "person_b", "to_id": "company_acme", "source_type": "csv", "source_confidence": 0.9},
]


class _ScriptedSession:
    def __init__(self, raw_paths=None, error: Exception | None = None) -> None:
        self._raw_paths = raw_paths or []
        self._error = error

    async def get_node(self, key):
        return next((node for node in _NODES if node["id"] == key), None)

    async def query_paths(self, from_id, to_id, max_hops):
        if self._error is not None:
            raise self._error
        return self._raw_paths


class _ScriptedStore:
    def __init__(self, session: _ScriptedSession) -> None:
        self._session = session
        self.closed_sessions = 0

    @asynccontextmanager
    async def session(self):
        try:
            yield self._session
        finally:
            self.closed_sessions += 1


@pytest.mark.asyncio
async def test_duplicate_traversals_collapse_to_one_result() -> None:
    forward = {"nodes": list(_NODES), "relationships": list(_RELS)}
    backward = {"nodes": list(reversed(_NODES)), "relationships": list(reversed(_RELS))}
    broken = {"nodes": list(_NODES), "relationships": [_RELS[0]]}
    store = _ScriptedStore(_ScriptedSession([forward, backward, broken]))

    paths = await find_paths("person_a", "person_b", store=store, settings=_settings())

    assert len(paths) == 1
    assert paths[0].path_id == "person_a->r1->company_acme->r2->person_b"


@pytest.mark.asyncio
async def test_store_timeout_surfaces_instead_of_empty_result() -> None:
    store = _ScriptedStore(_ScriptedSession(error=StoreTimeout("query exceeded 15s")))

    with pytest.raises(StoreTimeout):
        await find_paths("person_a", "person_b", store=store, settings=_settings())

    assert store.closed_sessions == 1


_ALICE_AT_ACME = CanonicalContact(
    name="Alice Chen",
    job_history=[{"company": "Acme", "startYear": 2010, "endYear": 2015}],
    source=SourceMetadata(type="linkedin"),
    confidence={"overall": 0.9},
)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("bob", "histories"),
    [
        (
            CanonicalContact(name="Bob Li", firm="Acme", source=SourceMetadata(type="linkedin")),
            [
                JobHistoryRecord(
                    person_name="Bob Li",
                    firm="Acme",
                    jobs=[{"company": "Acme", "startYear": 2015, "endYear": "present"}],
                )
            ],
        ),
        (
            CanonicalContact(
                name="Bob Li",
                firm="acme",
                job_history=[{"company": "Acme", "startYear": 2015}],
                source=SourceMetadata(type="linkedin"),
            ),
            [],
        ),
    ],
)
async def test_firm_and_dated_job_yield_one_path(bob: CanonicalContact, histories: list[JobHistoryRecord]) -> None:
    store = InMemoryGraphStore()
    await construct_graph([_ALICE_AT_ACME, bob], histories, store=store, settings=_settings())

    paths = await find_paths("person_alice_chen", "person_bob_li__acme", store=store, settings=_settings())

    assert len(paths) == 1
    assert paths[0].path[2].id == "company_acme"
    assert paths[0].path[2].name == "Acme"


@pytest.mark.asyncio
async def test_min_confidence_filters_paths_and_strongest_link_is_named() -> None:
    store = InMemoryGraphStore()
    async with store.session() as session:
        await _person(session, "person_a", "A")
        await _person(session, "person_b", "B")
        await session.upsert_node("Company", "company_acme", {"name": "Acme", "confidence": 1.0, "trust": 1.0})
        await session.upsert_node("Company", "company_beta", {"name": "Beta", "confidence": 1.0, "trust": 1.0})
        await _worked_at(session, "person_a", "company_beta", 0.9)
        await _worked_at(session, "person_b", "company_beta", 0.9)
        await _worked_at(session, "person_a", "company_acme", 0.3)
        await _worked_at(session, "person_b", "company_acme", 0.5)

    every_path = await find_paths("person_a", "person_b", store=store, settings=_settings())
    strong = await find_paths("person_a", "person_b", store=store, min_confidence=0.5, settings=_settings())

    assert [result.path[2].id for result in every_path] == ["company_beta", "company_acme"]
    assert every_path[1].strongest_link == "Acme -> WORKED_AT -> B"
    assert [result.path[2].id for result in strong] == ["company_beta"]
    assert strong[0].strongest_link == "A -> WORKED_AT -> Beta"


def test_strongest_link_is_empty_when_no_hop_scores() -> None:
    rels = [dict(rel, source_confidence=0.0) for rel in _RELS]

    assert strongest_link(_NODES, rels) is None
    assert strongest_link(_NODES, _RELS) == "A -> WORKED_AT -> Acme"


@pytest.mark.asyncio
async def test_default_max_hops_is_clamped_to_configured_limit() -> None:
    store = InMemoryGraphStore()
    chain = ("person_a", "person_b", "person_c", "person_d")
    async with store.session() as session:
        for key in chain:
            await _person(session, key, key)
        for left, right in zip(chain, chain[1:]):
            await session.upsert_relationship(
                "CONNECTED_VIA_MUTUAL",
                left,
                right,
                {"id": f"{left}_{right}_CONNECTED_VIA_MUTUAL", "source_type": "linkedin", "source_confidence": 0.9},
            )

    clamped = _settings(path_max_hops_default=4, path_max_hops_limit=2)
    assert await find_paths("person_a", "person_d", store=store, settings=clamped) == []

    roomy = _settings(path_max_hops_default=4, path_max_hops_limit=3)
    assert len(await find_paths("person_a", "person_d", store=store, settings=roomy)) == 1
