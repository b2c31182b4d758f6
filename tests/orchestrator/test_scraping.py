from __future__ import annotations

import pytest
import pytest_asyncio

from offerpipe.config import ScrapePolicy
from offerpipe.errors import BackendFailure, ConfigurationError, EmptyResult, SessionUnavailable
from offerpipe.models import Cookie, SessionRecord
from offerpipe.orchestrator import SCRAPE_ARTIFACT_NAMESPACE

URL = "https://shop.example/sale"


@pytest_asyncio.fixture
async def seeded_session(session_store, clock):
    record = SessionRecord.issue(
        "s-1", "alice", cookies=[Cookie(name="sid", value="abc")], now=clock()
    )
    await session_store.save(record)
    return record


@pytest.mark.asyncio
async def test_waterfall_retries_primary_then_falls_back(
    build_orchestrator, fake_backend, seeded_session, distinct_offers, recording_sleep
) -> None:
    primary = fake_backend([RuntimeError("timeout")])
    fallback = fake_backend([distinct_offers(3)])
    orchestrator = build_orchestrator({"primary": primary, "fallback": fallback})

    offers = await orchestrator.scrape_with_session("s-1", URL, max_retries=1)

    assert len(primary.extract_calls) == 2
    assert len(fallback.extract_calls) == 1
    assert len(offers) == 3
    assert recording_sleep.calls == [0.5]


@pytest.mark.asyncio
async def test_waterfall_delay_grows_linearly(
    build_orchestrator, fake_backend, seeded_session, distinct_offers, recording_sleep
) -> None:
    primary = fake_backend([[], [], [], distinct_offers(2)])
    orchestrator = build_orchestrator({"primary": primary, "fallback": fake_backend()})

    offers = await orchestrator.scrape_with_session("s-1", URL, max_retries=3)

    assert len(offers) == 2
    assert recording_sleep.calls == [0.5, 1.0, 1.5]


@pytest.mark.asyncio
async def test_waterfall_short_circuits_on_first_success(
    build_orchestrator, fake_backend, seeded_session, distinct_offers, recording_sleep
) -> None:
    primary = fake_backend([distinct_offers(2)])
    fallback = fake_backend([distinct_offers(4)])
    orchestrator = build_orchestrator({"primary": primary, "fallback": fallback})

    offers = await orchestrator.scrape_with_session("s-1", URL, max_retries=2)

    assert len(offers) == 2
    assert fallback.extract_calls == []
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_waterfall_raises_last_error_when_everything_fails(
    build_orchestrator, fake_backend, seeded_session
) -> None:
    primary = fake_backend([[]])
    fallback = fake_backend([RuntimeError("captcha wall")])
    orchestrator = build_orchestrator({"primary": primary, "fallback": fallback})

    with pytest.raises(BackendFailure) as excinfo:
        await orchestrator.scrape_with_session("s-1", URL, max_retries=0)
    assert excinfo.value.backend == "fallback"


@pytest.mark.asyncio
async def test_waterfall_empty_everywhere_raises_empty_result(
    build_orchestrator, fake_backend, seeded_session
) -> None:
    orchestrator = build_orchestrator({"primary": fake_backend(), "fallback": fake_backend()})
    with pytest.raises(EmptyResult):
        await orchestrator.scrape_with_session("s-1", URL, max_retries=1)


@pytest.mark.asyncio
async def test_waterfall_passes_session_cookies(
    build_orchestrator, fake_backend, seeded_session, distinct_offers
) -> None:
    primary = fake_backend([distinct_offers(1)])
    orchestrator = build_orchestrator({"primary": primary})
    await orchestrator.scrape_with_session("s-1", URL, options={"page": 2})
    _, options = primary.extract_calls[0]
    assert options["session_id"] == "s-1"
    assert options["cookies"][0]["name"] == "sid"
    assert options["page"] == 2


@pytest.mark.asyncio
async def test_aggregation_tolerates_failing_backends(
    build_orchestrator, fake_backend, seeded_session, distinct_offers
) -> None:
    offers = distinct_offers(5)
    orchestrator = build_orchestrator(
        {
            "broken": fake_backend([RuntimeError("boom")]),
            "empty": fake_backend(),
            "good": fake_backend([offers]),
        },
        policy=ScrapePolicy.AGGREGATION,
    )

    result = await orchestrator.scrape_with_session("s-1", URL)

    assert [offer.id for offer in result] == [offer.id for offer in offers]
    assert {offer.source for offer in result} == {"good"}


@pytest.mark.asyncio
async def test_aggregation_calls_each_backend_once_and_dedups(
    build_orchestrator, fake_backend, seeded_session, make_offer
) -> None:
    a = fake_backend([[make_offer("Nike Air Max 90"), make_offer("Puma Suede")]])
    b = fake_backend([[make_offer("nike air max 90!"), make_offer("Vans Old Skool")]])
    orchestrator = build_orchestrator({"a": a, "b": b}, policy=ScrapePolicy.AGGREGATION)

    result = await orchestrator.scrape_with_session("s-1", URL)

    assert len(a.extract_calls) == 1
    assert len(b.extract_calls) == 1
    assert [(offer.title, offer.source) for offer in result] == [
        ("Nike Air Max 90", "a"),
        ("Puma Suede", "a"),
        ("Vans Old Skool", "b"),
    ]


@pytest.mark.asyncio
async def test_aggregation_with_no_offers_raises(build_orchestrator, fake_backend, seeded_session) -> None:
    orchestrator = build_orchestrator(
        {"a": fake_backend([RuntimeError("x")]), "b": fake_backend()}, policy=ScrapePolicy.AGGREGATION
    )
    with pytest.raises(EmptyResult):
        await orchestrator.scrape_with_session("s-1", URL)


@pytest.mark.asyncio
async def test_successful_scrape_writes_artifact(
    build_orchestrator, fake_backend, seeded_session, make_offer, artifact_store
) -> None:
    primary = fake_backend([[make_offer("Alpha Runner"), make_offer("ALPHA RUNNER"), make_offer("Gamma Boot")]])
    orchestrator = build_orchestrator({"primary": primary})

    await orchestrator.scrape_with_session("s-1", URL)

    ((key, payload),) = artifact_store.items[SCRAPE_ARTIFACT_NAMESPACE]
    assert key.startswith(f"{SCRAPE_ARTIFACT_NAMESPACE}/")
    assert payload["url"] == URL
    assert payload["policy"] == "waterfall"
    assert payload["total_found"] == 2
    assert payload["original_count"] == 3
    assert payload["duplicates_removed"] == 1
    assert payload["backend_results"] == {"primary": 3}


@pytest.mark.asyncio
async def test_artifact_failure_does_not_fail_scrape(
    build_orchestrator, fake_backend, seeded_session, distinct_offers, artifact_store, monkeypatch
) -> None:
    async def broken_put(namespace, payload):
        raise OSError("disk full")

    monkeypatch.setattr(artifact_store, "put", broken_put)
    orchestrator = build_orchestrator({"primary": fake_backend([distinct_offers(2)])})
    assert len(await orchestrator.scrape_with_session("s-1", URL)) == 2


@pytest.mark.asyncio
async def test_policy_must_be_chosen(build_orchestrator, fake_backend, seeded_session) -> None:
    orchestrator = build_orchestrator({"primary": fake_backend()}, policy=None)
    with pytest.raises(ConfigurationError):
        await orchestrator.scrape_with_session("s-1", URL)


@pytest.mark.asyncio
async def test_explicit_policy_overrides_configured(
    build_orchestrator, fake_backend, seeded_session, distinct_offers
) -> None:
    a = fake_backend([distinct_offers(1)])
    b = fake_backend([distinct_offers(2)[1:]])
    orchestrator = build_orchestrator({"a": a, "b": b}, policy=None)
    result = await orchestrator.scrape_with_session("s-1", URL, policy="aggregation")
    assert len(result) == 2


@pytest.mark.asyncio
async def test_unknown_session_is_rejected(build_orchestrator, fake_backend) -> None:
    orchestrator = build_orchestrator({"primary": fake_backend()})
    with pytest.raises(SessionUnavailable):
        await orchestrator.scrape_with_session("missing", URL)
