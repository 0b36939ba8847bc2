from datetime import date

import pytest

from fipe_etl.collector_fipe.crawler import Crawler, CrawlOptions
from fipe_etl.memory import InMemoryStore
from fipe_etl.models import FipeBrand, FipeReference, FipeYear

from conftest import FakeClassifier


def _crawler(client, store, classifier=None):
    return Crawler(client, store, classifier, today=lambda: date(2025, 6, 1))


def _january_2025(**overrides):
    options = dict(years=[2025], months=[1], brand_code="59", on_progress=lambda msg: None)
    options.update(overrides)
    return CrawlOptions(**options)


def test_first_run_syncs_and_skips_failed_model_year(fake_client, store):
    fake_client.failures.add(("price", "59", "5941", 2024, 1))

    summary = _crawler(fake_client, store).crawl(_january_2025())

    assert summary.synced is True
    assert summary.references == 1
    assert summary.prices == 3
    assert summary.skipped == 1

    stats = store.get_stats()
    assert stats.brands == 1
    assert stats.models == 2
    assert stats.model_years == 4
    assert stats.prices == 3
    assert list(store.brands) == ["59"]
    assert store.get_crawled_references() == [320]

    zero_km = store.model_years[(store.models[(1, "5941")].id, 32000, 1)]
    price = store.prices[(zero_km.id, store.references[320].id)]
    assert price.price_brl == "500.00"
    assert price.fipe_code == "0055941-1"


def test_replay_with_cached_prices_fetches_nothing(fake_client, store):
    crawler = _crawler(fake_client, store)
    crawler.crawl(_january_2025())
    fake_client.calls.clear()

    summary = crawler.crawl(_january_2025())

    assert summary.synced is False
    assert summary.prices == 0
    assert summary.cached_prices == 4
    assert fake_client.count("get_price") == 0
    assert fake_client.count("get_brands") == 0
    assert fake_client.count("get_models") == 0
    assert fake_client.count("get_years") == 0
    assert fake_client.count("get_reference_tables") == 1


def test_replay_fetches_only_missing_prices(fake_client, store):
    fake_client.failures.add(("price", "59", "5940", 2019, 1))
    crawler = _crawler(fake_client, store)
    crawler.crawl(_january_2025())
    fake_client.failures.clear()
    fake_client.calls.clear()

    summary = crawler.crawl(_january_2025())

    assert summary.prices == 1
    assert [call[:5] for call in fake_client.calls if call[0] == "get_price"] == [
        ("get_price", "59", "5940", 2019, 1)
    ]
    assert store.get_stats().prices == 4


def test_force_refetches_and_updates_changed_price(fake_client, store):
    crawler = _crawler(fake_client, store)
    crawler.crawl(_january_2025())
    fake_client.price_values[("59", "5940", 2020, 1)] = "R$ 21.990,50"
    fake_client.calls.clear()

    summary = crawler.crawl(_january_2025(force=True))

    assert fake_client.count("get_price") == 4
    assert summary.prices == 4
    assert store.get_stats().prices == 4
    gol_2020 = store.model_years[(store.models[(1, "5940")].id, 2020, 1)]
    assert store.prices[(gol_2020.id, store.references[320].id)].price_brl == "21990.50"


def test_models_failure_skips_brand_only(fake_client, store):
    fake_client.failures.add(("models", "59"))
    messages = []

    summary = _crawler(fake_client, store).crawl(
        _january_2025(brand_code=None, on_progress=messages.append)
    )

    assert summary.prices == 1
    assert summary.skipped == 1
    assert store.get_crawled_references() == [320]
    assert any("Error fetching models for VW - VolksWagen" in msg for msg in messages)
    assert [model.name for model in store.models.values()] == ["Uno Mille"]


def test_years_failure_skips_model_only(fake_client, store):
    fake_client.failures.add(("years", "59", "5940"))
    messages = []

    summary = _crawler(fake_client, store).crawl(_january_2025(on_progress=messages.append))

    assert summary.prices == 2
    assert summary.skipped == 1
    assert any("Gol 1.0" in msg and "Error fetching years" in msg for msg in messages)


def test_malformed_year_code_skips_model_without_partial_writes(fake_client, store):
    fake_client.years[("59", "5940")].append(FipeYear(label="broken", value="2018"))

    summary = _crawler(fake_client, store).crawl(_january_2025())

    assert summary.prices == 2
    assert summary.skipped == 1
    gol = store.models[(1, "5940")]
    assert store.get_model_years_by_model(gol.id) == []


def test_brand_list_failure_leaves_reference_uncrawled(fake_client, store):
    fake_client.failures.add(("brands", 321))

    summary = _crawler(fake_client, store).crawl(_january_2025(months=None))

    assert summary.references == 1
    assert store.get_crawled_references() == [320]
    assert 321 in store.references
    assert store.references[321].crawled_at is None


def test_cached_data_selects_replay_source(fake_client, store):
    store.upsert_brand("59", "VW - VolksWagen")
    store.upsert_brand("21", "Fiat")

    summary = _crawler(fake_client, store).crawl(_january_2025(brand_code=None))

    assert summary.synced is False
    assert fake_client.count("get_brands") == 0
    assert fake_client.count("get_models") == 0
    assert summary.prices == 0


def test_explicit_sync_uses_remote_even_with_cache(fake_client, store):
    store.upsert_brand("59", "VW - VolksWagen")

    summary = _crawler(fake_client, store).crawl(_january_2025(sync=True))

    assert summary.synced is True
    assert fake_client.count("get_brands") == 1
    assert summary.prices == 4


def test_filters_are_symmetric_between_modes(fake_client, store):
    crawler = _crawler(fake_client, store)
    crawler.crawl(_january_2025(brand_code=None, sync=True))
    first = {(call[1], call[2]) for call in fake_client.calls if call[0] == "get_price"}
    fake_client.calls.clear()

    crawler.crawl(_january_2025(brand_code=None, force=True, model_codes=["5941", "2101"]))
    second = {(call[1], call[2]) for call in fake_client.calls if call[0] == "get_price"}

    assert first == {("59", "5940"), ("59", "5941"), ("21", "2101")}
    assert second == {("59", "5941"), ("21", "2101")}


def test_no_matching_reference_ends_quietly(fake_client, store):
    messages = []

    summary = _crawler(fake_client, store).crawl(
        CrawlOptions(years=[1999], on_progress=messages.append)
    )

    assert summary.references == 0
    assert store.get_stats().references == 0
    assert fake_client.count("get_brands") == 0
    assert messages[-1] == "No reference tables found to process"


def test_years_default_to_current_year(fake_client, store):
    summary = _crawler(fake_client, store).crawl(
        CrawlOptions(brand_code="21", on_progress=lambda msg: None)
    )

    assert summary.references == 2
    assert sorted(store.references) == [320, 321]


def test_explicit_reference_code_ignores_year_filter(fake_client, store):
    summary = _crawler(fake_client, store).crawl(
        CrawlOptions(reference_code=319, brand_code="21", on_progress=lambda msg: None)
    )

    assert summary.references == 1
    ref = store.references[319]
    assert (ref.month, ref.year) == (12, 2024)


def test_unknown_month_reference_is_skipped(fake_client, store):
    fake_client.references.append(FipeReference(code=999, label="xyz/2025"))

    summary = _crawler(fake_client, store).crawl(_january_2025(months=None, brand_code="21"))

    assert summary.references == 2
    assert 999 not in store.references


def test_duplicate_remote_entries_collapse(fake_client, store):
    fake_client.brands.append(FipeBrand(label="VW - VolksWagen", value="59"))
    fake_client.years[("59", "5940")].append(FipeYear(label="2020 Gasolina", value="2020-1"))

    summary = _crawler(fake_client, store).crawl(_january_2025())

    assert store.get_stats().brands == 1
    assert store.get_stats().model_years == 4
    assert summary.prices == 4
    assert fake_client.count("get_models") == 1


def test_classifies_only_new_models(fake_client, store):
    classifier = FakeClassifier({"Gol 1.0": "hatch"})
    crawler = _crawler(fake_client, store, classifier)

    crawler.crawl(_january_2025(classify=True))
    crawler.crawl(_january_2025(classify=True, sync=True))

    assert classifier.calls == [("VW - VolksWagen", "Gol 1.0"), ("VW - VolksWagen", "Polo 1.0 TSI")]
    gol = store.models[(1, "5940")]
    polo = store.models[(1, "5941")]
    assert (gol.segment, gol.segment_source) == ("hatch", "ai")
    assert polo.segment is None


def test_classify_without_classifier_still_crawls(fake_client, store):
    summary = _crawler(fake_client, store).crawl(_january_2025(classify=True))

    assert summary.prices == 4
    assert all(model.segment is None for model in store.models.values())


def test_store_errors_abort_the_run(fake_client):
    class BrokenStore(InMemoryStore):
        def upsert_price(self, *args, **kwargs):
            raise RuntimeError("connection lost")

    with pytest.raises(RuntimeError, match="connection lost"):
        _crawler(fake_client, BrokenStore()).crawl(_january_2025())


def test_backfill_segments(fake_client, store):
    _crawler(fake_client, store).crawl(_january_2025(brand_code=None))
    classifier = FakeClassifier({"Polo 1.0 TSI": "hatch", "Uno Mille": "hatch"})

    classified = _crawler(fake_client, store, classifier).backfill_segments(on_progress=lambda msg: None)

    assert classified == 2
    assert len(classifier.calls) == 3
    assert [model.name for _, model in store.get_unclassified_models()] == ["Gol 1.0"]


def test_status_reports_store_counts(fake_client, store):
    crawler = _crawler(fake_client, store)
    crawler.crawl(_january_2025())

    stats = crawler.status()

    assert (stats.references, stats.crawled_references) == (1, 1)
    assert (stats.brands, stats.models, stats.prices) == (1, 2, 4)
