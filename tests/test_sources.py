from fipe_etl.collector_fipe.sources import CachedSource, RemoteSource, wanted
from fipe_etl.models import ReferenceTable


REFERENCE = ReferenceTable(id=1, code=320, month=1, year=2025)


def test_wanted():
    assert wanted("59", None)
    assert wanted("59", ["59", "21"])
    assert not wanted("59", [])


def test_remote_source_upserts_each_level(fake_client, store):
    source = RemoteSource(fake_client, store)

    brands = source.list_brands(REFERENCE, "59")
    models = source.list_models(REFERENCE, brands[0], ["5941"])
    years = source.list_years(REFERENCE, brands[0], models[0])

    assert [b.fipe_code for b in brands] == ["59"]
    assert [m.name for m in models] == ["Polo 1.0 TSI"]
    assert [(y.year, y.fuel_code, y.fuel_name) for y in years] == [(2024, 1, "2024 Flex"), (32000, 1, "Zero KM")]
    assert store.get_stats().model_years == 2


def test_remote_source_reports_new_models_once(fake_client, store):
    created = []
    source = RemoteSource(fake_client, store, on_new_model=lambda brand, model: created.append(model.name))
    brand = source.list_brands(REFERENCE)[0]

    source.list_models(REFERENCE, brand)
    source.list_models(REFERENCE, brand)

    assert created == ["Gol 1.0", "Polo 1.0 TSI"]


def test_cached_source_mirrors_remote_filters(fake_client, store):
    remote = RemoteSource(fake_client, store)
    for brand in remote.list_brands(REFERENCE):
        for model in remote.list_models(REFERENCE, brand):
            remote.list_years(REFERENCE, brand, model)
    fake_client.calls.clear()
    cached = CachedSource(store)

    brands = cached.list_brands(REFERENCE, "21")
    models = cached.list_models(REFERENCE, brands[0], ["2101", "9999"])
    years = cached.list_years(REFERENCE, brands[0], models[0])

    assert [b.name for b in brands] == ["Fiat"]
    assert [m.fipe_code for m in models] == ["2101"]
    assert [y.year for y in years] == [2010]
    assert fake_client.calls == []
