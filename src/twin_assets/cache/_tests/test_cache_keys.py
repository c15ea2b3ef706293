from twin_assets.cache.keys import AssetHandle, canonical_options, make_cache_key, split_cache_key


def test_equal_options_give_equal_keys():
    a = make_cache_key("models/tower.npz", {"lod": 1, "compress": True})
    b = make_cache_key("models/tower.npz", {"compress": True, "lod": 1})
    assert a == b


def test_distinct_options_give_distinct_keys():
    keys = {
        make_cache_key("models/tower.npz"),
        make_cache_key("models/tower.npz", {"lod": 1}),
        make_cache_key("models/tower.npz", {"lod": 2}),
        make_cache_key("models/tower.npz:x", {}),
        make_cache_key("models/tower.npz", {"lod": "1"}),
    }
    assert len(keys) == 5


def test_key_round_trips_through_split():
    key = make_cache_key("https://cdn.example/a:b/site.npz", {"quality": "high"})
    uri, options = split_cache_key(key)
    assert uri == "https://cdn.example/a:b/site.npz"
    assert options == {"quality": "high"}


def test_canonical_options_is_compact_and_sorted():
    assert canonical_options({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert canonical_options(None) == "{}"


def test_handle_identity_is_the_key():
    h1 = AssetHandle.for_uri("a.npz", {"lod": 1})
    h2 = AssetHandle.for_uri("a.npz", {"lod": 1})
    assert h1 == h2
    assert hash(h1) == hash(h2)
    assert h1.key == make_cache_key("a.npz", {"lod": 1})
    assert h1 != AssetHandle.for_uri("a.npz")
