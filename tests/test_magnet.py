import base64

import pytest

from torrentmeta.magnet import (
    Magnet,
    MagnetError,
    MagnetV2,
    parse_magnet_uri,
    parse_magnet_v2_uri,
)

EXAMPLE_URI = (
    "magnet:?xt=urn:btih:51340689c960f0778a4387aef9b4b52fd08390cd"
    "&dn=Shit+Movie+%281985%29+1337p+-+Eru"
    "&tr=http%3A%2F%2Fhttp.was.great%21"
    "&tr=udp%3A%2F%2Fanti.piracy.honeypot%3A6969"
)

EXAMPLE = Magnet(
    info_hash=bytes.fromhex("51340689c960f0778a4387aef9b4b52fd08390cd"),
    display_name="Shit Movie (1985) 1337p - Eru",
    trackers=["http://http.was.great!", "udp://anti.piracy.honeypot:6969"],
)

V2_ONLY = (
    "magnet:?xt=urn:btmh:1220caf1e1c30e81cb361b9ee167c4aa64228a7fa4fa9f6105232b28ad099f3a302e"
    "&dn=bittorrent-v2-test"
)
HYBRID = (
    "magnet:?xt=urn:btih:631a31dd0a46257d5078c0dee4e66e26f73e42ac"
    "&xt=urn:btmh:1220d8dd32ac93357c368556af3ac1d95c9d76bd0dff6fa9833ecdac3d53134efabb"
    "&dn=bittorrent-v1-v2-hybrid-test"
)


def test_magnet_string_round_trip():
    assert parse_magnet_uri(str(EXAMPLE)) == EXAMPLE


def test_magnet_string_matches_example():
    assert str(EXAMPLE) == EXAMPLE_URI


def test_parse_example_uri():
    assert parse_magnet_uri(EXAMPLE_URI) == EXAMPLE


def test_parse_base32_infohash():
    m = parse_magnet_uri("magnet:?xt=urn:btih:ZOCMZQIPFFW7OLLMIC5HUB6BPCSDEOQU")
    assert m.info_hash == base64.b32decode("ZOCMZQIPFFW7OLLMIC5HUB6BPCSDEOQU")
    assert m.params == {}


def test_parse_empty_uri_fails():
    with pytest.raises(MagnetError, match="unexpected scheme"):
        parse_magnet_uri("")


def test_parse_non_btih_urn_fails():
    with pytest.raises(MagnetError, match="missing v1 infohash"):
        parse_magnet_uri("magnet:?xt=urn:sha1:YNCKHTQCWBTRNJIV4WNAE52SJUQCZO5C")


def test_parse_broken_hash_fails():
    with pytest.raises(MagnetError):
        parse_magnet_uri("magnet:?xt=urn:btih:this hash is really broken")


def test_parse_wrong_scheme_fails():
    with pytest.raises(MagnetError, match="unexpected scheme"):
        parse_magnet_uri("http://example.com/?xt=urn:btih:51340689c960f0778a4387aef9b4b52fd08390cd")


def test_other_params_are_kept():
    uri = (
        "magnet:?xt=urn:btih:51340689c960f0778a4387aef9b4b52fd08390cd"
        "&x.pe=1.2.3.4%3A6881&xt=urn:sha1:YNCKHTQCWBTRNJIV4WNAE52SJUQCZO5C"
    )
    m = parse_magnet_uri(uri)
    assert m.params == {
        "xt": ["urn:sha1:YNCKHTQCWBTRNJIV4WNAE52SJUQCZO5C"],
        "x.pe": ["1.2.3.4:6881"],
    }


def test_malformed_pairs_are_dropped():
    m = parse_magnet_uri(
        "magnet:?xt=urn:btih:51340689c960f0778a4387aef9b4b52fd08390cd&bad=%zz"
    )
    assert m.params == {}


def test_parse_magnet_v2_only():
    m2 = parse_magnet_v2_uri(V2_ONLY)
    assert m2.info_hash.hex() == "0000000000000000000000000000000000000000"
    assert m2.v2_info_hash.hex() == "caf1e1c30e81cb361b9ee167c4aa64228a7fa4fa9f6105232b28ad099f3a302e"
    assert len(m2.params) == 0
    assert m2.display_name == "bittorrent-v2-test"


def test_parse_v1_rejects_v2_only():
    with pytest.raises(MagnetError) as excinfo:
        parse_magnet_uri(V2_ONLY)
    assert str(excinfo.value) == "missing v1 infohash"


def test_parse_hybrid():
    m2 = parse_magnet_v2_uri(HYBRID)
    assert m2.info_hash.hex() == "631a31dd0a46257d5078c0dee4e66e26f73e42ac"
    assert m2.v2_info_hash.hex() == "d8dd32ac93357c368556af3ac1d95c9d76bd0dff6fa9833ecdac3d53134efabb"
    assert len(m2.params) == 0

    m = parse_magnet_uri(HYBRID)
    assert m.info_hash.hex() == "631a31dd0a46257d5078c0dee4e66e26f73e42ac"
    assert len(m.params["xt"]) == 1


def test_hybrid_string_round_trip():
    assert str(parse_magnet_v2_uri(HYBRID)) == HYBRID


def test_magnet_v2_string():
    m = MagnetV2(
        trackers=["http://tracker1.example.com", "http://tracker2.example.com"],
        display_name="Test Magnet",
        params={"param1": ["value1"], "param2": ["value2"]},
    )
    expected = (
        "magnet:?dn=Test+Magnet&param1=value1&param2=value2"
        "&tr=http%3A%2F%2Ftracker1.example.com&tr=http%3A%2F%2Ftracker2.example.com"
    )
    assert str(m) == expected


def test_v2_rejects_two_v1_hashes():
    uri = (
        "magnet:?xt=urn:btih:631a31dd0a46257d5078c0dee4e66e26f73e42ac"
        "&xt=urn:btih:51340689c960f0778a4387aef9b4b52fd08390cd"
    )
    with pytest.raises(MagnetError, match="more than one infohash"):
        parse_magnet_v2_uri(uri)


def test_v2_rejects_wrong_multihash_code():
    uri = "magnet:?xt=urn:btmh:1120caf1e1c30e81cb361b9ee167c4aa64228a7fa4fa9f6105232b28ad099f3a302e"
    with pytest.raises(MagnetError):
        parse_magnet_v2_uri(uri)


def test_v2_round_trip_v1_link():
    m = parse_magnet_v2_uri(EXAMPLE_URI)
    assert m.info_hash == EXAMPLE.info_hash
    assert parse_magnet_v2_uri(str(m)) == m