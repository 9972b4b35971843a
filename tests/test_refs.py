import pytest

from flickr_harvester.core.errors import InputError
from flickr_harvester.core.refs import extract_album_id, extract_owner_id, parse_collection_ref

URL = "https://www.flickr.com/photos/202304062@N02/albums/72177720328661598/"


def test_extract_album_id() -> None:
    assert extract_album_id("72177720328661598") == "72177720328661598"
    assert extract_album_id(URL) == "72177720328661598"
    assert extract_album_id("https://www.flickr.com/photos/someone/") is None


def test_extract_owner_id() -> None:
    assert extract_owner_id(URL) == "202304062@N02"
    assert extract_owner_id("72177720328661598") is None


def test_parse_collection_ref() -> None:
    ref = parse_collection_ref(URL)
    assert (ref.collection_id, ref.owner_id) == ("72177720328661598", "202304062@N02")
    assert parse_collection_ref("123", owner_id="me").owner_id == "me"


def test_parse_collection_ref_rejects_incomplete_input() -> None:
    with pytest.raises(InputError, match="Invalid album"):
        parse_collection_ref("not-an-album")
    with pytest.raises(InputError, match="user ID"):
        parse_collection_ref("72177720328661598")
