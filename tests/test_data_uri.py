import pytest

from emotifriend.utils.data_uri import parse_data_uri, to_data_uri


def test_to_data_uri_encodes_payload():
    assert to_data_uri(b"hi", "audio/wav") == "data:audio/wav;base64,aGk="


def test_parse_keeps_params_and_decodes():
    parsed = parse_data_uri("data:audio/webm;codecs=opus;base64,aGk=")
    assert parsed.mime_type == "audio/webm"
    assert parsed.params == ";codecs=opus"
    assert parsed.decode() == b"hi"
    assert str(parsed) == "data:audio/webm;codecs=opus;base64,aGk="


@pytest.mark.parametrize("value", ["", "hello", "data:audio/wav,plain", "https://example.com/a.png"])
def test_parse_rejects_non_data_uris(value):
    with pytest.raises(ValueError):
        parse_data_uri(value)


def test_decode_rejects_bad_base64():
    with pytest.raises(ValueError):
        parse_data_uri("data:image/png;base64,@@@").decode()
