"""Tests for the byte codec."""
import pytest

from postpay.errors import MalformedPayload
from postpay.services.codec import ByteCodec, DEFAULT_CONTENT_TYPE


class TestByteCodec:
    @pytest.fixture
    def codec(self):
        return ByteCodec()

    @pytest.mark.parametrize(
        "raw,content_type",
        [
            (b"", "image/png"),
            (b"\x00\xff\x10binary\x00", "image/jpeg"),
            (bytes(range(256)) * 3, "application/pdf"),
            ("héllo".encode("utf-8"), "text/plain;charset=utf-8"),
            (b"--a,b\r\n", 'multipart/mixed;boundary="a,b"'),
            (b"x", "application/x-weird;note=\";base64,\""),
        ],
    )
    def test_round_trip(self, codec, raw, content_type):
        assert codec.decode(codec.encode(raw, content_type)) == (raw, content_type)

    def test_encode_produces_data_url(self, codec):
        assert codec.encode(b"hi", "text/plain") == "data:text/plain;base64,aGk="

    def test_decode_bare_payload_uses_default_type(self, codec):
        raw, content_type = codec.decode("aGVsbG8=")
        assert raw == b"hello"
        assert content_type == DEFAULT_CONTENT_TYPE

    def test_custom_default_content_type(self):
        codec = ByteCodec(default_content_type="image/png")
        assert codec.decode("aGk=") == (b"hi", "image/png")

    def test_decode_tolerates_line_breaks(self, codec):
        assert codec.decode("aGVs\nbG8=\n") == (b"hello", DEFAULT_CONTENT_TYPE)

    def test_encode_without_content_type_uses_default(self, codec):
        assert codec.decode(codec.encode(b"x", "")) == (b"x", DEFAULT_CONTENT_TYPE)

    @pytest.mark.parametrize(
        "encoded",
        [
            "not base64 at all!",
            "aGVsbG8",  # bad padding
            "data:image/png;base64",  # no separator
            "data:image/png,aGk=",  # not base64 encoded
            "data:image/png;base64,@@@@",
        ],
    )
    def test_decode_rejects_malformed(self, codec, encoded):
        with pytest.raises(MalformedPayload):
            codec.decode(encoded)

    def test_decode_rejects_non_string(self, codec):
        with pytest.raises(MalformedPayload):
            codec.decode(b"aGk=")

    def test_encode_rejects_non_bytes(self, codec):
        with pytest.raises(TypeError):
            codec.encode("text", "text/plain")

    def test_encoded_size_matches_encode(self, codec):
        for size in (0, 1, 2, 3, 100, 1001):
            encoded = codec.encode(b"a" * size, "image/png")
            assert ByteCodec.encoded_size(size, "image/png") == len(encoded)

    def test_malformed_for_file_names_id(self):
        error = MalformedPayload("invalid base64 payload").for_file("1700000000000-abcd")
        assert error.file_id == "1700000000000-abcd"
        assert "1700000000000-abcd" in str(error)
