"""Tests for MessageFramer (serialization, chunking, cipher hooks)."""

import json
import math

import pytest

from supersocket.errors import DecryptionError
from supersocket.framer import MessageFramer


class ReverseCipher:
    """Trivial reversible cipher for exercising the hooks."""

    def encrypt(self, plaintext):
        return plaintext[::-1]

    def decrypt(self, ciphertext):
        if ciphertext.startswith("!"):
            raise ValueError("bad frame")
        return ciphertext[::-1]


class TestSerialize:
    def test_dict_as_compact_json(self):
        assert MessageFramer.serialize({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'

    def test_string_json_encoded(self):
        assert MessageFramer.serialize("hello") == '"hello"'

    def test_non_ascii_escaped(self):
        text = MessageFramer.serialize({"name": "caf\u00e9 \u2603"})
        assert text.isascii()
        assert json.loads(text) == {"name": "caf\u00e9 \u2603"}

    def test_unserializable_raises(self):
        with pytest.raises(TypeError):
            MessageFramer.serialize(object())


class TestFrames:
    def test_no_chunk_size_single_frame(self):
        text = "x" * 10_000
        assert MessageFramer().frames(text) == [text]

    def test_within_bound_single_frame(self):
        text = "x" * 1024
        assert MessageFramer(chunk_size_kb=1).frames(text) == [text]

    def test_oversized_split_into_envelopes(self):
        text = json.dumps({"data": "y" * 5 * 1024})
        frames = MessageFramer(chunk_size_kb=1).frames(text)

        envelopes = [json.loads(f) for f in frames]
        expected = math.ceil(len(text.encode("utf-8")) / 1024)
        assert len(envelopes) == expected
        assert len({e["chunkId"] for e in envelopes}) == 1
        assert sorted(e["index"] for e in envelopes) == list(range(expected))
        assert all(e["nbChunks"] == expected for e in envelopes)
        assert "".join(e["chunk"] for e in envelopes) == text

    def test_chunk_id_fresh_per_call(self):
        framer = MessageFramer(chunk_size_kb=1)
        first = json.loads(framer.frames("z" * 3000)[0])["chunkId"]
        second = json.loads(framer.frames("z" * 3000)[0])["chunkId"]
        assert first != second
        assert first.startswith("chunk-")

    def test_fractional_chunk_size(self):
        envelopes = MessageFramer(chunk_size_kb=0.5).split("a" * 1500)
        assert [len(e.chunk) for e in envelopes] == [512, 512, 476]

    def test_non_ascii_string_envelope_count(self):
        framer = MessageFramer(chunk_size_kb=1)
        text = framer.serialize("\u00e9" * 3000)
        envelopes = [json.loads(f) for f in framer.frames(text)]

        size = len(text.encode("utf-8"))
        assert len(envelopes) == math.ceil(size / 1024)
        assert "".join(e["chunk"] for e in envelopes) == text

    def test_multibyte_slices_bounded_in_bytes(self):
        text = "\u00e9" * 3000
        envelopes = MessageFramer(chunk_size_kb=1).split(text)
        assert [len(e.chunk.encode("utf-8")) for e in envelopes] == [1024] * 5 + [880]
        assert "".join(e.chunk for e in envelopes) == text

    def test_slices_never_split_a_character(self):
        text = "a" + "\u20ac" * 10
        envelopes = MessageFramer(chunk_size_kb=4 / 1024).split(text)
        assert [e.chunk for e in envelopes] == ["a\u20ac"] + ["\u20ac"] * 9

    def test_cipher_applied_before_measuring(self):
        framer = MessageFramer(chunk_size_kb=1, cipher=ReverseCipher())
        frames = framer.frames("abc")
        assert frames == ["cba"]

    def test_chunks_carry_ciphertext(self):
        text = "0123456789" * 300
        framer = MessageFramer(chunk_size_kb=1, cipher=ReverseCipher())
        envelopes = [json.loads(f) for f in framer.frames(text)]
        assert "".join(e["chunk"] for e in envelopes) == text[::-1]


class TestDecode:
    def test_passthrough_without_cipher(self):
        assert MessageFramer().decode("raw") == "raw"
        assert MessageFramer().decode(b"\x00\x01") == b"\x00\x01"

    def test_decrypts(self):
        assert MessageFramer(cipher=ReverseCipher()).decode("olleh") == "hello"

    def test_decrypts_utf8_bytes(self):
        assert MessageFramer(cipher=ReverseCipher()).decode(b"olleh") == "hello"

    def test_cipher_failure_wrapped(self):
        with pytest.raises(DecryptionError):
            MessageFramer(cipher=ReverseCipher()).decode("!garbage")

    def test_non_utf8_bytes_fail(self):
        with pytest.raises(DecryptionError):
            MessageFramer(cipher=ReverseCipher()).decode(b"\xff\xfe")
