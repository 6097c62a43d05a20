from __future__ import annotations

import io
import os
import struct
import tempfile
import unittest
import concurrent.futures as _fut
from pathlib import Path

from asar.builder import Builder, StreamBuilder
from asar.constants import FLAG_DIR, FLAG_EXECUTABLE, FLAG_UNPACKED
from asar.encryption import _HAS_CRYPTO, XChaCha20Cipher
from asar.entry import Entry
from asar.errors import DecryptError, MalformedHeader, MalformedRecord, NotStored, OutOfRange
from asar.header import dumps_header
from asar.reader import Archive, decode
from asar.records import pack_header
from asar.source import BytesSource
from asar.writer import encode, write_archive


def _sample_tree():
    b = Builder()
    b.add_file("a.txt", "hi")
    sub = b.add_dir("sub")
    b.add_file("b.txt", "bye", parent=sub, flags=FLAG_EXECUTABLE)
    return b.root()


def _encode_bytes(root: Entry, cipher=None) -> bytes:
    buf = io.BytesIO()
    encode(root, buf, cipher)
    return buf.getvalue()


def _fast_cipher(password: str = "p@ssw0rd") -> XChaCha20Cipher:
    return XChaCha20Cipher.create(password, time_cost=1, memory_cost_kib=64, parallelism=1)


class ArchiveRoundtripTests(unittest.TestCase):
    def test_scenario_walk_and_read(self):
        data = _encode_bytes(_sample_tree())
        a = decode(io.BytesIO(data))
        self.assertEqual([p for p, _ in a.walk()], ["a.txt", "sub", "sub/b.txt"])
        self.assertEqual(a.read_bytes(a.find("a.txt")), b"hi")
        self.assertEqual(a.read_bytes(a.find("sub/b.txt")), b"bye")

    def test_layout(self):
        root = _sample_tree()
        data = _encode_bytes(root)
        outer_len, inner_len, inner_payload_len, text_len = struct.unpack_from("<IIII", data)
        self.assertEqual(outer_len, 4)
        self.assertEqual(inner_payload_len, inner_len - 4)
        self.assertEqual(inner_len % 4, 0)
        text = data[16 : 16 + text_len].decode("utf-8")
        self.assertEqual(text, dumps_header(root))
        self.assertIn('"offset":"0"', text)
        self.assertEqual(data[8 + inner_len :], b"hibye")
        self.assertEqual(decode(io.BytesIO(data)).data_start, 8 + inner_len)

    def test_structural_roundtrip_and_flags(self):
        root = _sample_tree()
        a = decode(io.BytesIO(_encode_bytes(root)))
        self.assertEqual(a.root, root)
        self.assertTrue(a.find("sub/b.txt").is_executable)
        self.assertFalse(a.find("a.txt").is_executable)

    def test_offsets_contiguous_in_preorder(self):
        b = Builder()
        sizes = {}
        for i in range(5):
            d = b.add_dir(f"d{i}")
            for j in range(3):
                content = os.urandom(i * 7 + j)
                sizes[f"d{i}/f{j}"] = content
                b.add_file(f"f{j}", content, parent=d)
            b.add_file(f"u{i}", 99, parent=d, flags=FLAG_UNPACKED)
        root = b.root()
        a = decode(io.BytesIO(_encode_bytes(root)))
        stored = [v for _, v in a.walk() if not v.is_dir and not v.is_unpacked]
        for prev, nxt in zip(stored, stored[1:]):
            self.assertEqual(nxt.offset, prev.offset + prev.size)
        for path, content in sizes.items():
            self.assertEqual(a.read_bytes(a.find(path)), content)

    def test_empty_archive(self):
        a = decode(io.BytesIO(_encode_bytes(Builder().root())))
        self.assertEqual(list(a.walk()), [])

    def test_empty_directories_and_files(self):
        b = Builder()
        b.add_dir("empty")
        b.add_file("zero", b"")
        b.add_file("after", b"x")
        a = decode(io.BytesIO(_encode_bytes(b.root())))
        self.assertEqual(a.read_bytes(a.find("zero")), b"")
        self.assertEqual(a.read_bytes(a.find("after")), b"x")
        self.assertTrue(a.find("empty").is_dir)

    def test_stream_builder_archive_matches_builder(self):
        sb = StreamBuilder()
        sb.add_file("a.txt", "hi", is_top_level=True)
        sb.open_directory("sub", is_top_level=True)
        sb.add_file("b.txt", "bye", FLAG_EXECUTABLE)
        self.assertEqual(_encode_bytes(sb.root_directory()), _encode_bytes(_sample_tree()))

    def test_encoding_is_deterministic(self):
        self.assertEqual(_encode_bytes(_sample_tree()), _encode_bytes(_sample_tree()))

    def test_unicode_names(self):
        b = Builder()
        b.add_file("héllo wörld.txt", "ü")
        a = decode(io.BytesIO(_encode_bytes(b.root())))
        self.assertEqual(a.read_bytes(a.find("héllo wörld.txt")).decode("utf-8"), "ü")

    def test_entry_reader_seek_and_partial_reads(self):
        b = Builder()
        content = bytes(range(256)) * 4
        b.add_file("pad", b"xyz")
        b.add_file("data", content)
        a = decode(io.BytesIO(_encode_bytes(b.root())))
        with a.read(a.find("data")) as r:
            self.assertEqual(r.read(10), content[:10])
            r.seek(500)
            self.assertEqual(r.read(20), content[500:520])
            r.seek(-4, io.SEEK_END)
            self.assertEqual(r.read(), content[-4:])
            self.assertEqual(r.read(), b"")
            self.assertEqual(r.tell(), len(content))

    def test_write_to_and_node_view(self):
        a = decode(io.BytesIO(_encode_bytes(_sample_tree())))
        views = dict(a.walk())
        out = io.BytesIO()
        n = a.write_to(views["sub/b.txt"], out)
        self.assertEqual(n, 3)
        self.assertEqual(out.getvalue(), b"bye")
        with self.assertRaises(ValueError):
            a.read(views["sub"])

    def test_concurrent_reads(self):
        b = Builder()
        expected = {}
        for i in range(32):
            content = os.urandom(1000 + i)
            expected[f"f{i}"] = content
            b.add_file(f"f{i}", content)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "c.asar")
            write_archive(path, b.root())
            with Archive.open(path) as a:
                with _fut.ThreadPoolExecutor(max_workers=8) as ex:
                    got = dict(zip(expected, ex.map(lambda name: a.read_bytes(a.find(name)), expected)))
        self.assertEqual(got, expected)

    def test_archive_open_from_disk_with_file_sources(self):
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            (base / "one.bin").write_bytes(os.urandom(3000))
            b = Builder()
            b.add_path("one.bin", str(base / "one.bin"))
            out = base / "out.asar"
            total = write_archive(str(out), b.root())
            self.assertEqual(total, out.stat().st_size)
            with Archive.open(str(out)) as a:
                self.assertEqual(a.read_bytes(a.find("one.bin")), (base / "one.bin").read_bytes())
            self.assertIsNone(a.f)


class ArchiveErrorTests(unittest.TestCase):
    def test_unpacked_entries_are_not_stored(self):
        b = Builder()
        b.add_file("big", 10, flags=FLAG_UNPACKED)
        a = decode(io.BytesIO(_encode_bytes(b.root())))
        self.assertTrue(a.find("big").is_unpacked)
        self.assertEqual(a.find("big").size, 10)
        with self.assertRaises(NotStored):
            a.read(a.find("big"))

    def test_truncated_body_is_out_of_range(self):
        data = _encode_bytes(_sample_tree())
        a = decode(io.BytesIO(data[:-1]))
        self.assertEqual(a.read_bytes(a.find("a.txt")), b"hi")
        with self.assertRaises(OutOfRange):
            a.read(a.find("sub/b.txt"))

    def test_out_of_range_offset_in_header(self):
        root = Entry.new_root()
        root.attach(Entry(name="x", size=4, offset=1000))
        data = pack_header(dumps_header(root)) + b"abcd"
        a = decode(io.BytesIO(data))
        with self.assertRaises(OutOfRange):
            a.read(a.find("x"))

    def test_gaps_are_accepted_on_read(self):
        root = Entry.new_root()
        root.attach(Entry(name="first", size=3, offset=0))
        root.attach(Entry(name="second", size=3, offset=10))
        data = pack_header(dumps_header(root)) + b"abc" + b"\x00" * 7 + b"xyz"
        a = decode(io.BytesIO(data))
        self.assertEqual(a.read_bytes(a.find("second")), b"xyz")

    def test_overlapping_ranges_rejected_on_read(self):
        root = Entry.new_root()
        root.attach(Entry(name="a", size=4, offset=0))
        sub = root.attach(Entry(name="sub", flags=FLAG_DIR))
        sub.attach(Entry(name="b", size=4, offset=2))
        root.attach(Entry(name="empty", size=0, offset=1))
        data = pack_header(dumps_header(root)) + b"abcdef"
        a = decode(io.BytesIO(data))
        self.assertEqual([p for p, _ in a.walk()], ["a", "sub", "sub/b", "empty"])
        with self.assertRaises(OutOfRange):
            a.read(a.find("a"))
        with self.assertRaises(OutOfRange):
            a.read_bytes(a.find("sub/b"))

    def test_truncated_header_is_malformed_record(self):
        data = _encode_bytes(_sample_tree())
        with self.assertRaises(MalformedRecord):
            decode(io.BytesIO(data[:24]))
        with self.assertRaises(MalformedRecord):
            decode(io.BytesIO(b""))

    def test_bad_header_json(self):
        data = pack_header('{"files":{"a":{"size":1}}}')
        with self.assertRaises(MalformedHeader):
            decode(io.BytesIO(data))

    def test_open_closes_file_on_failure(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "bad.asar")
            with open(path, "wb") as fh:
                fh.write(b"\xff\xff\xff\xff")
            with self.assertRaises(MalformedRecord):
                Archive.open(path)

    def test_encoder_rejects_noncanonical_offsets(self):
        root = Entry.new_root()
        root.attach(Entry(name="a", size=1, offset=5, source=BytesSource(b"1")))
        with self.assertRaises(ValueError):
            _encode_bytes(root)

    def test_encoder_requires_source(self):
        root = Entry.new_root()
        root.attach(Entry(name="a", size=1, offset=0))
        with self.assertRaises(ValueError):
            _encode_bytes(root)
        with self.assertRaises(ValueError):
            _encode_bytes(Entry(name="f", size=0))

    def test_encoder_detects_changed_file_size(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "grow.txt"
            p.write_bytes(b"abc")
            b = Builder()
            b.add_path("grow.txt", str(p))
            root = b.root()
            p.write_bytes(b"abcdef")
            with self.assertRaises(ValueError):
                _encode_bytes(root)

    def test_directory_flag_mixing_rejected(self):
        with self.assertRaises(ValueError):
            Entry(name="d", flags=FLAG_DIR | FLAG_UNPACKED)


@unittest.skipUnless(_HAS_CRYPTO, "argon2-cffi and PyCryptodomex not available")
class EncryptedArchiveTests(unittest.TestCase):
    def test_encrypted_roundtrip(self):
        cipher = _fast_cipher()
        b = Builder()
        plain = b"secret data " * 100
        b.add_file("pad", b"12345")
        b.add_file("s.txt", plain)
        root = b.root()
        data = _encode_bytes(root, cipher)
        self.assertNotIn(b"secret data", data)
        a = decode(io.BytesIO(data), password="p@ssw0rd")
        self.assertTrue(a.encrypted)
        self.assertEqual(a.root, root)
        self.assertEqual(a.read_bytes(a.find("s.txt")), plain)
        self.assertEqual(a.read_bytes(a.find("pad")), b"12345")
        with a.read(a.find("s.txt")) as r:
            r.seek(37)
            self.assertEqual(r.read(50), plain[37:87])

    def test_layout_unchanged_by_encryption(self):
        cipher = _fast_cipher()
        plain_archive = decode(io.BytesIO(_encode_bytes(_sample_tree())))
        enc_archive = decode(io.BytesIO(_encode_bytes(_sample_tree(), cipher)))
        self.assertEqual(plain_archive.root, enc_archive.root)
        self.assertEqual(len(_encode_bytes(_sample_tree(), cipher)) - enc_archive.data_start, 5)

    def test_listing_without_password_and_read_fails(self):
        data = _encode_bytes(_sample_tree(), _fast_cipher())
        a = decode(io.BytesIO(data))
        self.assertEqual([p for p, _ in a.walk()], ["a.txt", "sub", "sub/b.txt"])
        with self.assertRaises(DecryptError):
            a.read(a.find("a.txt"))

    def test_wrong_password(self):
        data = _encode_bytes(_sample_tree(), _fast_cipher())
        with self.assertRaises(DecryptError):
            decode(io.BytesIO(data), password="wrong")

    def test_unpacked_not_stored_when_encrypted(self):
        b = Builder()
        b.add_file("u", 3, flags=FLAG_UNPACKED)
        a = decode(io.BytesIO(_encode_bytes(b.root(), _fast_cipher())), password="p@ssw0rd")
        with self.assertRaises(NotStored):
            a.read(a.find("u"))

    def test_distinct_nonces_per_file(self):
        b = Builder()
        b.add_file("one", b"\x00" * 64)
        b.add_file("two", b"\x00" * 64)
        data = _encode_bytes(b.root(), _fast_cipher())
        body = data[-128:]
        self.assertNotEqual(body[:64], body[64:])

    def test_hostile_kdf_parameters_rejected(self):
        import json

        data = _encode_bytes(_sample_tree(), _fast_cipher())
        a = decode(io.BytesIO(data))
        params = dict(a.encryption)
        params["memory_cost"] = 1 << 40
        text = json.dumps({"files": {}, "encryption": params})
        with self.assertRaises(MalformedHeader):
            decode(io.BytesIO(pack_header(text)), password="p@ssw0rd")

    def test_unknown_cipher(self):
        text = '{"files":{},"encryption":{"cipher":"rot13"}}'
        a = decode(io.BytesIO(pack_header(text)))
        self.assertTrue(a.encrypted)
        with self.assertRaises(DecryptError):
            decode(io.BytesIO(pack_header(text)), password="x")


if __name__ == "__main__":
    unittest.main()
