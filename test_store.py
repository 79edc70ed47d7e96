from __future__ import annotations

import gzip
import tempfile
import unittest
from pathlib import Path

from seqarc import tlv
from seqarc.codec import Codec, codec_from_name
from seqarc.constants import CODEC_DEFLATE, CODEC_NONE, CODEC_ZSTD, SUPERBLOCK_MAGIC
from seqarc.fasta import read_fasta_records
from seqarc.reader import ArchiveReader
from seqarc.superblock import read_superblock
from seqarc.writer import ArchiveWriter


FASTA_TEXT = ">chr1 first chromosome\nACGTACGTAC\nGGGG\n\n>chr2\nNNNNacgt\n>chr3\n"


def _write_fasta(base: Path, gz: bool = False) -> Path:
    if gz:
        path = base / "genome.fa.gz"
        with gzip.open(path, "wt", encoding="ascii") as fh:
            fh.write(FASTA_TEXT)
    else:
        path = base / "genome.fa"
        path.write_text(FASTA_TEXT, encoding="ascii")
    return path


class StoreTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_codecs_roundtrip(self):
        def scenario(tmp_path: Path):
            seq = "ACGT" * 500 + "N" * 37
            for codec in (CODEC_NONE, CODEC_DEFLATE, CODEC_ZSTD):
                archive_path = tmp_path / f"codec{codec}.sqa"
                with ArchiveWriter(archive_path, block_size=256, codec=codec) as writer:
                    writer.add_contig("s", "c", seq)
                    writer.finalize()
                with ArchiveReader() as reader:
                    self.assertTrue(reader.open(archive_path, prefetch=False))
                    self.assertEqual(reader.superblock.default_codec, codec)
                    self.assertEqual(reader.get_contig_length("s", "c"), len(seq))
                    # engine coordinates are inclusive
                    self.assertEqual(reader.get_contig_string("s", "c", 250, 260), seq[250:261])
                    self.assertEqual(reader.get_contig_string("s", "c", 0, len(seq) - 1), seq)

        self.run_with_tmpdir(scenario)

    def test_codec_lookup(self):
        self.assertEqual(codec_from_name("ZSTD"), CODEC_ZSTD)
        self.assertEqual(codec_from_name("deflate"), CODEC_DEFLATE)
        with self.assertRaises(ValueError):
            codec_from_name("lzma")
        with self.assertRaises(ValueError):
            Codec(99)
        with self.assertRaises(ValueError):
            Codec(CODEC_ZSTD).decompress(b"not a zstd frame")

    def test_superblock_fields(self):
        def scenario(tmp_path: Path):
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path, block_size=1000) as writer:
                writer.finalize()
            with open(archive_path, "rb") as fh:
                self.assertEqual(fh.read(8), SUPERBLOCK_MAGIC)
                sb = read_superblock(fh)
            self.assertEqual(sb.block_size, 1000)
            self.assertEqual(sb.default_codec, CODEC_ZSTD)
            self.assertIsNone(sb.encryption_params())

        self.run_with_tmpdir(scenario)

    def test_empty_archive(self):
        def scenario(tmp_path: Path):
            archive_path = tmp_path / "empty.sqa"
            with ArchiveWriter(archive_path) as writer:
                writer.finalize()
            with ArchiveReader() as reader:
                self.assertTrue(reader.open(archive_path, prefetch=True))
                self.assertEqual(reader.list_samples(), [])
                self.assertEqual(reader.get_no_samples(), 0)
                self.assertTrue(reader.writer_info.startswith("seqarc/"))

        self.run_with_tmpdir(scenario)

    def test_engine_conventions_for_unknown_names(self):
        def scenario(tmp_path: Path):
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path) as writer:
                writer.add_contig("s", "c", "ACGT")
                writer.finalize()
            reader = ArchiveReader()
            self.assertTrue(reader.open(archive_path, prefetch=False))
            self.assertFalse(reader.open(archive_path, prefetch=False))
            self.assertEqual(reader.list_contigs("x"), [])
            self.assertEqual(reader.get_no_contigs("x"), -1)
            self.assertEqual(reader.get_contig_length("s", "x"), -1)
            with self.assertRaises(KeyError):
                reader.get_contig_string("s", "x", 0, 1)
            with self.assertRaises(ValueError):
                reader.get_contig_string("s", "c", 0, 4)
            self.assertTrue(reader.close())
            self.assertTrue(reader.close())
            self.assertFalse(reader.is_opened())
            self.assertEqual(reader.list_samples(), [])

        self.run_with_tmpdir(scenario)

    def test_writer_validation(self):
        def scenario(tmp_path: Path):
            with ArchiveWriter(tmp_path / "a.sqa") as writer:
                writer.add_sample("s")
                with self.assertRaises(ValueError):
                    writer.add_sample("s")
                with self.assertRaises(ValueError):
                    writer.add_sample("")
                with self.assertRaises(ValueError):
                    writer.add_sample("bad\x00name")
                writer.add_contig("s", "c", "ACGT")
                with self.assertRaises(ValueError):
                    writer.add_contig("s", "c", "TTTT")
                with self.assertRaises(ValueError):
                    writer.add_contig("s", "d", "ACGTé")
                with self.assertRaises(ValueError):
                    writer.add_contig("s", "e", "ACG\xffT".encode("latin-1"))
                # the same contig name in another sample is fine
                writer.add_contig("t", "c", b"GGCC")
                writer.finalize()
                with self.assertRaises(RuntimeError):
                    writer.add_contig("t", "d", "A")
            with self.assertRaises(ValueError):
                ArchiveWriter(tmp_path / "b.sqa", block_size=0)

        self.run_with_tmpdir(scenario)

    def test_writer_never_overwrites(self):
        def scenario(tmp_path: Path):
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path) as writer:
                writer.add_contig("s", "c", "ACGT")
                writer.finalize()
            before = archive_path.read_bytes()
            with self.assertRaises(FileExistsError):
                with ArchiveWriter(archive_path) as writer:
                    writer.finalize()
            self.assertEqual(archive_path.read_bytes(), before)

        self.run_with_tmpdir(scenario)

    def test_fasta_records(self):
        def scenario(tmp_path: Path):
            for gz in (False, True):
                records = list(read_fasta_records(_write_fasta(tmp_path, gz=gz)))
                self.assertEqual(
                    records,
                    [("chr1", "ACGTACGTACGGGG"), ("chr2", "NNNNacgt"), ("chr3", "")],
                )
            bad = tmp_path / "bad.fa"
            bad.write_text("ACGT\n>chr1\nA\n", encoding="ascii")
            with self.assertRaises(ValueError):
                list(read_fasta_records(bad))

        self.run_with_tmpdir(scenario)

    def test_add_fasta(self):
        def scenario(tmp_path: Path):
            fasta = _write_fasta(tmp_path, gz=True)
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path, block_size=4) as writer:
                self.assertEqual(writer.add_fasta("HG002", fasta), 3)
                writer.finalize()
            with ArchiveReader() as reader:
                self.assertTrue(reader.open(archive_path, prefetch=False))
                self.assertEqual(reader.list_contigs("HG002"), ["chr1", "chr2", "chr3"])
                self.assertEqual(reader.get_contig_length("HG002", "chr3"), 0)
                # residue case is preserved
                self.assertEqual(reader.get_contig_string("HG002", "chr2", 3, 6), "Nacg")

        self.run_with_tmpdir(scenario)

    def test_add_fasta_rejects_bad_file_whole(self):
        def scenario(tmp_path: Path):
            dup = tmp_path / "dup.fa"
            dup.write_text(">chr1\nACGT\n>chr2\nGG\n>chr1\nTT\n", encoding="ascii")
            nameless = tmp_path / "nameless.fa"
            nameless.write_text(">chr1\nACGT\n>\nGG\n", encoding="ascii")
            latin = tmp_path / "latin.fa"
            latin.write_bytes(b">chr1\nACGT\n>chr2\nAC\xe9T\n")
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path) as writer:
                writer.add_contig("kept", "chr1", "AAAA")
                for bad in (dup, nameless, latin):
                    with self.assertRaises(ValueError, msg=bad.name):
                        writer.add_fasta("HG002", bad)
                    with self.assertRaises(ValueError, msg=bad.name):
                        writer.add_fasta("kept", bad)
                # chr1 already exists in "kept"
                with self.assertRaises(ValueError):
                    writer.add_fasta("kept", _write_fasta(tmp_path))
                self.assertEqual(writer.add_fasta("HG002", _write_fasta(tmp_path)), 3)
                writer.finalize()
            with ArchiveReader() as reader:
                self.assertTrue(reader.open(archive_path, prefetch=False))
                self.assertEqual(reader.list_samples(), ["kept", "HG002"])
                self.assertEqual(reader.list_contigs("kept"), ["chr1"])
                self.assertEqual(reader.list_contigs("HG002"), ["chr1", "chr2", "chr3"])

        self.run_with_tmpdir(scenario)

    def test_writer_refuses_after_finalize(self):
        def scenario(tmp_path: Path):
            fasta = _write_fasta(tmp_path)
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path) as writer:
                writer.add_contig("s", "c", "ACGT")
                writer.finalize()
                with self.assertRaises(RuntimeError):
                    writer.add_sample("late")
                with self.assertRaises(RuntimeError):
                    writer.add_fasta("late", fasta)
            with ArchiveReader() as reader:
                self.assertTrue(reader.open(archive_path, prefetch=False))
                self.assertEqual(reader.list_samples(), ["s"])

        self.run_with_tmpdir(scenario)

    def test_writer_codec_by_name(self):
        def scenario(tmp_path: Path):
            for name, codec in (("deflate", CODEC_DEFLATE), ("NONE", CODEC_NONE), ("zstd", CODEC_ZSTD)):
                archive_path = tmp_path / f"{name}.sqa"
                with ArchiveWriter(archive_path, block_size=16, codec=name) as writer:
                    writer.add_contig("s", "c", "ACGT" * 10)
                    writer.finalize()
                with ArchiveReader() as reader:
                    self.assertTrue(reader.open(archive_path, prefetch=False))
                    self.assertEqual(reader.superblock.default_codec, codec)
                    self.assertEqual(reader.get_contig_string("s", "c", 14, 21), "GTACGTAC")
            with self.assertRaises(ValueError):
                ArchiveWriter(tmp_path / "x.sqa", codec="lzma")
            self.assertFalse((tmp_path / "x.sqa").exists())

        self.run_with_tmpdir(scenario)

    def test_block_cache_is_bounded(self):
        def scenario(tmp_path: Path):
            seq = "ACGTTGCA" * 64
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path, block_size=16) as writer:
                writer.add_contig("s", "c", seq)
                writer.finalize()
            reader = ArchiveReader(block_cache_size=2)
            self.assertTrue(reader.open(archive_path, prefetch=False))
            for start in range(0, len(seq), 16):
                self.assertEqual(reader.get_contig_string("s", "c", start, start + 15), seq[start : start + 16])
                self.assertLessEqual(len(reader._cache), 2)
            reader.close()
            self.assertEqual(len(reader._cache), 0)

            uncached = ArchiveReader(block_cache_size=0)
            self.assertTrue(uncached.open(archive_path, prefetch=True))
            self.assertEqual(uncached.get_contig_string("s", "c", 0, len(seq) - 1), seq)
            self.assertEqual(len(uncached._cache), 0)
            uncached.close()

        self.run_with_tmpdir(scenario)

    def test_index_limits(self):
        def scenario(tmp_path: Path):
            archive_path = tmp_path / "a.sqa"
            with ArchiveWriter(archive_path) as writer:
                writer.add_contig("s1", "c", "A")
                writer.add_contig("s2", "c", "C")
                writer.finalize()
            with ArchiveReader(limits={"max_samples": 1}) as reader:
                self.assertFalse(reader.open(archive_path, prefetch=False))
            with ArchiveReader(limits={"max_samples": 2}) as reader:
                self.assertTrue(reader.open(archive_path, prefetch=False))

        self.run_with_tmpdir(scenario)

    def test_index_tlv(self):
        idx = {
            "version": {"major": 1, "minor": 0},
            "archive_uuid": b"\x01" * 16,
            "writer_info": "test",
            "block_size": 64,
            "default_codec": CODEC_ZSTD,
            "samples": [
                {
                    "name": "s",
                    "contigs": [
                        {
                            "name": "c",
                            "length": 70,
                            "blocks": [
                                {"offset": 100, "payload_len": 20, "residues": 64, "blake2s_16": b"\x02" * 16},
                                {"offset": 200, "payload_len": 5, "residues": 6, "blake2s_16": b"\x03" * 16},
                            ],
                        }
                    ],
                },
                {"name": "empty", "contigs": []},
            ],
        }
        data = tlv.dumps_index(idx)
        self.assertEqual(tlv.loads_index(data), idx)
        with self.assertRaises(ValueError):
            tlv.loads_index(data[:-3])
        with self.assertRaises(ValueError):
            tlv.loads_index(data, limits={"max_total_blocks": 1})


if __name__ == "__main__":
    unittest.main()
