from contextlib import redirect_stdout, redirect_stderr
from io import StringIO
import os
import tempfile
import unittest
from sfarc.archive import build
from sfarc.cli import main, subfile_index, subfile_name


COMPRESSED = b"\x10\x01\x00\x00\x00\x42"


def write_file(path, data):
    with open(path, "wb") as f:
        f.write(data)


def read_file(path):
    with open(path, "rb") as f:
        return f.read()


def run(argv):
    with redirect_stdout(StringIO()), redirect_stderr(StringIO()):
        main(argv)


class TestNaming(unittest.TestCase):
    def test_subfile_index(self):
        self.assertEqual(subfile_index("003.bin"), 3)
        self.assertEqual(subfile_index("name_012.lz.bin"), 12)
        self.assertEqual(subfile_index("a_b_7"), 7)
        self.assertIsNone(subfile_index("readme.txt"))
        self.assertIsNone(subfile_index("x_-1.bin"))
        self.assertIsNone(subfile_index(".hidden"))

    def test_subfile_name(self):
        self.assertEqual(subfile_name("dir/mess.bin", 3, 12), "mess_03.bin")
        self.assertEqual(subfile_name("mess.bin", 0, 1), "mess_0.bin")


class TestCommands(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_pack_then_extract(self):
        in_dir = os.path.join(self.tmp, "in")
        os.mkdir(in_dir)
        write_file(os.path.join(in_dir, "foo_000.bin"), b"hello")
        write_file(os.path.join(in_dir, "foo_2.bin"), COMPRESSED)
        write_file(os.path.join(in_dir, "readme.txt"), b"skipped")
        arc = os.path.join(self.tmp, "arc.bin")

        run(["p", in_dir, arc])
        self.assertEqual(read_file(arc), build({0: b"hello", 2: COMPRESSED}))

        out_dir = os.path.join(self.tmp, "out")
        run(["x", arc, out_dir])
        self.assertEqual(sorted(os.listdir(out_dir)), ["arc_0.bin", "arc_1.bin", "arc_2.bin"])
        self.assertEqual(read_file(os.path.join(out_dir, "arc_0.bin")), b"hello")
        self.assertEqual(read_file(os.path.join(out_dir, "arc_1.bin")), b"")
        self.assertEqual(read_file(os.path.join(out_dir, "arc_2.bin")), COMPRESSED)

    def test_extract_invalid_archive(self):
        arc = os.path.join(self.tmp, "bad.bin")
        write_file(arc, b"\x10\x00\x00\x00\x08\x00\x00\x00\x00\x00\x00\x00")
        with self.assertRaises(SystemExit) as cm:
            run(["x", arc, os.path.join(self.tmp, "out")])
        self.assertEqual(cm.exception.code, 2)

    def test_extract_missing_archive(self):
        with self.assertRaises(SystemExit) as cm:
            run(["x", os.path.join(self.tmp, "missing.bin"), self.tmp])
        self.assertEqual(cm.exception.code, 2)

    def test_decompress(self):
        src = os.path.join(self.tmp, "src.bin")
        out = os.path.join(self.tmp, "out.bin")
        write_file(src, b"junk" + COMPRESSED)
        run(["d", src, "0x4", out])
        self.assertEqual(read_file(out), b"\x42")

    def test_decompress_bad_data(self):
        src = os.path.join(self.tmp, "src.bin")
        write_file(src, b"not compressed")
        with self.assertRaises(SystemExit) as cm:
            run(["d", src, "0", os.path.join(self.tmp, "out.bin")])
        self.assertEqual(cm.exception.code, 2)


if __name__ == '__main__':
    unittest.main()
