import os, pdb, zipfile, time, tempfile
import unittest as test

from sead.testing import *
from sead.refrepo.bagit import writer
from sead.refrepo.bagit.content import ContentSink

tmpfiles = None

def setUpModule():
    global tmpfiles
    ensure_tmpdir()
    tmpfiles = Tempfiles()
def tearDownModule():
    tmpfiles.clean()
    rmtmpdir()

def prepare(name, data, delay=0):
    if delay:
        time.sleep(delay)
    if data is None:
        return writer.EntryResult(name, {"name": name}, error=OSError("unreadable"))
    sink = ContentSink()
    sink.write(data)
    return writer.EntryResult(name, {"name": name}, sink, "remote")

class TestEntryResult(test.TestCase):

    def test_ok(self):
        res = prepare("a/b.txt", b"hello")
        self.assertTrue(res.ok)
        self.assertEqual(res.size, 5)
        self.assertEqual(res.context, {"name": "a/b.txt"})
        self.assertIsNone(res.error)
        res.discard()
        self.assertFalse(res.ok)
        self.assertEqual(res.size, 0)

    def test_failed(self):
        res = prepare("a/b.txt", None)
        self.assertFalse(res.ok)
        self.assertIsNone(res.hexdigest())
        self.assertIsInstance(res.error, OSError)

class TestScatterGatherArchive(test.TestCase):

    def setUp(self):
        self.zipfile = tmpfiles.track("test.zip")

    def tearDown(self):
        tmpfiles.clean()

    def test_write(self):
        with writer.ScatterGatherArchive(3) as arch:
            arch.add_directory("bag/data")
            arch.add_directory("bag/data/sub/")
            arch.submit(prepare, "bag/data/sub/slow.txt", b"slow", 0.2)
            arch.submit(prepare, "bag/data/fast.txt", b"fast")
            arch.submit(prepare, "bag/data/bad.txt", None)
            self.assertEqual(arch.submitted, 3)

            names = [r.arcname for r in arch.gather()]
            self.assertEqual(len(names), 3)
            self.assertEqual(names[-1], "bag/data/sub/slow.txt")

            arch.add_metadata("bag/bagit.txt", "BagIt-Version: 0.97\n")
            arch.add_metadata("bag/manifest-sha1.txt", b"xxx bag/data/fast.txt\n")
            self.assertEqual(arch.write(self.zipfile), 2)

            with self.assertRaises(RuntimeError):
                arch.submit(prepare, "bag/data/late.txt", b"late")

        with zipfile.ZipFile(self.zipfile) as zf:
            names = zf.namelist()
            self.assertEqual(names[:4], ["bag/data/", "bag/data/sub/", "bag/bagit.txt",
                                         "bag/manifest-sha1.txt"])
            self.assertEqual(set(names[4:]), set(["bag/data/fast.txt", "bag/data/sub/slow.txt"]))
            self.assertTrue(zf.getinfo("bag/data/sub/").is_dir())
            self.assertEqual(zf.read("bag/data/sub/slow.txt"), b"slow")
            self.assertEqual(zf.read("bag/bagit.txt"), b"BagIt-Version: 0.97\n")

    def test_write_without_gather(self):
        arch = writer.ScatterGatherArchive()
        arch.submit(prepare, "bag/data/a.txt", b"a")
        self.assertEqual(arch.write(self.zipfile, (2020, 1, 1, 0, 0, 0)), 1)
        self.assertEqual(len(arch.results), 1)
        arch.close()

        with zipfile.ZipFile(self.zipfile) as zf:
            self.assertEqual(zf.getinfo("bag/data/a.txt").date_time, (2020, 1, 1, 0, 0, 0))

    def test_entries_prepared_on_disk(self):
        # each worker compresses its entry into its own temporary file; the merge only
        # copies those bytes
        payload = dict([("bag/data/f%03d.txt" % i, (b"line %d of the file\n" % i) * 20000)
                        for i in range(60)])

        def prepare_on_disk(arch, name):
            sink = arch.new_sink("sha1", tmpdir())
            data = payload[name]
            for i in range(0, len(data), 65536):
                sink.write(data[i:i+65536])
            sink.finish()
            return writer.EntryResult(name, None, sink, "remote")

        with writer.ScatterGatherArchive(4) as arch:
            for name in payload:
                arch.submit(prepare_on_disk, arch, name)
            results = list(arch.gather())
            self.assertEqual(len(results), len(payload))

            for res in results:
                self.assertTrue(res.sink.finished)
                self.assertNotIsInstance(res.sink.file, tempfile.SpooledTemporaryFile)
                self.assertEqual(os.fstat(res.sink.file.fileno()).st_size, res.sink.compressed_size)
                self.assertLess(res.sink.compressed_size, res.size)
            prepared = dict([(r.arcname, (r.sink.compressed_size, r.sink.crc)) for r in results])

            self.assertEqual(arch.write(self.zipfile), len(payload))

        with zipfile.ZipFile(self.zipfile) as zf:
            self.assertIsNone(zf.testzip())
            for name, data in payload.items():
                info = zf.getinfo(name)
                self.assertEqual(info.compress_type, zipfile.ZIP_DEFLATED)
                self.assertEqual((info.compress_size, info.CRC), prepared[name])
                self.assertEqual(info.file_size, len(data))
                self.assertEqual(zf.read(name), data)

    def test_stored(self):
        def prepare_stored(arch, name, data):
            sink = arch.new_sink()
            sink.write(data)
            return writer.EntryResult(name, None, sink.finish(), "local")

        with writer.ScatterGatherArchive(2, zipfile.ZIP_STORED) as arch:
            arch.add_directory("bag/data/")
            arch.submit(prepare_stored, arch, "bag/data/a.txt", b"stored as is")
            arch.add_metadata("bag/bagit.txt", "BagIt-Version: 0.97\n")
            arch.write(self.zipfile)

        with zipfile.ZipFile(self.zipfile) as zf:
            self.assertIsNone(zf.testzip())
            self.assertEqual(zf.getinfo("bag/data/a.txt").compress_type, zipfile.ZIP_STORED)
            self.assertEqual(zf.read("bag/data/a.txt"), b"stored as is")


if __name__ == '__main__':
    test.main()
