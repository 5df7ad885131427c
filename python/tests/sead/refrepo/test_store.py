import os, json, pdb, zipfile, time
import unittest as test
from copy import deepcopy

from sead.testing import *
from sead.refrepo.exceptions import NotFoundError, ConfigurationException
from sead.refrepo.store import RefRepositoryStore
from sead.refrepo.bagit import BagGenerator, ContentResolver, validate_bag_file
from sead.refrepo.idmint import RegistryDOIMinter, CachingIDRegistry

datadir = os.path.join(os.path.dirname(__file__), "data")
tmpfiles = None

def setUpModule():
    global tmpfiles
    ensure_tmpdir()
    tmpfiles = Tempfiles()
def tearDownModule():
    tmpfiles.clean()
    rmtmpdir()

with open(os.path.join(datadir, "simple-oremap.json")) as fd:
    oremap = json.load(fd)
with open(os.path.join(datadir, "simple-pubreq.json")) as fd:
    pubreq = json.load(fd)

SRC = "https://source.example.org/api/researchobjects/X/files/"

class FakeFetcher(object):
    files = { SRC+"Y": b"hello", SRC+"F2": b"notes!\n" }
    def fetch(self, url, dest):
        dest.write(self.files[url])
        return dest

class NullReporter(object):
    def send(self, stage, message):
        return True

def publish_into(store, id="X"):
    cfg = { "num_threads": 1, "doi": { "shoulder": "10.5072/FK2" } }
    gen = BagGenerator(deepcopy(pubreq), deepcopy(oremap), cfg, ContentResolver(FakeFetcher()),
                       RegistryDOIMinter({}, CachingIDRegistry()), NullReporter())
    return gen.generate_bag(store.get_data_path(id))

class TestRefRepositoryStore(test.TestCase):

    def setUp(self):
        self.root = tmpfiles.mkdir("bags")
        self.store = RefRepositoryStore({ "data_root": self.root })
        self.result = publish_into(self.store)

    def tearDown(self):
        tmpfiles.clean()

    def test_ctor(self):
        self.assertEqual(self.store.root, self.root)
        with self.assertRaises(ConfigurationException):
            RefRepositoryStore({})
        with self.assertRaises(ConfigurationException):
            RefRepositoryStore(None)

    def test_paths(self):
        path = self.store.get_data_path("X")
        self.assertTrue(path.startswith(self.root))
        self.assertEqual(len(os.path.relpath(path, self.root).split(os.sep)), 2)
        self.assertEqual(self.store.get_bag_name_root("tag:x/1"), "tag_x_1")
        self.assertEqual(self.store.get_bag_file("X"), self.result.bagfile)
        self.assertTrue(self.store.exists("X"))
        self.assertFalse(self.store.exists("Z"))
        with self.assertRaises(NotFoundError):
            self.store.get_bag_file("Z")

    def test_ensure_index(self):
        (mapfile, descfile, indexfile) = self.store.ensure_index("X")
        for f in (mapfile, descfile, indexfile):
            self.assertTrue(os.path.isfile(f))
        self.assertEqual(mapfile, os.path.join(self.store.get_data_path("X"), "X.oremap.jsonld.txt"))
        self.assertTrue(descfile.endswith("X.desc.json"))
        self.assertTrue(indexfile.endswith("X.index.json"))

        with open(mapfile) as fd:
            self.assertEqual(json.load(fd)['describes']['Identifier'], "X")

        mtime = os.stat(indexfile).st_mtime
        self.assertEqual(self.store.ensure_index("X")[2], indexfile)
        self.assertEqual(os.stat(indexfile).st_mtime, mtime)

        self.store.invalidate("X")
        for f in (mapfile, descfile, indexfile):
            self.assertFalse(os.path.exists(f))
        self.store.invalidate("X")

        with self.assertRaises(NotFoundError):
            self.store.ensure_index("Z")

    def test_summary(self):
        summ = self.store.get_aggregation_summary("X")
        self.assertEqual(summ['Identifier'], "X")
        self.assertEqual(summ['Title'], "Set1")
        self.assertEqual(summ['External Identifier'], self.result.external_identifier)
        self.assertEqual([r['Identifier'] for r in summ['aggregates']], ["C1", "Y"])
        self.assertNotIn('aggregates', summ['aggregates'][0])

    def test_get_item(self):
        item = self.store.get_item("X", "C1")
        self.assertEqual(item['Title'], "Sub")
        self.assertEqual([r['Identifier'] for r in item['aggregates']], ["F2"])

        item = self.store.get_item("X", "Y")
        self.assertEqual(item['Label'], "file.txt")
        self.assertIn("SHA512 Hash", item)
        self.assertNotIn("aggregates", item)

        with self.assertRaises(NotFoundError):
            self.store.get_item("X", "goob")
        with self.assertRaises(NotFoundError):
            self.store.get_item("Z", "Y")

    def test_get_file(self):
        with self.store.get_file("X", "Set1/file.txt") as fd:
            self.assertEqual(fd.read(), b"hello")
        with self.store.get_file("X", "/Set1/Sub/notes.txt") as fd:
            self.assertEqual(fd.read(), b"notes!\n")
        with self.assertRaises(NotFoundError):
            self.store.get_file("X", "Set1/goob.txt")

        with self.store.get_raw_archive("X") as fd:
            self.assertEqual(fd.read(2), b"PK")

    def test_get_metadata_file(self):
        with self.store.get_metadata_file("X", "bagit.txt") as fd:
            self.assertIn(b"BagIt-Version: 0.97", fd.read())
        with self.store.get_metadata_file("X", "oremap.jsonld.txt") as fd:
            self.assertEqual(json.loads(fd.read().decode('utf-8'))['describes']['Identifier'], "X")
        with self.assertRaises(ValueError):
            self.store.get_metadata_file("X", "data/Set1/file.txt")
        with self.assertRaises(NotFoundError):
            self.store.get_metadata_file("X", "goob.txt")

    def test_manifest(self):
        self.assertEqual(self.store.get_manifest("X"),
                         [("X", "X/data/Set1/"), ("C1", "X/data/Set1/Sub/"),
                          ("F2", "X/data/Set1/Sub/notes.txt"), ("Y", "X/data/Set1/file.txt")])

        lines = self.store.render_manifest("X").splitlines()
        self.assertEqual(len(lines), 6)
        self.assertEqual(lines[0].split(), ["Identifier", "Path"])
        self.assertEqual(lines[5], "Y".ljust(10) + "  X/data/Set1/file.txt")

    def test_move(self):
        self.store.ensure_index("X")
        data = self.store.move("X", "https://new.example.org/")
        self.assertEqual(data['@id'], "https://new.example.org/api/researchobjects/X/meta/oremap.jsonld.txt")

        self.assertFalse(os.path.exists(os.path.join(self.store.get_data_path("X"), "X.index.json")))
        summ = self.store.get_aggregation_summary("X")
        self.assertEqual(summ['@id'],
                         "https://new.example.org/api/researchobjects/X/meta/oremap.jsonld.txt#aggregation")
        self.assertEqual(self.store.get_item("X", "Y")['similarTo'],
                         "https://new.example.org/api/researchobjects/X/files/Y")

        with self.store.get_file("X", "Set1/file.txt") as fd:
            self.assertEqual(fd.read(), b"hello")
        self.assertTrue(validate_bag_file(self.store.get_bag_file("X")).ok())

        with self.assertRaises(NotFoundError):
            self.store.move("Z", "https://new.example.org/")


if __name__ == '__main__':
    test.main()
