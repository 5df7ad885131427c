import os, json, pdb, io
import unittest as test
from collections import OrderedDict

from sead.testing import *
from sead.refrepo.exceptions import ParseError
from sead.refrepo.ore import index as idx

tmpfiles = None

def setUpModule():
    global tmpfiles
    ensure_tmpdir()
    tmpfiles = Tempfiles()
def tearDownModule():
    tmpfiles.clean()
    rmtmpdir()

def make_doc(n=3):
    return OrderedDict([
        ("@context", "https://w3id.org/ore/context"),
        ("@id", "http://example.org/oremap"),
        ("describes", OrderedDict([
            ("Identifier", "agg"),
            ("Title", "An \"escaped\" title with \\ and { brackets ]"),
            ("aggregates", [ OrderedDict([("@id", "res%d" % i), ("Identifier", "ident%d" % i),
                                          ("Title", "file {%d}.txt" % i), ("Size", i*100),
                                          ("flag", True), ("none", None)])
                             for i in range(n) ]),
            ("Has Part", [ "res%d" % i for i in range(n) ]),
            ("Abstract", "Some text")
        ]))
    ])

class TestJSONTokenScanner(test.TestCase):

    def scanner(self, data, bufsize=4):
        return idx.JSONTokenScanner(io.BytesIO(data), "test", bufsize)

    def test_peek(self):
        s = self.scanner(b'   \n {"a": 1}')
        self.assertEqual(s.peek(), b'{')
        self.assertEqual(s.offset, 5)
        self.assertIsNone(self.scanner(b'  ').peek())

    def test_read_value(self):
        s = self.scanner(b'["a\\"b", {"c": [1, 2.5, false]}, null]')
        self.assertEqual(s.read_value(), ["a\"b", {"c": [1, 2.5, False]}, None])
        self.assertIsNone(s.peek())

    def test_iter_members(self):
        s = self.scanner(b'{"a": 1, "b": {"c": "}"}, "d": [true]}', 3)
        names = []
        for name in s.iter_members():
            names.append(name)
            if name == "d":
                self.assertEqual(s.read_value(), [True])
            else:
                s.skip_value()
        self.assertEqual(names, ["a", "b", "d"])

        s = self.scanner(b'{ }')
        self.assertEqual(list(s.iter_members()), [])

    def test_iter_elements(self):
        data = b'[ {"x": 1}, "yy", 3 ]'
        s = self.scanner(data, 2)
        offsets = []
        for off in s.iter_elements():
            offsets.append(off)
            s.skip_value()
        self.assertEqual(offsets, [2, 12, 18])
        self.assertEqual(data[2:3], b'{')

    def test_errors(self):
        s = self.scanner(b'{"a": 1 "b": 2}')
        with self.assertRaises(ParseError):
            for name in s.iter_members():
                s.skip_value()

        s = self.scanner(b'"unterminated')
        with self.assertRaises(ParseError):
            s.skip_value()

        s = self.scanner(b'[1, 2')
        with self.assertRaises(ParseError):
            s.skip_value()

        s = self.scanner(b'}')
        with self.assertRaises(ParseError):
            s.skip_value()

class TestOREIndex(test.TestCase):

    def test_add(self):
        index = idx.OREIndex()
        self.assertTrue(index.add("a", 10))
        self.assertTrue(index.add("b", 50))
        self.assertFalse(index.add("a", 90))
        self.assertEqual(len(index), 2)
        self.assertIn("a", index)
        self.assertNotIn("c", index)
        self.assertEqual(index.offset_of("a"), 10)
        self.assertIsNone(index.offset_of("c"))

    def test_estimate_length(self):
        index = idx.OREIndex(OrderedDict([("a", 10), ("a2", 10), ("b", 50), ("c", 75)]), 100)
        self.assertEqual(index.estimate_length("a"), 40)
        self.assertEqual(index.estimate_length("a2"), 40)
        self.assertEqual(index.estimate_length("b"), 25)
        self.assertEqual(index.estimate_length("c"), 25)

        index.length = None
        with self.assertRaises(ParseError):
            index.estimate_length("c")

    def test_json(self):
        index = idx.OREIndex({"a": 10, "b": 50}, 100)
        data = index.to_json()
        self.assertEqual(data['length'], 100)
        self.assertEqual(data['entries'], {"a": 10, "b": 50})

        index = idx.OREIndex.from_json(data)
        self.assertEqual(index.length, 100)
        self.assertEqual(index.offset_of("b"), 50)

        index = idx.OREIndex.from_json({"a": 10, "b": 50})
        self.assertIsNone(index.length)
        self.assertEqual(index.offset_of("a"), 10)

    def test_save_load(self):
        path = tmpfiles.track("index.json")
        idx.OREIndex({"a": 10, "b": 50}, 100).save(path)
        index = idx.OREIndex.load(path)
        self.assertEqual(index.length, 100)
        self.assertEqual(len(index), 2)

        with open(path, 'w') as fd:
            json.dump({"a": 10}, fd)
        self.assertEqual(idx.OREIndex.load(path, 64).length, 64)

        with open(path, 'w') as fd:
            fd.write("{ goob")
        with self.assertRaises(ParseError):
            idx.OREIndex.load(path)

class TestStreamingIndexer(test.TestCase):

    def setUp(self):
        self.doc = make_doc()
        self.data = json.dumps(self.doc, indent=2).encode('utf-8')

    def test_index(self):
        for bufsize in (3, 17, 1024):
            (desc, index) = idx.StreamingIndexer({'bufsize': bufsize}).index(io.BytesIO(self.data))

            self.assertEqual(list(desc.keys()), ["Identifier", "Title", "Has Part", "Abstract"])
            self.assertEqual(desc['Title'], self.doc['describes']['Title'])
            self.assertEqual(index.length, len(self.data))

            # each resource is indexed under its @id and its Identifier
            self.assertEqual(len(index), 6)
            for i in range(3):
                off = index.offset_of("res%d" % i)
                self.assertEqual(index.offset_of("ident%d" % i), off)
                self.assertEqual(self.data[off:off+1], b'{')
                item = json.JSONDecoder().raw_decode(self.data[off:].decode('utf-8'))[0]
                self.assertEqual(item['@id'], "res%d" % i)

    def test_index_files(self):
        descf = tmpfiles.track("desc.json")
        indexf = tmpfiles.track("idx.json")
        docf = tmpfiles.track("doc.json")
        with open(docf, 'wb') as fd:
            fd.write(self.data)

        (desc, index) = idx.index_document(docf, descf, indexf)
        self.assertTrue(os.path.isfile(descf))
        self.assertTrue(os.path.isfile(indexf))
        with open(descf) as fd:
            self.assertEqual(json.load(fd)['Identifier'], "agg")
        self.assertEqual(idx.OREIndex.load(indexf).entries, index.entries)

    def test_skip_unidentified_and_dups(self):
        self.doc['describes']['aggregates'].append({"Title": "anonymous"})
        self.doc['describes']['aggregates'].append({"@id": "res0", "Title": "again"})
        data = json.dumps(self.doc).encode('utf-8')
        (desc, index) = idx.StreamingIndexer().index(io.BytesIO(data))
        self.assertEqual(len(index), 6)
        off = index.offset_of("res0")
        self.assertEqual(json.JSONDecoder().raw_decode(data[off:].decode('utf-8'))[0]['Title'],
                         "file {0}.txt")

    def test_bad_docs(self):
        indexer = idx.StreamingIndexer()
        with self.assertRaises(ParseError):
            indexer.index(io.BytesIO(b'[1, 2]'))
        with self.assertRaises(ParseError):
            indexer.index(io.BytesIO(b'{"@id": "goob"}'))
        with self.assertRaises(ParseError):
            indexer.index(io.BytesIO(self.data[:-40]))
        with self.assertRaises(ParseError):
            indexer.index(io.BytesIO(b'{"describes": {"aggregates": {"a": 1}}}'))
        with self.assertRaises(ParseError):
            indexer.index(io.BytesIO(b'{"describes": {"aggregates": [1]}}'))
        with self.assertRaises(ParseError):
            indexer.index(io.BytesIO(b'{"describes": {}} {}'))


if __name__ == '__main__':
    test.main()
