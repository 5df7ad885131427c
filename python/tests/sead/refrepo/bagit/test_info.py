import os, json, pdb
import unittest as test

from sead.refrepo.model import Aggregation, PublicationRequest
from sead.refrepo.bagit import info

datadir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

class TestHelpers(test.TestCase):

    def test_human_size(self):
        self.assertEqual(info.human_size(0), "0 bytes")
        self.assertEqual(info.human_size(512), "512 bytes")
        self.assertEqual(info.human_size(2048), "2 KB")
        self.assertEqual(info.human_size(3 * 1024 * 1024 + 5), "3 MB")
        self.assertEqual(info.human_size(1024 ** 3), "1 GB")
        self.assertEqual(info.human_size(5 * 1024 ** 4), "5 TB")

    def test_bagit_txt(self):
        self.assertEqual(info.bagit_txt(), "BagIt-Version: 0.97\nTag-File-Character-Encoding: UTF-8")

    def test_manifest_text(self):
        self.assertEqual(info.manifest_text({"X/data/Set1/file.txt": "abc123"}),
                         "abc123 X/data/Set1/file.txt\n")
        self.assertEqual(info.pid_mapping_text({"Y": "X/data/Set1/file.txt", "X": "X/data/Set1/"}),
                         "Y X/data/Set1/file.txt\nX X/data/Set1/\n")

class TestBagInfo(test.TestCase):

    def setUp(self):
        with open(os.path.join(datadir, "simple-oremap.json")) as fd:
            self.agg = Aggregation(json.load(fd)['describes'])
        with open(os.path.join(datadir, "simple-pubreq.json")) as fd:
            self.req = PublicationRequest(json.load(fd))
        self.agg["External Identifier"] = "https://doi.org/10.5072/FK2ABCDEF"

    def parse(self, text):
        self.assertTrue(text.endswith(info.CRLF))
        return [ln.split(": ", 1) for ln in text.split(info.CRLF)[:-1]]

    def test_labels(self):
        text = info.bag_info_text(self.agg, self.req, bagging_date="2024-01-02")
        lines = self.parse(text)
        labels = [ln[0] for ln in lines]
        self.assertEqual(labels, ["Contact-Name", "External-Description", "Bagging-Date",
                                  "External-Identifier", "Bag-Size", "Payload-Oxum",
                                  "Internal-Sender-Identifier"])
        vals = dict(lines)
        self.assertEqual(vals["Contact-Name"], "Jane Doe")
        self.assertEqual(vals["Bagging-Date"], "2024-01-02")
        self.assertEqual(vals["External-Identifier"], "https://doi.org/10.5072/FK2ABCDEF")
        self.assertEqual(vals["Bag-Size"], "12 bytes")
        self.assertEqual(vals["Payload-Oxum"], "12.2")
        self.assertEqual(vals["Internal-Sender-Identifier"], "X")

    def test_contacts_and_repo_info(self):
        self.agg["Contact"] = [{"givenName": "Sam", "familyName": "Smith", "email": "sam@example.org"}]
        self.agg["Primary Source"] = "Example University"
        text = info.bag_info_text(self.agg, self.req,
                                  {"Organization-Address": "1 Main St."}, bagging_date="2024-01-02")
        lines = self.parse(text)
        self.assertEqual(lines[0], ["Source-Organization", "Example University"])
        self.assertEqual(lines[1], ["Contact-Name", "Sam Smith"])
        self.assertEqual(lines[2], ["Contact-Email", "sam@example.org"])
        self.assertEqual(lines[3], ["Organization-Address", "1 Main St."])

    def test_expand_rights_holder(self):
        def expand(people):
            return [{"givenName": "Jane", "familyName": "Doe", "email": "jd@example.org"} for p in people]
        lines = self.parse(info.bag_info_text(self.agg, self.req, expand_people=expand))
        self.assertEqual(lines[0], ["Contact-Name", "Jane Doe"])
        self.assertEqual(lines[1], ["Contact-Email", "jd@example.org"])

    def test_wrapped_description(self):
        self.agg["Abstract"] = "word " * 40
        text = info.bag_info_text(self.agg, self.req)
        desc = [ln for ln in text.split(info.CRLF) if ln.startswith("External-Description")][0]
        self.assertLessEqual(len(desc), len("External-Description: ") + info.INFO_WRAP_WIDTH)
        self.assertIn(info.CRLF + " word", text)


if __name__ == '__main__':
    test.main()
