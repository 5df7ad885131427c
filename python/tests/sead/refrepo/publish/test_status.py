import os, json, pdb, logging
import unittest as test
from unittest import mock

import requests

from sead.testing import *
from sead.refrepo.publish import status
from sead.refrepo.exceptions import ConfigurationException

tmpfiles = None

def setUpModule():
    global tmpfiles
    ensure_tmpdir()
    tmpfiles = Tempfiles()

def tearDownModule():
    tmpfiles.clean()
    rmtmpdir()

class MockResponse:
    def __init__(self, status_code=200, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self.closed = False
    def close(self):
        self.closed = True

class TestLogStatusReporter(test.TestCase):

    def test_send(self):
        rep = status.LogStatusReporter("X")
        self.assertEqual(rep.reporter, "SEAD Reference Repository")
        with self.assertLogs(rep.log, logging.INFO) as cm:
            self.assertTrue(rep.send("Pending", "Processing has begun"))
            self.assertTrue(rep.send("Failure", "Processing failed"))
        self.assertIn("Pending status for X: Processing has begun", cm.output[0])
        self.assertTrue(cm.output[1].startswith("WARNING:"))

        with self.assertRaises(ValueError):
            rep.send("Goofing", "Not a stage")

class TestFileStatusReporter(test.TestCase):

    def setUp(self):
        self.statusdir = tmpfiles.mkdir("status")

    def tearDown(self):
        tmpfiles.clean()

    def test_ctor(self):
        rep = status.FileStatusReporter("tag:x/1", { "statusdir": self.statusdir }, "Test Repo")
        self.assertEqual(rep.statusfile, os.path.join(self.statusdir, "tag_x_1.status.json"))
        with self.assertRaises(ConfigurationException):
            status.FileStatusReporter("X", {})

    def test_send(self):
        rep = status.FileStatusReporter("X", { "statusdir": self.statusdir }, "Test Repo")
        self.assertEqual(rep.history(), [])
        self.assertTrue(rep.send("Pending", "Processing has begun"))
        self.assertTrue(rep.send("Success", "https://doi.org/10.5072/FK2ABCDEF"))

        hist = rep.history()
        self.assertEqual([h['stage'] for h in hist], ["Pending", "Success"])
        self.assertEqual(hist[1]['message'], "https://doi.org/10.5072/FK2ABCDEF")
        self.assertEqual(hist[0]['reporter'], "Test Repo")
        self.assertEqual(hist[0]['id'], "X")
        self.assertIn('time', hist[0])

    def test_failed_delivery(self):
        blocker = os.path.join(self.statusdir, "blocker")
        with open(blocker, 'w') as fd:
            fd.write("x")
        rep = status.FileStatusReporter("X", { "statusdir": blocker })
        self.assertFalse(rep.send("Pending", "Processing has begun"))

class TestHTTPStatusReporter(test.TestCase):

    def setUp(self):
        self.cfg = { "service_endpoint": "https://c3pr.example.org/c3pr", "auth_token": "SECRET" }

    def test_ctor(self):
        rep = status.HTTPStatusReporter("tag:x/1", self.cfg)
        self.assertEqual(rep.url, "https://c3pr.example.org/c3pr/api/researchobjects/tag%3Ax%2F1/status")
        self.assertEqual(rep.timeout, 30)
        with self.assertRaises(ConfigurationException):
            status.HTTPStatusReporter("X", {})

    @mock.patch('sead.refrepo.publish.status.requests.post')
    def test_send(self, mockpost):
        resp = MockResponse()
        mockpost.return_value = resp
        rep = status.HTTPStatusReporter("X", self.cfg, "Test Repo")
        self.assertTrue(rep.send("Success", "https://doi.org/10.5072/FK2ABCDEF"))
        self.assertTrue(resp.closed)

        (args, kw) = mockpost.call_args
        self.assertEqual(args[0], "https://c3pr.example.org/c3pr/api/researchobjects/X/status")
        self.assertEqual(kw['headers']['Authorization'], "Bearer SECRET")
        self.assertEqual(json.loads(kw['data']),
                         {"reporter": "Test Repo", "stage": "Success",
                          "message": "https://doi.org/10.5072/FK2ABCDEF"})

    @mock.patch('sead.refrepo.publish.status.requests.post')
    def test_send_failure(self, mockpost):
        rep = status.HTTPStatusReporter("X", self.cfg)
        mockpost.return_value = MockResponse(500, "Internal Server Error")
        self.assertFalse(rep.send("Pending", "Processing has begun"))

        mockpost.side_effect = requests.ConnectionError("no route to host")
        self.assertFalse(rep.send("Pending", "Processing has begun"))

class TestCreateStatusReporter(test.TestCase):

    def test_create(self):
        self.assertIsInstance(status.create_status_reporter(None, "X"), status.LogStatusReporter)
        self.assertIsInstance(status.create_status_reporter({"type": "file", "statusdir": "/tmp"}, "X"),
                              status.FileStatusReporter)

        rep = status.create_status_reporter({"type": "http", "reporter": "Test Repo", "timeout": 5,
                                             "pubreq_service": { "service_endpoint": "https://c3pr.example.org/",
                                                                 "timeout": 60 }}, "X")
        self.assertIsInstance(rep, status.HTTPStatusReporter)
        self.assertEqual(rep.reporter, "Test Repo")
        self.assertEqual(rep.timeout, 5)
        self.assertEqual(rep.url, "https://c3pr.example.org/api/researchobjects/X/status")

        with self.assertRaises(ConfigurationException):
            status.create_status_reporter({"type": "carrier-pigeon"}, "X")


if __name__ == '__main__':
    test.main()
