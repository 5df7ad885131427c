import os, sys, logging, pdb, json, tempfile, zipfile, io
import unittest as test
from unittest import mock

from sead.refrepo.utils import cli
from sead.refrepo.cli import refrepo, publish, validate, index, get, manifest, move
from sead.refrepo.constants import bag_dir_for
from sead.base import config as cfgmod

datadir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")
reqfile = os.path.join(datadir, "simple-pubreq.json")
orefile = os.path.join(datadir, "simple-oremap.json")
conffile = os.path.join(datadir, "config.yml")

tmparch = tempfile.TemporaryDirectory(prefix="_test_refrepo_cli.")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmparch.name,"test_refrepo_cli.log"))
    loghdlr.setLevel(logging.DEBUG)
    rootlog.addHandler(loghdlr)

def tearDownModule():
    global loghdlr
    if loghdlr:
        if rootlog:
            rootlog.removeHandler(loghdlr)
        loghdlr.close()
        loghdlr = None
    tmparch.cleanup()

SRC = "https://source.example.org/api/researchobjects/X/files/"
contents = { SRC+"Y": b"hello", SRC+"F2": b"notes!\n" }

class MockResponse:
    def __init__(self, body, status_code=200, reason="OK"):
        self.body = body
        self.status_code = status_code
        self.reason = reason
    def iter_content(self, size):
        yield self.body
    def close(self):
        pass

def fake_get(url, **kw):
    if url in contents:
        return MockResponse(contents[url])
    return MockResponse(b"", 404, "Not Found")

class TestRefRepoCmds(test.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory(prefix="_test_cmd.", dir=tmparch.name)
        self.workdir = self.tmpdir.name
        self.dataroot = os.path.join(self.workdir, "bags")
        os.mkdir(self.dataroot)
        self.cmd = cli.CLISuite("refrepo")
        for mod in (publish, validate, index, get, manifest, move):
            self.cmd.load_subcommand(mod)

    def tearDown(self):
        if cfgmod._log_handler:
            logging.getLogger().removeHandler(cfgmod._log_handler)
            cfgmod._log_handler.close()
            cfgmod._log_handler = None
        self.tmpdir.cleanup()

    def run_cmd(self, argline):
        args = ("-q -w %s -c %s -d %s " % (self.workdir, conffile, self.dataroot)) + argline
        with mock.patch('sys.stdout', new_callable=io.StringIO) as out:
            self.cmd.execute(args.split())
        return out.getvalue()

    @mock.patch('sead.refrepo.bagit.content.requests.get', side_effect=fake_get)
    def publish_X(self, mockget):
        return self.run_cmd("publish X -y -r %s -m %s" % (reqfile, orefile))

    def test_parse(self):
        args = self.cmd.parse_args("-q publish -r req.json -m ore.json -I -L Z -y X".split())
        self.assertEqual(args.cmd, "publish")
        self.assertEqual(args.id, "X")
        self.assertEqual(args.reqfile, "req.json")
        self.assertEqual(args.orefile, "ore.json")
        self.assertTrue(args.ignorehashes)
        self.assertFalse(args.validateonly)
        self.assertEqual(args.localsrc, "Z")
        self.assertTrue(args.approve)

        args = self.cmd.parse_args("get -o out.json X C1".split())
        self.assertEqual(args.id, "X")
        self.assertEqual(args.childid, "C1")
        self.assertEqual(args.outfile, "out.json")

        args = self.cmd.parse_args("validate -a -s req.json X.zip".split())
        self.assertEqual(args.bagfile, "X.zip")
        self.assertEqual(args.reqfile, "req.json")
        self.assertTrue(args.showall)

    def test_publish_and_read(self):
        out = self.publish_X()
        self.assertIn("Published X as https://doi.org/10.5072/FK2", out)

        out = self.run_cmd("publish -V X")
        self.assertIn("Bag for X is valid", out)

        outf = os.path.join(self.workdir, "agg.json")
        self.run_cmd("get -o %s X" % outf)
        with open(outf) as fd:
            data = json.load(fd)
        self.assertEqual(data['Identifier'], "X")
        self.assertEqual([r['Identifier'] for r in data['aggregates']], ["C1", "Y"])

        data = json.loads(self.run_cmd("get X C1"))
        self.assertEqual(data['Title'], "Sub")
        self.assertEqual([r['Identifier'] for r in data['aggregates']], ["F2"])

        data = json.loads(self.run_cmd("manifest -j X"))
        self.assertEqual(data[3], ["Y", "X/data/Set1/file.txt"])
        out = self.run_cmd("manifest X")
        self.assertTrue(out.startswith("Identifier"))
        self.assertEqual(len(out.splitlines()), 6)

        paths = self.run_cmd("index -f X").splitlines()
        self.assertEqual(len(paths), 3)
        self.assertTrue(paths[2].endswith("X.index.json"))
        self.assertTrue(os.path.isfile(paths[2]))

    def test_validate(self):
        self.publish_X()
        bagfile = os.path.join(bag_dir_for(self.dataroot, "X"), "X.zip")

        out = self.run_cmd("validate -s %s %s" % (reqfile, bagfile))
        self.assertIn("bag is valid", out)
        out = self.run_cmd("validate -a %s" % bagfile)
        self.assertTrue(out.startswith("PASSED: "))

        badbag = os.path.join(self.workdir, "bad.zip")
        with zipfile.ZipFile(badbag, 'w') as zf:
            zf.writestr("B/data/f.txt", "hello")
        with self.assertRaises(cli.CommandFailure) as cm:
            self.run_cmd("validate bad.zip")
        self.assertEqual(cm.exception.stat, 9)
        self.assertEqual(cm.exception.cmd, "validate")

        with self.assertRaises(cli.CommandFailure) as cm:
            self.run_cmd("validate goob.zip")
        self.assertEqual(cm.exception.stat, 7)

        notzip = os.path.join(self.workdir, "notzip.zip")
        with open(notzip, 'w') as fd:
            fd.write("goob")
        with self.assertRaises(cli.CommandFailure) as cm:
            self.run_cmd("validate notzip.zip")
        self.assertEqual(cm.exception.stat, 3)

    def test_move(self):
        self.publish_X()
        out = self.run_cmd("move X https://new.example.org/")
        self.assertEqual(out.strip(),
                         "ORE map for X now at https://new.example.org/api/researchobjects/X/meta/oremap.jsonld.txt")

        data = json.loads(self.run_cmd("get X Y"))
        self.assertEqual(data['similarTo'], "https://new.example.org/api/researchobjects/X/files/Y")

    def test_not_found(self):
        for argline in ("get X", "get X C1", "index X", "manifest X", "move X https://new.example.org/",
                        "publish -V X"):
            with self.assertRaises(cli.CommandFailure) as cm:
                self.run_cmd(argline)
            self.assertEqual(cm.exception.stat, 7, argline)

        self.publish_X()
        with self.assertRaises(cli.CommandFailure) as cm:
            self.run_cmd("get X goob")
        self.assertEqual(cm.exception.stat, 7)

    def test_bad_setup(self):
        with self.assertRaises(cli.CommandFailure) as cm:
            self.cmd.execute(("-q -w %s get X" % self.workdir).split(), {})
        self.assertEqual(cm.exception.stat, 6)

        with self.assertRaises(cli.CommandFailure) as cm:
            self.run_cmd("publish X -y")
        self.assertEqual(cm.exception.stat, 2)

    @mock.patch('sead.refrepo.bagit.content.requests.get', side_effect=fake_get)
    def test_not_approved(self, mockget):
        req = os.path.join(self.workdir, "repub.json")
        with open(reqfile) as fd:
            data = json.load(fd)
        data['Preferences']['External Identifier'] = "https://doi.org/10.5072/FK2OLD123"
        with open(req, 'w') as fd:
            json.dump(data, fd)

        with mock.patch('sead.refrepo.cli.publish.input', create=True, return_value="n"):
            with self.assertRaises(cli.CommandFailure) as cm:
                with mock.patch('sys.stderr', new_callable=io.StringIO) as err:
                    self.run_cmd("publish X -r %s -m %s" % (req, orefile))
        self.assertEqual(cm.exception.stat, 8)
        self.assertIn("intended to replace", err.getvalue())

        with mock.patch('sead.refrepo.cli.publish.input', create=True, return_value="yes"):
            with mock.patch('sys.stderr', new_callable=io.StringIO):
                out = self.run_cmd("publish X -r %s -m %s" % (req, orefile))
        self.assertIn("Published X as", out)

class TestMain(test.TestCase):

    def tearDown(self):
        if cfgmod._log_handler:
            logging.getLogger().removeHandler(cfgmod._log_handler)
            cfgmod._log_handler.close()
            cfgmod._log_handler = None

    def test_main(self):
        with tempfile.TemporaryDirectory(prefix="_test_main.", dir=tmparch.name) as wd:
            with self.assertRaises(cli.CommandFailure) as cm:
                refrepo.main("refrepo", ["-q", "-w", wd, "-d", wd, "get", "X"])
            self.assertEqual(cm.exception.stat, 7)
            self.assertEqual(cm.exception.cmd, "get")
            self.assertTrue(os.path.isfile(os.path.join(wd, "refrepo.log")))

        with mock.patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                refrepo.main("refrepo", ["goob"])


if __name__ == '__main__':
    test.main()
