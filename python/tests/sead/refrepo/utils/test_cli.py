import os, sys, logging, argparse, pdb
import unittest as test

from sead.testing import *
from sead.refrepo.utils import cli
from sead.refrepo.exceptions import StateException
from sead.base import config as cfgmod

tmpd = None

def setUpModule():
    global tmpd
    ensure_tmpdir()
    tmpd = tmpdir()

def tearDownModule():
    rmtmpdir()

class LookupCmd(object):
    """
    a stand-in subcommand that records how it was called
    """
    def __init__(self):
        self.default_name = "lookup"
        self.help = "look up a research object"
        self.description = "records its inputs; fails for the identifier 'missing'"
        self.calls = []

    def load_into(self, subparser, current_dests, cmdname):
        subparser.add_argument("roid", metavar="ID", type=str, help="the research object")

    def execute(self, args, config, log):
        self.calls.append((args, config, log))
        if args.roid == "missing":
            raise cli.CommandFailure(None, "no such research object", 7)

    @property
    def last_args(self):
        return self.calls[-1][0]

    @property
    def last_config(self):
        return self.calls[-1][1]

class TestProgOpts(test.TestCase):

    def test_defaults(self):
        parser = cli.define_prog_opts("refrepo", "manage the reference store")
        self.assertEqual(parser.prog, "refrepo")
        self.assertIn("reference store", parser.description)
        self.assertIn("help specifically on CMD", parser.epilog)

        opts = vars(parser.parse_args([]))
        self.assertEqual(opts['workdir'], "")
        for dest in "conf logfile dataroot".split():
            self.assertIsNone(opts[dest], dest)
        for dest in "quiet verbose debug".split():
            self.assertFalse(opts[dest], dest)

    def test_set(self):
        parser = cli.define_prog_opts("refrepo")
        opts = parser.parse_args("-d /data/bags -D -v -c refrepo.yml".split())
        self.assertEqual(opts.dataroot, "/data/bags")
        self.assertEqual(opts.conf, "refrepo.yml")
        self.assertTrue(opts.debug)
        self.assertTrue(opts.verbose)

    def test_existing_parser(self):
        mine = argparse.ArgumentParser("refrepo-admin", None, "administer bags", "See the docs.")
        parser = cli.define_prog_opts("ignored", parser=mine)
        self.assertIs(parser, mine)
        self.assertEqual(parser.prog, "refrepo-admin")
        self.assertTrue(parser.epilog.startswith("Run "))
        self.assertTrue(parser.epilog.endswith("See the docs."))

class TestCommandFailure(test.TestCase):

    def test_explicit(self):
        err = cli.CommandFailure("get", "File not found in bag", 7)
        self.assertEqual((err.cmd, err.stat, err.cause), ("get", 7, None))
        self.assertEqual(str(err), "File not found in bag")

    def test_from_cause(self):
        cause = ValueError("bad offset")
        err = cli.CommandFailure("get", None, cause=cause)
        self.assertEqual(err.stat, 1)
        self.assertIs(err.cause, cause)
        self.assertEqual(str(err), "bad offset")

        self.assertEqual(str(cli.CommandFailure("get", "")), "Unknown command failure")


class TestCLISuite(test.TestCase):

    def forget_log(self):
        if cfgmod._log_handler:
            logging.getLogger().removeHandler(cfgmod._log_handler)
            cfgmod._log_handler.close()
            cfgmod._log_handler = None
        if cfgmod.global_logfile and os.path.exists(cfgmod.global_logfile):
            os.remove(cfgmod.global_logfile)

    def setUp(self):
        self.forget_log()
        self.suite = cli.CLISuite("refrepo")
        self.lookup = LookupCmd()

    def tearDown(self):
        self.forget_log()

    def test_ctor(self):
        self.assertEqual(self.suite.suitename, "refrepo")
        self.assertEqual(self.suite.parser.prog, "refrepo")
        self.assertIsNotNone(self.suite._subparser_src)
        self.assertEqual(self.suite._cmds, {})

    def logfile_for(self, argline, config):
        args = self.suite.parse_args(argline.split() + ["lookup", "X"])
        log = self.suite.configure_log(args, config)
        self.assertEqual(log.name, "cli.refrepo")
        return cfgmod.global_logfile

    def test_configure_log(self):
        self.suite.load_subcommand(self.lookup)

        # default name in the working directory
        self.assertEqual(self.logfile_for("-q", { "working_dir": tmpd }),
                         os.path.join(tmpd, "refrepo.log"))
        self.forget_log()

        # -l is relative to the working directory, not logdir
        self.assertEqual(self.logfile_for("-q -l pub.log", { "working_dir": tmpd, "logdir": "/tmp" }),
                         os.path.join(tmpd, "pub.log"))
        self.forget_log()

        # a configured name goes into logdir
        self.assertEqual(self.logfile_for("-q", { "logfile": "store.log", "logdir": tmpd }),
                         os.path.join(tmpd, "store.log"))

    def test_load_subcommand(self):
        self.suite.load_subcommand(self.lookup)
        self.assertIs(self.suite._cmds["lookup"], self.lookup)
        self.suite.load_subcommand(self.lookup, "find")
        self.assertEqual(sorted(self.suite._cmds.keys()), ["find", "lookup"])

        with self.assertRaises(StateException):
            self.suite.load_subcommand(object())

    def test_execute(self):
        self.suite.load_subcommand(self.lookup, "find")
        self.suite.execute(("-q -w %s find RO-1" % tmpd).split())

        args = self.lookup.last_args
        self.assertEqual((args.cmd, args.roid), ("find", "RO-1"))
        self.assertTrue(args.quiet)
        self.assertEqual(self.lookup.last_config,
                         {'working_dir': tmpd, 'logdir': tmpd, 'logfile': "refrepo.log"})
        self.assertEqual(self.lookup.calls[-1][2].name, "cli.refrepo.find")

    def test_execute_dataroot(self):
        self.suite.load_subcommand(self.lookup)
        self.suite.execute(("-q -w %s -d %s lookup X" % (tmpd, tmpd)).split(), {"data_root": "/goob"})
        self.assertEqual(self.lookup.last_config['data_root'], tmpd)

        self.suite.execute(("-q -w %s lookup X" % tmpd).split(), {"data_root": "/data/bags"})
        self.assertEqual(self.lookup.last_config['data_root'], "/data/bags")

    def test_execute_failure(self):
        self.suite.load_subcommand(self.lookup)

        with self.assertRaises(cli.CommandFailure) as cm:
            self.suite.execute(("-q -w %s lookup missing" % tmpd).split(), {})
        self.assertEqual((cm.exception.cmd, cm.exception.stat), ("lookup", 7))

        with self.assertRaises(cli.CommandFailure) as cm:
            self.suite.execute("-q -w /goob/gurn lookup X".split(), {})
        self.assertEqual(cm.exception.stat, 2)

    def test_extract_config_for_cmd(self):
        config = {
            "data_root": "/data/bags",
            "num_threads": 4,
            "cmd": {
                "publish": { "num_threads": 1, "doi": { "shoulder": "10.5072/FK2" } },
                "lookup":  { "data_root": "/tmp/bags" }
            }
        }

        cfg = self.suite.extract_config_for_cmd(config, 'publish', self.lookup)
        self.assertEqual(cfg['num_threads'], 1)
        self.assertEqual(cfg['doi']['shoulder'], "10.5072/FK2")
        self.assertNotIn('cmd', cfg)

        # falls back to the subcommand's default name
        cfg = self.suite.extract_config_for_cmd(config, 'find', self.lookup)
        self.assertEqual((cfg['data_root'], cfg['num_threads']), ("/tmp/bags", 4))
        self.assertIn('cmd', config)

        self.assertEqual(self.suite.extract_config_for_cmd({"a": 1}, 'publish'), {"a": 1})


if __name__ == '__main__':
    test.main()
