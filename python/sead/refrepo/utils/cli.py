"""
Infrastructure for building the ``refrepo`` command-line program as a suite of subcommands.

A subcommand is provided by a module (or any object) that defines:

* ``default_name``:  the name the subcommand is invoked by
* ``help``:          a one-line summary, shown in the program's help
* ``description``:   a longer description, shown in the subcommand's help
* ``load_into(parser, current_dests, cmdname)``:  defines the subcommand's arguments
  in the given ``ArgumentParser``
* ``execute(args, config, log)``:  carries out the subcommand, raising
  :py:class:`CommandFailure` on failure

Such modules are gathered into a :py:class:`CLISuite`, which parses the command line,
loads the configuration, sets up logging, and dispatches to the requested subcommand.
"""
import os, sys, logging
from copy import deepcopy
from argparse import ArgumentParser, HelpFormatter

from ..exceptions import StateException
from ...base.config import ConfigurationException
from ...base import config as cfgmod

EXPLAIN=cfgmod.NORMAL

def explain(log, message, *params):
    """
    log a message at the ``NORMAL`` level, between DEBUG and INFO:  it always goes to
    the log file but only reaches the terminal when --verbose is given.
    """
    log.log(EXPLAIN, message, *params)

class _ParagraphFormatter(HelpFormatter):
    # re-flow each blank-line-separated paragraph on its own
    def _fill_text(self, text, width, indent):
        return "\n\n".join([super(_ParagraphFormatter, self)._fill_text(p, width, indent)
                            for p in text.split("\n\n")])

def define_prog_opts(progname, description=None, epilog=None, parser=None):
    """
    define the options common to all subcommands of a command-line suite

    :param str progname:    the program name shown in help and usage messages
    :param str description: a summary shown before the option descriptions
    :param str epilog:      text shown after the option descriptions
    :param ArgumentParser parser:  an existing parser to add the options to (in which
                            case progname, description, and epilog are ignored except
                            to extend its epilog)
    :return:  the configured parser
    """
    if not parser:
        parser = ArgumentParser(progname, None, description, epilog,
                                formatter_class=_ParagraphFormatter)

    hint = "Run '%(prog)s CMD -h' for help specifically on CMD."
    parser.epilog = (parser.epilog and hint+"\n\n"+parser.epilog) or hint

    opt = parser.add_argument
    opt("-w", "--workdir", type=str, dest='workdir', metavar='DIR', default="",
        help="resolve relative input and output paths (including the log file) against DIR")
    opt("-c", "--config", type=str, dest='conf', metavar='FILE',
        help="load the configuration from FILE instead of the file named by REFREPO_CONFIG")
    opt("-d", "--data-root", type=str, dest='dataroot', metavar='DIR',
        help="the directory holding the bag store (overrides data_root in the configuration)")
    opt("-l", "--logfile", type=str, dest='logfile', metavar='FILE',
        help="write log messages to FILE in the working directory")
    opt("-q", "--quiet", action="store_true", dest='quiet',
        help="send no messages to the terminal")
    opt("-D", "--debug", action="store_true", dest='debug',
        help="include DEBUG messages in the log")
    opt("-v", "--verbose", action="store_true", dest='verbose',
        help="echo explanatory (and, with -D, DEBUG) messages to the terminal")

    return parser

class CommandFailure(Exception):
    """
    raised when a subcommand cannot complete; the program should exit with the
    status given by the ``stat`` attribute.  The status values used by the ``refrepo``
    commands are listed in :py:mod:`sead.refrepo.cli`.
    """

    def __init__(self, cmdname, message, exstat=1, cause=None):
        """
        :param str cmdname:   the name of the failed subcommand (filled in by the suite
                              if None)
        :param str message:   what went wrong; if empty, the message of ``cause`` is used
        :param int exstat:    the exit status to use
        :param Exception cause:  the underlying exception, if any
        """
        if not message:
            message = (cause and str(cause)) or "Unknown command failure"
        super(CommandFailure, self).__init__(message)
        self.stat = exstat
        self.cmd = cmdname
        self.cause = cause

class CLISuite(object):
    """
    a command-line program made up of subcommands
    """

    def __init__(self, progname, defconffile=None, parser=None):
        """
        :param str progname:     the name of the program; it also names the default log file
        :param str defconffile:  the configuration file to load when --config is not given
        :param ArgumentParser parser:  the top-level parser (default: one created with
                                 :py:func:`define_prog_opts`)
        """
        self.suitename = progname
        self._defconffile = defconffile
        self.parser = parser or define_prog_opts(self.suitename)
        self._dests = set([a.dest for a in self.parser._actions])
        self._subparser_src = self.parser.add_subparsers(title="commands", dest="cmd")
        self._cmds = {}

    def load_subcommand(self, cmdmod, cmdname=None):
        """
        add a subcommand to this suite.
        :param module|object cmdmod:  the subcommand implementation
        :param str cmdname:  the name to invoke it by (default: ``cmdmod.default_name``)
        :raise StateException:  if cmdmod does not provide ``load_into()``
        """
        if not hasattr(cmdmod, "load_into"):
            raise StateException("Not a subcommand (no load_into() function): " + repr(cmdmod))
        cmdname = cmdname or cmdmod.default_name

        subparser = self._subparser_src.add_parser(cmdname, help=cmdmod.help,
                                                   description=cmdmod.description,
                                                   formatter_class=_ParagraphFormatter)
        impl = cmdmod.load_into(subparser, self._dests, cmdname)
        self._dests.update([a.dest for a in subparser._actions])
        self._cmds[cmdname] = impl or cmdmod

    def extract_config_for_cmd(self, config, cmdname, cmd=None):
        """
        return the configuration to give to a subcommand.  Overrides for a particular
        subcommand can be placed under ``cmd.<name>`` (where the name is the one it was
        invoked by or, failing that, its ``default_name``); these are merged over the
        rest of the configuration.  The input configuration is not changed.
        """
        if 'cmd' not in config:
            return config

        base = deepcopy(config)
        overrides = base.pop('cmd')
        if cmdname not in overrides and cmd is not None:
            cmdname = getattr(cmd, 'default_name', cmdname)
        if cmdname in overrides:
            return cfgmod.merge_config(overrides[cmdname], base)
        return base

    def parse_args(self, args):
        """
        parse the given command-line arguments (not including the program name)
        """
        return self.parser.parse_args(args)

    def configure_log(self, args, config):
        """
        set up logging to a file (and, unless --quiet, to the terminal) and return the
        suite's logger.  The log file is, in order of preference, the one given by
        --logfile (placed in the working directory), the configured ``logfile``, or
        ``<progname>.log``; relative names go into the configured ``logdir``, which
        defaults to the working directory.
        """
        workdir = config.get('working_dir', os.getcwd())
        if args.logfile:
            config['logfile'] = os.path.join(workdir, args.logfile)
        else:
            config.setdefault('logfile', self.suitename + ".log")
        config.setdefault('logdir', workdir)

        cfgmod.configure_log(level=(args.debug and logging.DEBUG) or cfgmod.NORMAL, config=config)
        if not args.quiet:
            logging.getLogger().addHandler(self._terminal_handler(args))

        log = logging.getLogger("cli."+self.suitename)
        log.setLevel(cfgmod.NORMAL)
        if args.verbose:
            log.info("Logging to %s", cfgmod.global_logfile)
        return log

    def _terminal_handler(self, args):
        if args.verbose:
            level = (args.debug and logging.DEBUG) or cfgmod.NORMAL
            fmt = "%(name)s %(levelname)s: %(message)s"
        else:
            level = logging.INFO
            fmt = self.suitename + " %(levelname)s: %(message)s"
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt))
        return handler

    def load_config(self, args):
        """
        return the configuration named by --config or, if not given, the default
        configuration file (when it exists); otherwise an empty configuration.
        """
        if args.conf:
            return cfgmod.load_from_file(args.conf)
        if self._defconffile and os.path.isfile(self._defconffile):
            return cfgmod.load_from_file(self._defconffile)
        return {}

    def _set_paths(self, args, config):
        if args.workdir:
            args.workdir = os.path.abspath(args.workdir)
            if not os.path.isdir(args.workdir):
                raise CommandFailure(args.cmd, "Working dir is not an existing directory: "+args.workdir, 2)
            config['working_dir'] = args.workdir
        else:
            config['working_dir'] = os.path.abspath(config.get('working_dir', os.getcwd()))
        if args.dataroot:
            config['data_root'] = os.path.abspath(args.dataroot)

    def execute(self, args, config=None):
        """
        run the subcommand named in the arguments.

        :param list|Namespace args:  the command-line arguments (not including the program
                                     name), either unparsed or already parsed
        :param dict config:  the configuration to use; if None, it is loaded according to
                             the arguments
        :raise CommandFailure:  if the subcommand fails
        """
        argv = None
        if isinstance(args, list):
            argv = args
            args = self.parse_args(args)
        cmd = self._cmds.get(args.cmd)
        if cmd is None:
            raise CommandFailure(args.cmd, "Unrecognized command: "+str(args.cmd), 2)

        if config is None:
            config = self.load_config(args)
        config = self.extract_config_for_cmd(config, args.cmd, cmd)
        self._set_paths(args, config)

        log = self.configure_log(args, config)
        if argv:
            explain(log, "Executing: %s %s", self.suitename, " ".join(argv))

        try:
            return cmd.execute(args, config, log.getChild(args.cmd))
        except CommandFailure as ex:
            ex.cmd = (ex.cmd and ex.cmd != args.cmd and args.cmd+" "+ex.cmd) or args.cmd
            raise
        except ConfigurationException as ex:
            raise CommandFailure(args.cmd, "Configuration error: "+str(ex), 6, ex)
