"""
refrepo command-line program for executing reference repository operations.
"""
import os, sys, logging

from ..utils import cli
from ..exceptions import ConfigurationException
from . import publish, validate, index, get, manifest, move

description = "execute SEAD reference repository operations"
epilog = None
default_prog_name = "refrepo"
default_conf_file = os.environ.get('REFREPO_CONFIG')

def main(cmdname, args):
    """
    a function that executes the ``refrepo`` command-line tool.
    """
    if not cmdname:
        cmdname = default_prog_name

    # set up the commands
    argparser = cli.define_prog_opts(cmdname, description, epilog)
    refrepo = cli.CLISuite(cmdname, default_conf_file, argparser)
    for cmd in (publish, validate, index, get, manifest, move):
        refrepo.load_subcommand(cmd)

    # execute the commands
    refrepo.execute(args)
    return args

def run():
    """
    the entry point for the installed ``refrepo`` script
    """
    prog = os.path.splitext(os.path.basename(sys.argv[0]))[0] or default_prog_name
    try:
        main(prog, sys.argv[1:])
        sys.exit(0)
    except cli.CommandFailure as ex:
        logging.getLogger("%s %s" % (prog, ex.cmd)).critical(str(ex))
        sys.exit(ex.stat)
    except ConfigurationException as ex:
        logging.getLogger(prog).critical("Config error: "+str(ex))
        sys.exit(6)
    except Exception as ex:
        logging.getLogger(prog).exception(ex)
        sys.exit(200)

if __name__ == "__main__":
    run()
