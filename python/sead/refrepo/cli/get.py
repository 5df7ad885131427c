"""
CLI command that retrieves the description of a published aggregation or of one of the resources
it aggregates.
"""
import sys, json, logging

from ..exceptions import NotFoundError, ParseError
from ..utils.cli import CommandFailure
from . import open_store

default_name = "get"
help = "retrieve the description of a published aggregation or one of its resources"
description = """
  Print, as JSON, the description of the published aggregation with the given identifier along with
  its immediate children, or, if CHILDID is given, the description of that aggregated resource (with
  its immediate children if it is a container).
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("id", metavar="ID", type=str, help="the identifier of the published aggregation")
    p.add_argument("childid", metavar="CHILDID", type=str, nargs='?',
                   help="the identifier of an aggregated resource")
    p.add_argument("-o", "--output-file", metavar="FILE", type=str, dest="outfile",
                   help="write the output to the named file instead of standard out")
    return None

def execute(args, config=None, log=None):
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    store = open_store(config or {}, cmd)

    try:
        if args.childid:
            data = store.get_item(args.id, args.childid)
        else:
            data = store.get_aggregation_summary(args.id)
    except NotFoundError as ex:
        raise CommandFailure(cmd, str(ex), 7, ex)
    except ParseError as ex:
        raise CommandFailure(cmd, "Unable to read ORE map: "+str(ex), 3, ex)

    fp = None
    try:
        if args.outfile and args.outfile != '-':
            fp = open(args.outfile, 'w')
            op = fp
        else:
            op = sys.stdout
        json.dump(data, op, indent=4, separators=(',', ': '))
        op.write("\n")
    except OSError as ex:
        raise CommandFailure(cmd, "Failed to write data to %s: %s" %
                             ((fp and args.outfile) or "standard out", str(ex)), 4, ex)
    finally:
        if fp: fp.close()
