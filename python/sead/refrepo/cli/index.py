"""
CLI command that builds the cached description and index for a stored aggregation.
"""
import logging

from ..exceptions import NotFoundError, ParseError
from ..utils.cli import CommandFailure
from . import open_store

default_name = "index"
help = "build the cached description and index for a published aggregation"
description = """
  Extract the ORE map from the stored bag for the aggregation with the given identifier and index it
  for random access.  With -f, any existing cached files are removed and rebuilt.
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("id", metavar="ID", type=str, help="the identifier of the published aggregation")
    p.add_argument("-f", "--force", action="store_true", dest="force",
                   help="rebuild the cached files even if they are current")
    return None

def execute(args, config=None, log=None):
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    store = open_store(config or {}, cmd)

    try:
        if args.force:
            store.invalidate(args.id)
        for path in store.ensure_index(args.id):
            print(path)
    except NotFoundError as ex:
        raise CommandFailure(cmd, str(ex), 7, ex)
    except ParseError as ex:
        raise CommandFailure(cmd, "Unable to index ORE map: "+str(ex), 3, ex)
