"""
CLI command that rewrites the links in a published aggregation for a new server location.
"""
import logging

from ..exceptions import NotFoundError
from ..utils.cli import CommandFailure, explain
from . import open_store

default_name = "move"
help = "rewrite the links in a published aggregation to point to a new server"
description = """
  Rewrite the ORE map stored in the bag for the published aggregation with the given identifier so that
  its links (the ORE map's and aggregation's identifiers, and the locations of its data files) refer to
  the server at NEWBASE.  DOIs given as dx.doi.org URLs are converted to doi.org URLs.
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("id", metavar="ID", type=str, help="the identifier of the published aggregation")
    p.add_argument("newbase", metavar="NEWBASE", type=str,
                   help="the base URL of the new server (e.g. https://repo.example.org/sead/)")
    return None

def execute(args, config=None, log=None):
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    store = open_store(config or {}, cmd)

    try:
        oremap = store.move(args.id, args.newbase)
    except NotFoundError as ex:
        raise CommandFailure(cmd, str(ex), 7, ex)
    except OSError as ex:
        raise CommandFailure(cmd, "Failed to rewrite bag: "+str(ex), 4, ex)
    explain(log, "Moved %s to %s", args.id, args.newbase)
    print("ORE map for %s now at %s" % (args.id, oremap.get("@id")))
