"""
CLI command that lists the paths of the resources in a published aggregation's bag.
"""
import json, logging

from ..exceptions import NotFoundError
from ..utils.cli import CommandFailure
from . import open_store

default_name = "manifest"
help = "list the bag paths of the resources in a published aggregation"
description = """
  Print the mapping of the identifiers of the resources in the published aggregation with the given
  identifier to their paths within its bag, as a table (or, with -j, as JSON).
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("id", metavar="ID", type=str, help="the identifier of the published aggregation")
    p.add_argument("-j", "--json", action="store_true", dest="json",
                   help="print the mapping as a JSON list of [identifier, path] pairs")
    return None

def execute(args, config=None, log=None):
    cmd = default_name
    store = open_store(config or {}, cmd)

    try:
        if args.json:
            print(json.dumps(store.get_manifest(args.id), indent=2))
        else:
            print(store.render_manifest(args.id), end='')
    except NotFoundError as ex:
        raise CommandFailure(cmd, str(ex), 7, ex)
