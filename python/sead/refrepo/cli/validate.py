"""
CLI command that validates a zipped bag.
"""
import os, json, logging

from ..exceptions import StateException
from ..model import AggregationStatistics
from ..bagit import validate_bag_file
from ..utils.validate import ALL, PROB
from ..utils.cli import CommandFailure, explain

default_name = "validate"
help = "validate a zipped bag"
description = """
  Check a zipped bag produced by the reference repository: its tag files, its payload manifest (recomputing
  the hash of every listed file), and its identifier mapping.  With -s, the payload is also checked against
  the declared statistics in a publication request file.
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    """
    p = subparser
    p.add_argument("bagfile", metavar="BAGFILE", type=str, help="the zip file to validate")
    p.add_argument("-s", "--stats-from", metavar="REQFILE", type=str, dest="reqfile",
                   help="check the payload against the Aggregation Statistics in REQFILE")
    p.add_argument("-a", "--show-all", action="store_true", dest="showall",
                   help="list all tests applied, not just the failures")
    return None

def execute(args, config=None, log=None):
    """
    execute this command: validate the bag and print the results
    """
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    if not config:
        config = {}

    bagfile = args.bagfile
    if args.workdir and not os.path.isabs(bagfile):
        bagfile = os.path.join(args.workdir, bagfile)
    if not os.path.isfile(bagfile):
        raise CommandFailure(cmd, "Bag file not found: "+bagfile, 7)

    stats = None
    if args.reqfile:
        try:
            with open(args.reqfile) as fd:
                stats = AggregationStatistics.from_json(json.load(fd).get("Aggregation Statistics"))
        except (OSError, ValueError) as ex:
            raise CommandFailure(cmd, "Unable to read request file: "+str(ex), 3, ex)

    explain(log, "Validating %s", bagfile)
    try:
        results = validate_bag_file(bagfile, stats, config.get('validation'), config.get('num_threads'))
    except StateException as ex:
        raise CommandFailure(cmd, str(ex), 3, ex)

    issues = (args.showall and results.applied(ALL)) or results.failed(ALL)
    for issue in issues:
        print(str(issue))
    if not results.ok():
        raise CommandFailure(cmd, "%s: %d validation test(s) failed" % (bagfile, results.count_failed(PROB)), 9)
    print("%s: bag is valid (%d tests passed)" % (bagfile, results.count_passed(ALL)))
