"""
CLI command that publishes an aggregation into the reference store.  The publication request and the
ORE map it refers to are read from local files or retrieved from the configured publication request
service.
"""
import sys, logging

from ..exceptions import (PublicationDenied, NotFoundError, RemoteServiceError, IdentityServiceError,
                          StructuralError, ParseError, StateException, RepoException)
from ..publish import Publisher, C3PRClient, FilePubRequestSource
from ..utils.cli import CommandFailure, explain
from . import open_store

default_name = "publish"
help = "publish an aggregation into the reference store"
description = """
  Package the aggregation requested by the publication request with the given identifier into a BagIt
  bag in the reference store.  By default, the request and the aggregation's ORE map are retrieved from
  the publication request service configured as pubreq_service; either can instead be read from a local
  file (with -r and -m).

  If the request would replace an existing publication, or if a previously published bag is to serve
  as a local source of content but cannot be used, approval is requested on the terminal (unless -y
  is given).
"""

def load_into(subparser, current_dests=None, as_cmd=None):
    """
    load this command into a CLI by defining the command's arguments and options
    :param argparser.ArgumentParser subparser:  the argument parser instance to define this command's
                                                interface into it
    :rtype: None
    """
    p = subparser
    p.add_argument("id", metavar="ID", type=str,
                   help="the identifier of the publication request (and of the aggregation) to publish")
    p.add_argument("-r", "--request-file", metavar="REQFILE", type=str, dest="reqfile",
                   help="read the publication request from REQFILE; the request's identifier must match ID")
    p.add_argument("-m", "--oremap-file", metavar="OREFILE", type=str, dest="orefile",
                   help="read the ORE map from OREFILE")
    p.add_argument("-V", "--validate-only", action="store_true", dest="validateonly",
                   help="only validate the bag already stored for ID")
    p.add_argument("-I", "--ignore-hashes", action="store_true", dest="ignorehashes",
                   help="ignore the hash values in the ORE map and compute SHA-512 hashes for all content")
    p.add_argument("-L", "--local-source", metavar="BAGID", type=str, dest="localsrc",
                   help="use the published bag for BAGID as a local source of content (overrides the "+
                        "request's alternateOf preference)")
    p.add_argument("-y", "--yes", action="store_true", dest="approve",
                   help="approve the publication without asking")
    return None

def _ask(question):
    sys.stderr.write(question + " (Y/N): ")
    sys.stderr.flush()
    try:
        answer = input()
    except EOFError:
        return False
    return answer.strip().lower().startswith('y')

def make_source(args, config, cmd):
    """
    create the source of publication requests from the command-line arguments and configuration
    """
    delegate = None
    svccfg = config.get('pubreq_service', {})
    if svccfg.get('service_endpoint'):
        delegate = C3PRClient(svccfg)
    elif not args.reqfile or not args.orefile:
        raise CommandFailure(cmd, "No publication request service configured: request and ORE map "+
                                  "files (-r, -m) are required", 2)
    return FilePubRequestSource(args.reqfile, args.orefile, delegate)

def execute(args, config=None, log=None):
    """
    execute this command: publish the requested aggregation
    """
    cmd = default_name
    if not log:
        log = logging.getLogger(cmd)
    if not config:
        config = {}

    store = open_store(config, cmd)
    approver = None
    if args.approve:
        approver = lambda q: True
    elif not config.get('auto_approve'):
        approver = _ask

    try:
        source = None
        if not args.validateonly:
            source = make_source(args, config, cmd)
        pub = Publisher(config, source, approver=approver, store=store, log=log)
        explain(log, "Publishing %s", args.id)
        result = pub.publish(args.id, args.validateonly, args.ignorehashes, args.localsrc)

    except PublicationDenied as ex:
        raise CommandFailure(cmd, "Publication not approved: "+str(ex), 8, ex)
    except NotFoundError as ex:
        raise CommandFailure(cmd, "Not found: "+str(ex), 7, ex)
    except RemoteServiceError as ex:
        raise CommandFailure(cmd, "Remote service failure: "+str(ex), 5, ex)
    except (ParseError, StateException) as ex:
        raise CommandFailure(cmd, "Unable to read input: "+str(ex), 3, ex)
    except (IdentityServiceError, StructuralError) as ex:
        raise CommandFailure(cmd, "Publication failed: "+str(ex), 1, ex)
    except RepoException as ex:
        raise CommandFailure(cmd, "Unexpected failure: "+str(ex), 1, ex)

    if args.validateonly:
        validation = result
    else:
        validation = result.validation
        for prob in result.problems:
            print("Problem: " + prob)
    if validation is not None and not validation.ok():
        for issue in validation.failed():
            print(str(issue))
        raise CommandFailure(cmd, "Bag for %s is not valid" % args.id, 9)

    if args.validateonly:
        print("Bag for %s is valid" % args.id)
    else:
        print("Published %s as %s in %s" % (args.id, result.external_identifier, result.bagfile))
