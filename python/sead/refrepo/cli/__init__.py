"""
module supporting the ``refrepo`` command-line interface to reference repository operations:  publishing
aggregations into the store, validating bags, and reading from the aggregations in the store.

EXIT STATUS

Commands built into this cli infrastructure follow the following conventions for exit status codes:

  0 - normal successful completion
  1 - a general processing failure
  2 - an error was found in the option or argument values, preventing proper parsing or interpretation
  3 - syntax or other read error while reading provided input data
  4 - error occured while writing output data
  5 - an unexpected remote system error occured
  6 - a configuration error was detected
  7 - the requested identifier or file was not found
  8 - the request was not approved
  9 - a produced (or validated) bag failed validation

The value 200 is returned if any unexpected, uncaught exception bubbles to the top of the execution stack.
"""
from ..utils.cli import CommandFailure
from ..exceptions import ConfigurationException
from ..store import RefRepositoryStore

def open_store(config, cmd):
    """
    return the RefRepositoryStore for the configured ``data_root``, converting configuration
    problems into a CommandFailure
    """
    try:
        return RefRepositoryStore(config)
    except ConfigurationException as ex:
        raise CommandFailure(cmd, "Bag store not configured (set data_root or use --data-root)", 6, ex)
