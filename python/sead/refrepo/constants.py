"""
some constants for the reference repository: the names of fields used in publication
requests and aggregation documents, default values, and the vocabulary URIs for terms
added to a document's context.
"""
import re, os, hashlib

# aggregation document (ORE map) fields
ID = "@id"
TYPE = "@type"
CONTEXT = "@context"
DESCRIBES = "describes"
AGGREGATES = "aggregates"
IDENTIFIER = "Identifier"
TITLE = "Title"
LABEL = "Label"
HAS_PART = "Has Part"
HAS_PART_ALT = "HasPart"
SIMILAR_TO = "similarTo"
SIZE = "Size"
CREATOR = "Creator"
CONTACT = "Contact"
ABSTRACT = "Abstract"
PRIMARY_SOURCE = "Primary Source"
PUBLICATION_DATE = "Publication Date"

# publication request fields
PREFERENCES = "Preferences"
LICENSE = "License"
PURPOSE = "Purpose"
ACCESS_RIGHTS = "Access Rights"
EXTERNAL_IDENTIFIER = "External Identifier"
ALTERNATE_OF = "alternateOf"
RIGHTS_HOLDER = "Rights Holder"
AGG_STATISTICS = "Aggregation Statistics"
NUM_DATASETS = "Number of Datasets"
TOTAL_SIZE = "Total Size"
REPOSITORY = "Repository"
BEARER_TOKEN = "Bearer Token"
AGGREGATION = "Aggregation"

# hash types, in the form they appear as resource fields
SHA1 = "SHA1 Hash"
SHA512 = "SHA512 Hash"
HASH_TYPES = (SHA1, SHA512)
HASH_ALGORITHMS = { SHA1: "sha1", SHA512: "sha512" }

# defaults applied to a publication
DEF_LICENSE = "No license information provided"
DEF_PURPOSE = "Production"
TEST_PURPOSE = "Testing"

# terms added to the document context when they are used but not defined
CONTEXT_TERMS = {
    LICENSE:             "http://purl.org/dc/terms/license",
    PURPOSE:             "http://sead-data.net/vocab/publishing#Purpose",
    ACCESS_RIGHTS:       "http://purl.org/dc/terms/accessRights",
    EXTERNAL_IDENTIFIER: "http://purl.org/dc/terms/identifier",
    PUBLICATION_DATE:    "http://purl.org/dc/terms/issued"
}

# @type values that mark a resource as a container
CONTAINER_TYPES = frozenset([
    "http://cet.ncsa.uiuc.edu/2016/Folder",
    "http://cet.ncsa.uiuc.edu/2007/Collection",
    "http://www.openarchives.org/ore/terms/Aggregation",
    "Folder", "Collection", "Aggregation"
])

# bag layout
BAGIT_VERSION = "0.97"
BAGIT_TXT = "bagit.txt"
BAG_INFO_TXT = "bag-info.txt"
PID_MAPPING_TXT = "pid-mapping.txt"
OREMAP_FILE = "oremap.jsonld.txt"
MANIFEST_TMPL = "manifest-{0}.txt"
DATA_DIR = "data"

# cached files kept next to a stored bag
OREMAP_CACHE_EXT = ".oremap.jsonld.txt"
DESC_CACHE_EXT = ".desc.json"
INDEX_CACHE_EXT = ".index.json"

# publication status stages
PENDING_STAGE = "Pending"
SUCCESS_STAGE = "Success"
FAILURE_STAGE = "Failure"
PROBLEM_STAGE = "Problem"
INFO_STAGE = "Info"

DOI_RESOLVER = "https://doi.org/"
DOI_PREFIX_PAT = re.compile(r"^https?://(dx\.)?doi\.org/")

_nonword = re.compile(r"\W")

def bag_name_for(id):
    """
    return the name of the bag (its root directory and file basename) for a given
    aggregation identifier: all non-word characters are replaced by underscores.
    """
    return _nonword.sub("_", id)

def bag_dir_for(data_root, id):
    """
    return the directory under ``data_root`` where the bag for the given aggregation
    identifier is stored.  Bags are distributed over two levels of subdirectories named
    after the leading characters of the SHA-1 hash of the identifier.
    """
    h = hashlib.sha1(id.encode('utf-8')).hexdigest()
    return os.path.join(data_root, h[0:2], h[2:4])
