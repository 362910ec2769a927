"""Error codes and result classification shared by every ingestion stage.

Stages never raise on bad input data.  Instead, each problem is returned
as a ValidationError record, and the stage's overall Outcome is derived
from the complete list of records with classify().

Code format: GENMESH_E<4 digits>
    E1xxx  input / validation (manifest, index, bin)
    E2xxx  I/O (open, read, parse)
"""
import collections
import logging
from enum import Enum

# --- E1xxx: input / validation ---
E_MANIFEST_FIELD = "GENMESH_E1001"          # manifest required field missing or invalid
E_MANIFEST_CONSISTENCY = "GENMESH_E1002"    # manifest consistency violation
E_CONVENTION_MISMATCH = "GENMESH_E1003"     # coordinate system / units / sampling / axis order
E_DISTANCE_SIGN = "GENMESH_E1004"           # distance_sign convention mismatch
E_ADAPTIVITY_RANGE = "GENMESH_E1005"        # adaptivity outside [0,1]
E_BRICK_SIZE = "GENMESH_E1006"              # brick.size not a supported cube size
E_BACKGROUND_VALUE = "GENMESH_E1007"        # background_value_mm invalid
E_INDEX_INCONSISTENT = "GENMESH_E1101"      # bricks index inconsistency
E_DUPLICATE_BRICK = "GENMESH_E1102"         # bricks index duplicate brick
E_BRICK_OUT_OF_RANGE = "GENMESH_E1103"      # bricks index brick out of range
E_PAYLOAD_SIZE = "GENMESH_E1104"            # payload_bytes mismatch
E_OFFSET_RANGE = "GENMESH_E1105"            # offset out of blob range
E_CHECKSUM = "GENMESH_E1106"                # CRC32 mismatch

# --- E2xxx: I/O ---
E_BIN_IO = "GENMESH_E2001"                  # bricks blob open/read failure
E_MANIFEST_IO = "GENMESH_E2002"             # manifest open/parse failure
E_INDEX_IO = "GENMESH_E2003"                # bricks index open/parse failure


ValidationError = collections.namedtuple('ValidationError', 'code message field', defaults=("",))
ValidationError.__doc__ = \
    """
    One detected problem.

    code: One of the GENMESH_* constants above (for programmatic dispatch)
    message: Human-readable description
    field: The manifest field, index field, or brick entry (e.g. 'bricks[3]') it pertains to.
    """


class Outcome(Enum):
    """Coarse result category of a stage (or of a whole pipeline run)."""

    SUCCESS = "success"
    VALIDATION_FAILURE = "validation-failure"
    IO_FAILURE = "io-failure"


def classify(errors, aborted=False):
    """
    Map a stage's accumulated errors to its Outcome.

    aborted: True if the stage stopped early because its input
             could not be opened or parsed at all.
    """
    if aborted:
        return Outcome.IO_FAILURE
    if errors:
        return Outcome.VALIDATION_FAILURE
    return Outcome.SUCCESS


class StageResult:
    """
    Base class for the per-stage result types.
    Subclasses add their own payload attribute (manifest, index, bricks).
    """
    def __init__(self, errors, aborted=False):
        self.errors = list(errors)
        self.outcome = classify(self.errors, aborted)

    @property
    def ok(self):
        return self.outcome is Outcome.SUCCESS

    def error_codes(self):
        return [e.code for e in self.errors]


def log_errors(errors, logger=None, level=logging.ERROR):
    """
    Emit each accumulated error on the given logger.
    The validation stages themselves never log individual errors;
    callers decide whether (and how) to report them.
    """
    logger = logger or logging.getLogger(__name__)
    for error in errors:
        if error.field:
            logger.log(level, f"{error.code} [{error.field}] {error.message}")
        else:
            logger.log(level, f"{error.code} {error.message}")
