import sys
import threading
import traceback
import logging
from io import StringIO

formatter = logging.Formatter('%(levelname)s [%(asctime)s] %(module)s %(message)s')
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(formatter)
logging.getLogger().addHandler(handler)
logging.getLogger().setLevel(logging.INFO)
logging.getLogger('numba').setLevel(logging.WARNING)


def initialize_excepthook():
    """
    This excepthook simply logs all unhandled exception tracebacks with Logger.error()
    """
    sys.excepthook = _log_exception
    threading.excepthook = _log_thread_exception

def _log_exception(*exc_info):
    thread_name = threading.current_thread().name
    logging.getLogger().error( "Unhandled exception in thread: '{}'".format(thread_name) )
    sio = StringIO()
    traceback.print_exception( exc_info[0], exc_info[1], exc_info[2], file=sio )
    logging.getLogger().error( sio.getvalue() )

def _log_thread_exception(args):
    if args.exc_type is SystemExit:
        return
    _log_exception(args.exc_type, args.exc_value, args.exc_traceback)


initialize_excepthook()

from .errors import ValidationError, Outcome
from .io_util.manifest import Manifest, validate_manifest, load_manifest
from .io_util.bricks_index import BrickIndexEntry, BrickIndex, validate_bricks_index, load_bricks_index
from .io_util.bricks_data import DecodedBrick, decode_bricks, load_bricks_bin
from .volume.sparse_volume import LinearTransform, SparseVolume, assemble_sparse_volume
