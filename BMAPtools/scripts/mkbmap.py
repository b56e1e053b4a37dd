# -*- coding: utf-8 -*-
import sys, os, argparse, logging
from BMAPtools import scan
from BMAPtools.errors import UsageError
from BMAPtools.utils import human_size

DEBUG=int(os.getenv('BMAPTOOLS_DEBUG', '0'))
from BMAPtools.debug import log

HINT = "Try 'bmaptools --help' for more information."


class Parser(argparse.ArgumentParser):
    "Reports command line errors with exit code 1"
    def error(self, message):
        sys.stderr.write('bmaptools error: %s\n%s\n' % (message, HINT))
        sys.exit(1)


def create_parser(parser_create_fn=Parser,parser_create_args=()):
    help_s = """
    bmaptools [-b] [-s] [-o FILE] IMAGE_FILE
    """
    par = parser_create_fn(*parser_create_args,usage=help_s,
    formatter_class=argparse.RawDescriptionHelpFormatter,
    description="Finds the free space in the partitions of a disk image, writing a block map (bmap) of the used blocks and/or turning the free blocks into holes.",
    epilog="Examples:\nbmaptools --bmap disk.img\nbmaptools --sparse --bmap -o disk.bmap disk.img\n\next2/3/4 and FAT file systems are understood: other partitions are kept whole.\n")
    par.add_argument('image_file', nargs=1)
    par.add_argument("-b", "--bmap", dest="bmap", help="write the block map of the image", action="store_true", default=False)
    par.add_argument("-s", "--sparse", dest="sparse", help="punch holes over the free blocks of the image", action="store_true", default=False)
    par.add_argument("-o", "--output", dest="output", help="block map file to write (default: IMAGE_FILE.bmap)", metavar="FILE")
    par.add_argument("-f", "--force", dest="force", help="overwrite a pre-existing block map", action="store_true", default=False)
    par.add_argument("-p", "--parttable", dest="parttable", help="partition table reader (default: fdisk)", choices=("fdisk", "native"), default="fdisk")
    par.add_argument("--log", dest="log", help="write the log to FILE", metavar="FILE")
    return par

def call(args):
    img = args.image_file[0]
    if not args.bmap and not args.sparse:
        raise UsageError("you must choose --bmap, --sparse or both!")
    if not os.path.isfile(img):
        raise UsageError("image '%s' does not exist!" % img)
    bmap_path = None
    if args.bmap:
        bmap_path = args.output or img+'.bmap'
        if os.path.exists(bmap_path) and not args.force:
            raise UsageError("block map '%s' already exists, use -f to force overwriting" % bmap_path)
    if DEBUG: log("mkbmap: image=%s bmap=%s sparse=%s parttable=%s", img, bmap_path, args.sparse, args.parttable)
    doc = scan.process(img, bmap_path, args.sparse, args.parttable)
    if doc:
        print("Block map written to '%s': %d of %d blocks of %d bytes mapped (%s)." % (bmap_path,
            doc.mapped_blocks_count, doc.blocks_count, doc.block_size, human_size(doc.mapped_blocks_count*doc.block_size)))
    if args.sparse:
        print("Free blocks of '%s' turned into holes." % img)

def setup_logging(args):
    level = (logging.WARNING, logging.DEBUG)[DEBUG != 0]
    if args.log:
        logging.basicConfig(level=level, filename=args.log, filemode='w')
    else:
        logging.basicConfig(level=level, format='bmaptools: %(levelname)s: %(message)s')

if __name__ == '__main__':
    from BMAPtools.scripts.main import main
    sys.exit(main())
