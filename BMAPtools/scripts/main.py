import sys
from BMAPtools.scripts import mkbmap
from BMAPtools.errors import BMAPError, InternalInvariantError


def main(argv=None):
    par = mkbmap.create_parser()
    args = par.parse_args(argv)
    mkbmap.setup_logging(args)
    try:
        mkbmap.call(args)
    except InternalInvariantError as e:
        sys.stderr.write("bmaptools internal error: %s\n%s\n" % (e, mkbmap.HINT))
        return 1
    except (BMAPError, OSError) as e:
        sys.stderr.write("bmaptools error: %s\n%s\n" % (e, mkbmap.HINT))
        return 1
    return 0

if __name__ == '__main__':
    sys.exit(main())
