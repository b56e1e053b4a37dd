# -*- coding: utf-8 -*-
"Exceptions raised by BMAPtools"

class BMAPError(Exception): pass

# Bad command line, missing image or output already present
class UsageError(BMAPError): pass

# The image can't be processed as requested; nothing was touched yet
class PreconditionError(BMAPError): pass
class AlreadySparseError(PreconditionError): pass
class LoopDeviceError(PreconditionError): pass
class OverlappingRangesError(PreconditionError): pass
class EmptyImage(PreconditionError): pass

# An external tool failed or printed something we can't understand
class CollaboratorFailure(BMAPError): pass
class NoPartitionsFound(CollaboratorFailure): pass

# Logic defects: the range math produced something impossible
class InternalInvariantError(BMAPError): pass
class UnresolvableBlockSize(InternalInvariantError): pass
class NoFreeSpaceFound(UnresolvableBlockSize): pass

