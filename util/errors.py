'''Exceptions raised while converting basecalls to fastq.

Every one of these is fatal to a run: callers should discard any output
written by a run that raised one.
'''

__author__ = "dpark@broadinstitute.org"


class DemuxError(RuntimeError):
    '''Base class for basecalls-to-fastq failures.'''

    def __init__(self, reason):
        super(DemuxError, self).__init__(reason)


class ConfigError(DemuxError):
    '''Bad or missing settings, detected before any tile is processed.'''
    pass


class FormatError(DemuxError):
    '''A malformed read structure, or buffered records that do not match it.'''
    pass


class DataQualityError(DemuxError):
    '''A base quality below the configured minimum.'''
    pass


class ResourceError(DemuxError):
    '''Output or spill storage could not be written.'''

    def __init__(self, reason, prefix=None):
        if prefix is not None:
            reason = '%s (output group %s)' % (reason, prefix)
        super(ResourceError, self).__init__(reason)
        self.prefix = prefix
