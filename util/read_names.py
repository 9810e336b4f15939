'''Read name encoders for fastq output.

Two header styles are supported:

    ILLUMINA    <run>:<lane>:<tile>:<x>:<y>[/<read number>]
    CASAVA_1_8  <machine>:<run>:<flowcell>:<lane>:<tile>:<x>:<y> <read number>:<is filtered>:<control>:<barcode>
'''

__author__ = "dpark@broadinstitute.org"

import logging

from util.errors import ConfigError

log = logging.getLogger(__name__)

ILLUMINA = 'ILLUMINA'
CASAVA_1_8 = 'CASAVA_1_8'
READ_NAME_FORMATS = (CASAVA_1_8, ILLUMINA)


class IlluminaReadNameEncoder(object):
    ''' Legacy single-token Illumina read names. '''

    def __init__(self, run_barcode):
        self.run_barcode = run_barcode

    def generate_read_name(self, cluster, read_number=None):
        name = '%s:%d:%d:%d:%d' % (self.run_barcode, cluster.lane, cluster.tile, cluster.x, cluster.y)
        if read_number is not None:
            name += '/%d' % read_number
        return name


class Casava18ReadNameEncoder(object):
    ''' Casava 1.8 style read names: the read number, filter flag and
        barcode go in a second, space-separated field.
    '''
    CONTROL_FIELD_VALUE = 0

    def __init__(self, machine_name, run_barcode, flowcell_barcode):
        self.name_base = '%s:%s:%s' % (machine_name, run_barcode, flowcell_barcode)

    def generate_read_name(self, cluster, read_number=None):
        return '%s:%d:%d:%d:%d %d:%s:%d:%s' % (
            self.name_base, cluster.lane, cluster.tile, cluster.x, cluster.y,
            1 if read_number is None else read_number,
            'N' if cluster.pf else 'Y',
            self.CONTROL_FIELD_VALUE,
            cluster.matched_barcode or '')


def make_read_name_encoder(read_name_format, run_barcode, machine_name=None, flowcell_barcode=None):
    errors = []
    if read_name_format not in READ_NAME_FORMATS:
        errors.append('unrecognized read name format %s (expected one of %s)' %
                      (read_name_format, ', '.join(READ_NAME_FORMATS)))
    if not run_barcode:
        errors.append('a run barcode is required')
    if read_name_format == CASAVA_1_8:
        if not machine_name:
            errors.append('a machine name is required when using Casava1.8-style read name headers')
        if not flowcell_barcode:
            errors.append('a flowcell barcode is required when using Casava1.8-style read name headers')
    if errors:
        raise ConfigError('; '.join(errors))

    if read_name_format == CASAVA_1_8:
        return Casava18ReadNameEncoder(machine_name, run_barcode, flowcell_barcode)
    return IlluminaReadNameEncoder(run_barcode)
