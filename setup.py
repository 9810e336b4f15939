from setuptools import setup
import util.version

def read_file(fname):
    with open(fname, 'rt') as inf:
        return list(x.rstrip('\n\r') for x in inf if x.strip())

setup(
    name='illumina_basecalls_fastq',
    version=util.version.get_version(),
    license='BSD-style Software License',
    author='Broad Viral Genomics / Sabeti Lab',
    install_requires=read_file('requirements.txt'),
    author_email='dpark@broadinstitute.org',
    description='Convert Illumina basecalls to demultiplexed, read name sorted fastq files',
    py_modules=['illumina'],
    packages=['util'],
    include_package_data=True,
    platforms='any',
    python_requires='>=3.7',
    extras_require={
        'test': ['pytest'],
    }
)
