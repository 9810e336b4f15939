''' This gets the git version into python-land
'''

__author__ = "dpark@broadinstitute.org"
__version__ = None

import os
import os.path
import subprocess


def get_project_path():
    '''Return the absolute path of the top-level project, assumed to be the
       parent of the directory containing this script.'''
    path = os.path.abspath(os.path.expanduser(__file__))
    return os.path.dirname(os.path.dirname(path))


def call_git_describe():
    try:
        out = subprocess.check_output(['git', 'describe', '--tags', '--always', '--dirty'],
                                      cwd=get_project_path(), stderr=subprocess.DEVNULL)
        return out.decode('utf-8').strip() or None
    except (OSError, subprocess.CalledProcessError):
        return None


def release_file():
    return os.path.join(get_project_path(), 'VERSION')


def read_release_version():
    try:
        with open(release_file(), 'rt') as inf:
            return inf.readlines()[0].strip()
    except (IOError, IndexError):
        return None


def write_release_version(version):
    with open(release_file(), 'wt') as outf:
        outf.write(version + '\n')


def get_version():
    global __version__
    if __version__ is None:
        from_git = call_git_describe()
        from_file = read_release_version()

        if from_git:
            if from_file != from_git:
                write_release_version(from_git)
            __version__ = from_git
        else:
            __version__ = from_file

        if __version__ is None:
            raise ValueError("Cannot find the version number!")

    return __version__


if __name__ == "__main__":
    print(get_version())
