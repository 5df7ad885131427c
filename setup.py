import os, sys
from setuptools import setup, find_namespace_packages
from setuptools.command.build_py import build_py as _build

CLASSIFIERS = [
    'Operating System :: POSIX',
    'Operating System :: MacOS :: MacOS X',
    'Intended Audience :: Science/Research',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Scientific/Engineering',
    'Topic :: System :: Archiving'
]

pydir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'python')

def get_version():
    out = "dev"
    pkgdir = os.environ.get('PACKAGE_DIR', os.path.dirname(os.path.abspath(__file__)))
    versfile = os.path.join(pkgdir, 'VERSION')
    if os.path.exists(versfile):
        with open(versfile) as fd:
            parts = fd.readline().split()
        if len(parts) > 0:
            out = parts[-1]
    return out

def write_version_mod(version):
    seaddir = os.path.join(pydir, 'sead')
    for pkg in [f for f in os.listdir(seaddir) \
                  if not f.startswith('_') and not f.startswith('.')
                     and os.path.isdir(os.path.join(seaddir, f))]:
        versmodf = os.path.join(seaddir, pkg, "version.py")
        with open(versmodf, 'w') as fd:
            fd.write('"""')
            fd.write("""
An identification of the subsystem version.  Note that this module file gets
(over-) written by the build process.
""")
            fd.write('"""\n\n')
            fd.write('__version__ = "')
            fd.write(version)
            fd.write('"\n')

class build(_build):

    def run(self):
        write_version_mod(get_version())
        _build.run(self)

def get_dist_version():
    # "dev" is not a valid PEP 440 version; map it to a valid development version
    version = get_version()
    return "0.0.dev0" if version == "dev" else version

setup(name='sead-refrepo',
      version=get_dist_version(),
      description="sead.refrepo: a reference repository that packages ORE aggregations into BagIt bags",
      url='https://github.com/Data-to-Insight-Center/sead2',
      python_requires='>=3.8',
      package_dir={'': 'python'},
      packages=find_namespace_packages(where='python', include=['sead.*'],
                                       exclude=['tests', 'tests.*']),
      install_requires=[
          'requests',
          'filelock',
          'PyYAML'
      ],
      extras_require={
          'test': [ 'pytest' ]
      },
      entry_points={
          'console_scripts': [ 'refrepo=sead.refrepo.cli.refrepo:run' ]
      },
      cmdclass={'build_py': build},
      classifiers=CLASSIFIERS,
      zip_safe=False
)
