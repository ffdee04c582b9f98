import codecs
import os
import re

from setuptools import find_packages, setup


def read_file(filename, encoding='utf8'):
    """Read unicode from given file."""
    with codecs.open(filename, encoding=encoding) as fd:
        return fd.read()


here = os.path.abspath(os.path.dirname(__file__))

# read version number (and other metadata) from package init
init_fn = os.path.join(here, 'zmssl', '__init__.py')
meta = dict(re.findall(r"""__([a-z]+)__ = '([^']+)""", read_file(init_fn)))

readme = read_file(os.path.join(here, 'README.rst'))
version = meta['version']

# The ACME client itself (certbot) is driven as an external program and is
# installed separately, usually from the distribution's packages.
install_requires = [
    'ConfigArgParse>=1.5.3',
    'cryptography>=42.0.0',  # Certificate.not_valid_after_utc
    'requests>=2.20.0',
]

dev_extras = [
    'coverage',
    'pytest',
    'pytest-cov',
    'pytest-xdist',
]

setup(
    name='zmssl',
    version=version,
    description="Let's Encrypt certificate lifecycle for Zimbra and Carbonio",
    long_description=readme,
    license='Apache License 2.0',
    python_requires='>=3.9',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
        'Topic :: Communications :: Email',
        'Topic :: Security',
        'Topic :: System :: Systems Administration',
        'Topic :: Utilities',
    ],

    packages=find_packages(include=['zmssl', 'zmssl.*']),
    include_package_data=True,

    install_requires=install_requires,
    extras_require={
        'dev': dev_extras,
        'test': dev_extras,
    },

    entry_points={
        'console_scripts': [
            'zmssl = zmssl.main:main',
        ],
    },
)
