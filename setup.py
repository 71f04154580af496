"""
Setup script for Zerotrust - Encrypted two-party peer messaging.

This package provides:
- Listener/connector peer sessions over a single TCP connection
- Ephemeral X25519 (or 2048-bit MODP) Diffie-Hellman key exchange
- AES-256-GCM encrypted, newline-framed messages
- A terminal chat client and a plaintext echo pair for diagnostics
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='zerotrust',
    version='1.0.0',
    description='Encrypted two-party peer messaging over TCP with ephemeral Diffie-Hellman key exchange',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.9',
    install_requires=[
        'cryptography>=42.0.4',
        'rich>=13.7.0',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'zerotrust=zerotrust.main:main',
        ],
    },
)
