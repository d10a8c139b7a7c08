# ------------------------------------------------------------------------------
# Name:          setup.py
# Purpose:       install solfa_editor package
#
# Copyright:     (c) 2024
# License:       MIT
# ------------------------------------------------------------------------------

import setuptools

if __name__ == '__main__':
    setuptools.setup(
        name='solfa_editor',
        version='0.1',

        description='A tonic sol-fa four-part notation editor',

        classifiers=[
            'Development Status :: 2 - Pre-Alpha',
            'License :: OSI Approved :: MIT License',
            'Operating System :: OS Independent',
            'Natural Language :: English',
        ],

        packages=setuptools.find_packages(exclude=['tests', 'tests.*']),

        python_requires='>=3.10',

        install_requires=[
            'music21>=9.1',
            'converter21>=3.1.1',
            'flask>=2.3'
        ],

        extras_require={
            'test': [
                'pytest>=7.0'
            ]
        }
    )
