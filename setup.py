from setuptools import setup
from setuptools import find_packages

setup(
    name='fargatectl',
    version='0.1.0',
    packages=find_packages(include=['fargatectl', 'fargatectl.*']),
    python_requires='>=3.8',
    install_requires=[
        'Click',
        'PyYAML',
        'boto3',
        'botocore',
        'pick'
    ],
    extras_require={
        'test': [
            'pytest'
        ]
    },
    entry_points={
        'console_scripts': [
            'fargatectl = fargatectl.fargatectl:main',
        ],
    },
)
