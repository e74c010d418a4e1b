from setuptools import setup, find_packages

setup(
    name='pv_archive',
    version='0.1.0',
    description='PV Archive: retrieval and normalization of archived process variable data',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=['pv_archive', 'pv_archive.*']),
    install_requires=[         # Add dependencies from requirements.txt
        line.strip() for line in open('requirements.txt').readlines() if line.strip()
    ],
    extras_require={
        'test': ['pytest'],
    },
    python_requires='>=3.9,<3.14',
    license='BSD-3-Clause'
)
