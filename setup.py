from setuptools import setup, find_packages

setup(
    name='airgapctl',
    version='0.1.0',
    packages=find_packages(exclude=['*.tests', '*.tests.*']),
    include_package_data=True,
    package_data={
        'airgapctl.modules.cluster': ['images.yaml'],
    },
    install_requires=[
        'typer[all]',
        'rich',
        'paramiko',
        'pyyaml',
        'pydantic>=2',
        'python-dotenv',
        'requests',
        'tenacity'
    ],
    extras_require={
        'test': [
            'pytest',
        ]
    },
    entry_points={
        'console_scripts': [
            'airgapctl=airgapctl.cli:app'
        ]
    },
    author='Your Name',
    description='Offline (air-gapped) Kubernetes cluster installer driven over SSH',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
