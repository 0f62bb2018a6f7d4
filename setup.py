from setuptools import setup, find_packages

setup(
    name="bucket-manager",
    version="0.1.0",
    description="Manage compose stacks across the local machine and SSH-reachable hosts",
    author="",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.8",
    install_requires=[
        "paramiko>=3.4.0",
        "pyyaml>=6.0.1",
        "click>=8.1.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bm=bucket_manager.cli:main",
        ],
    },
    include_package_data=True,
)
