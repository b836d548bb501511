import setuptools

setuptools.setup(
    name="replica-placement",
    version="0.1.0",
    description=(
        "Capacity aware placement of partition replicas onto cluster nodes"
    ),
    python_requires=">=3.10",
    packages=setuptools.find_packages(exclude=("tests*",)),
    install_requires=[
        "pydantic>2.0",
        "numpy",
    ],
    extras_require={
        "test": ["pytest", "hypothesis"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        "console_scripts": [
            "replica-place = replica_placement.tools.place:main",
        ]
    },
)
