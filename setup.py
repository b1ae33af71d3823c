from setuptools import setup, find_packages

setup(
    name="mission-uplink",
    version="0.1.0",
    description="MAVLink mission upload over serial, UDP and TCP links",
    author="AeroLoRa Team",
    packages=find_packages(include=["mission_uplink", "mission_uplink.*"]),
    py_modules=["main"],
    python_requires=">=3.8",
    install_requires=[
        "pymavlink>=2.4.40",
        "pyserial>=3.5",
        "pandas>=2.0.0",
        "numpy>=1.24.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mission-uplink=main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
