from setuptools import setup, find_namespace_packages

setup(
    name="Bridge_Router",
    version="0.1",
    packages=find_namespace_packages(include=["bridgepy*"]),
    install_requires=[
        "ccxt~=4.4.14",
        "PyYAML~=6.0.1",
        "requests~=2.32",
    ],
    extras_require={"test": ["pytest~=8.2"]},
    test_suite="bridgepy/tests",  # This points to the folder where your test cases are located
)
