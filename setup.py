import os

import setuptools

HERE = os.path.dirname(__file__)

setuptools.setup(
    name="relayrun",
    version="0.1.0",
    license="MIT",
    description="A trio bot that runs code posted to Nostr relays on a Piston backend, and replies with the output.",
    long_description=open(os.path.join(HERE, "description.md")).read(),
    long_description_content_type="text/markdown",
    keywords="bot nostr relay piston async trio",
    python_requires=">=3.11",
    install_requires=open(os.path.join(HERE, "requirements.txt"))
    .read()
    .strip()
    .split("\n"),
    extras_require={
        "test": ["pytest>=7", "pytest-trio>=0.8"],
    },
    packages=["relayrun", "relayrun.backends"],
    entry_points={
        "console_scripts": ["relayrun=relayrun.__main__:main"],
    },
    classifiers=[
        "Framework :: Trio",
        "Topic :: Communications :: Chat",
        "Topic :: Software Development :: Interpreters",
    ],
)
