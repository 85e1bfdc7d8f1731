# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""Test with different environment configuration with nox.

Documentation:
    https://nox.thea.codes/
"""

import nox

nox.options.error_on_missing_interpreters = False


COMMON_TEST_DEPENDENCIES = (
    "numpy",
    "parameterized",
    "pytest-subtests",
    "pytest!=7.1.0",
    "typing_extensions>=4.10",
)
NUMPY_PREVIEW = "numpy>=2.0"


@nox.session(tags=["build"])
def build(session):
    """Build package."""
    session.install("build", "wheel")
    session.run("python", "-m", "build")


@nox.session(tags=["test"])
def test(session):
    """Test graphsplice."""
    session.install(*COMMON_TEST_DEPENDENCIES)
    session.install(".", "--no-deps")
    session.run("pip", "list")
    session.run("pytest", "graphsplice", *session.posargs)


@nox.session(tags=["test-debug"])
def test_debug(session):
    """Test with the graph consistency checks of every pass enabled."""
    session.install(*COMMON_TEST_DEPENDENCIES)
    session.install(".", "--no-deps")
    session.run("pytest", "graphsplice", *session.posargs, env={"GRAPHSPLICE_DEBUG": "1"})


@nox.session(tags=["test-numpy-preview"])
def test_numpy_preview(session):
    """Test with the latest NumPy release."""
    session.install(*COMMON_TEST_DEPENDENCIES)
    session.install("--upgrade", "--pre", NUMPY_PREVIEW)
    session.install(".", "--no-deps")
    session.run("pip", "list")
    session.run("pytest", "graphsplice", *session.posargs)
