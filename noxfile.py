import nox


@nox.session
def tests(session: nox.Session) -> None:
    """Run the test suite."""
    session.install("-e", ".[test]")
    session.run("pytest", *session.posargs)

@nox.session
def smoke(session: nox.Session) -> None:
    """Ensure the package imports and the CLI answers in a clean environment."""
    session.install("-e", ".")
    session.run("python", "-c", "import fdvproc")
    session.run("fdvproc", "r3", "--width", "600", "--height", "900", "--form", "1")
